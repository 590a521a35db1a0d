from __future__ import annotations

from contextvars import ContextVar

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
_run_id_ctx: ContextVar[str | None] = ContextVar("run_id", default=None)


def get_request_id() -> str | None:
    return _request_id_ctx.get()


def set_request_id(value: str | None) -> None:
    _request_id_ctx.set(value)


def get_run_id() -> str | None:
    return _run_id_ctx.get()


def set_run_id(value: str | None) -> None:
    _run_id_ctx.set(value)
