from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
from typing import Any

from gemflush.logging_utils import structured_log
from gemflush.services.automation.types import FallbackMeta
from gemflush.settings import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredEntity:
    record_id: int
    entity: dict[str, Any]
    meta: dict[str, Any]


def _entity_path(root: Path, record_id: int) -> Path:
    return root / f"entity-{int(record_id)}.json"


def _meta_path(root: Path, record_id: int) -> Path:
    return root / f"entity-{int(record_id)}.meta.json"


def _meta_body(record_id: int, meta: FallbackMeta) -> dict[str, Any]:
    notability = None
    if meta.notability is not None:
        notability = {
            "isNotable": meta.notability.is_notable,
            "confidence": meta.notability.confidence,
        }
    return {
        "businessId": int(record_id),
        "businessName": meta.record_name,
        "canPublish": meta.can_publish,
        "notability": notability,
        "recommendation": meta.recommendation,
        "storedAt": datetime.now(timezone.utc).isoformat(),
    }


def _write_json(path: Path, body: dict[str, Any]) -> None:
    tmp_path = path.with_name(f"{path.name}.tmp")
    tmp_path.write_text(json.dumps(body, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
    tmp_path.replace(path)


class FileManualFallbackStore:
    """Keeps every assembled entity on disk so an operator can publish it by hand."""

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root or settings.manual_publish_dir)

    @property
    def root(self) -> Path:
        return self._root

    async def store(
        self,
        record_id: int,
        entity_snapshot: dict[str, Any],
        meta: FallbackMeta,
    ) -> None:
        await asyncio.to_thread(self._store_sync, record_id, entity_snapshot, meta)
        structured_log(
            logger,
            "info",
            "fallback.entity_stored",
            record_id=record_id,
            can_publish=meta.can_publish,
        )

    def _store_sync(self, record_id: int, entity_snapshot: dict[str, Any], meta: FallbackMeta) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        _write_json(_entity_path(self._root, record_id), entity_snapshot)
        _write_json(_meta_path(self._root, record_id), _meta_body(record_id, meta))

    async def load(self, record_id: int) -> StoredEntity | None:
        return await asyncio.to_thread(self._load_sync, record_id)

    def _load_sync(self, record_id: int) -> StoredEntity | None:
        entity_path = _entity_path(self._root, record_id)
        if not entity_path.exists():
            return None
        entity = json.loads(entity_path.read_text(encoding="utf-8"))
        meta_path = _meta_path(self._root, record_id)
        meta = json.loads(meta_path.read_text(encoding="utf-8")) if meta_path.exists() else {}
        return StoredEntity(record_id=int(record_id), entity=entity, meta=meta)

    async def list_stored(self) -> list[int]:
        return await asyncio.to_thread(self._list_sync)

    def _list_sync(self) -> list[int]:
        if not self._root.exists():
            return []
        record_ids: list[int] = []
        for path in self._root.glob("entity-*.json"):
            if path.name.endswith(".meta.json"):
                continue
            raw_id = path.stem.removeprefix("entity-")
            if raw_id.isdigit():
                record_ids.append(int(raw_id))
        return sorted(record_ids)

    async def delete(self, record_id: int) -> bool:
        deleted = await asyncio.to_thread(self._delete_sync, record_id)
        if deleted:
            structured_log(logger, "info", "fallback.entity_deleted", record_id=record_id)
        return deleted

    def _delete_sync(self, record_id: int) -> bool:
        deleted = False
        for path in (_entity_path(self._root, record_id), _meta_path(self._root, record_id)):
            if path.exists():
                path.unlink()
                deleted = True
        return deleted
