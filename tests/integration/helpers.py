from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


async def insert_team(
    db_session: AsyncSession,
    *,
    name: str = "Brew Lab Team",
    plan_name: str = "pro",
) -> int:
    result = await db_session.execute(
        text(
            """
            INSERT INTO teams (name, plan_name)
            VALUES (:name, :plan_name)
            RETURNING id
            """
        ),
        {"name": name, "plan_name": plan_name},
    )
    team_id = int(result.scalar_one())
    await db_session.commit()
    return team_id


async def insert_business(
    db_session: AsyncSession,
    *,
    team_id: int,
    name: str = "Brew Lab Coffee",
    url: str = "https://brewlab.example.com",
    status: str = "pending",
    automation_enabled: bool = True,
    next_crawl_at: datetime | None = None,
    last_crawled_at: datetime | None = None,
    wikidata_qid: str | None = None,
) -> int:
    result = await db_session.execute(
        text(
            """
            INSERT INTO businesses (
              team_id, name, url, status, automation_enabled,
              next_crawl_at, last_crawled_at, wikidata_qid
            )
            VALUES (
              :team_id, :name, :url, :status, :automation_enabled,
              :next_crawl_at, :last_crawled_at, :wikidata_qid
            )
            RETURNING id
            """
        ),
        {
            "team_id": team_id,
            "name": name,
            "url": url,
            "status": status,
            "automation_enabled": automation_enabled,
            "next_crawl_at": next_crawl_at,
            "last_crawled_at": last_crawled_at,
            "wikidata_qid": wikidata_qid,
        },
    )
    business_id = int(result.scalar_one())
    await db_session.commit()
    return business_id


def session_factory_for(database_url: str) -> tuple[Any, async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(database_url, pool_pre_ping=True)
    return engine, async_sessionmaker(engine, expire_on_commit=False)
