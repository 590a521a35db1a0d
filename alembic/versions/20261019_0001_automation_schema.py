"""Create automation schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "teams",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "plan_name",
            sa.String(length=50),
            nullable=False,
            server_default=sa.text("'free'"),
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_teams"),
    )

    op.create_table(
        "businesses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("location", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("wikidata_qid", sa.String(length=50), nullable=True),
        sa.Column("wikidata_published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_crawled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("crawl_data", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "status",
            sa.String(length=20),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "automation_enabled",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("next_crawl_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_auto_published_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'crawling', 'crawled', 'generating', 'published', 'error')",
            name="ck_businesses_status_valid",
        ),
        sa.ForeignKeyConstraint(
            ["team_id"],
            ["teams.id"],
            name="fk_businesses_team_id_teams",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_businesses"),
    )
    op.create_index("ix_businesses_team_id", "businesses", ["team_id"], unique=False)
    op.create_index(
        "ix_businesses_automation_due",
        "businesses",
        ["automation_enabled", "next_crawl_at"],
        unique=False,
    )

    op.create_table(
        "crawl_jobs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("business_id", sa.Integer(), nullable=False),
        sa.Column("job_type", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column(
            "attempt_count",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.ForeignKeyConstraint(
            ["business_id"],
            ["businesses.id"],
            name="fk_crawl_jobs_business_id_businesses",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_crawl_jobs"),
    )
    op.create_index("ix_crawl_jobs_business_id", "crawl_jobs", ["business_id"], unique=False)

    op.create_table(
        "llm_fingerprints",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("business_id", sa.Integer(), nullable=False),
        sa.Column("visibility_score", sa.Integer(), nullable=False),
        sa.Column("mention_rate", sa.Float(), nullable=True),
        sa.Column("sentiment_score", sa.Float(), nullable=True),
        sa.Column("accuracy_score", sa.Float(), nullable=True),
        sa.Column("avg_rank_position", sa.Float(), nullable=True),
        sa.Column("llm_results", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "competitive_leaderboard",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.ForeignKeyConstraint(
            ["business_id"],
            ["businesses.id"],
            name="fk_llm_fingerprints_business_id_businesses",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_llm_fingerprints"),
    )
    op.create_index(
        "ix_llm_fingerprints_business_id",
        "llm_fingerprints",
        ["business_id"],
        unique=False,
    )

    op.create_table(
        "wikidata_entities",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("business_id", sa.Integer(), nullable=False),
        sa.Column("qid", sa.String(length=50), nullable=False),
        sa.Column("entity_data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("published_to", sa.String(length=50), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("enrichment_level", sa.Integer(), nullable=True),
        sa.Column(
            "published_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("last_enriched_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["business_id"],
            ["businesses.id"],
            name="fk_wikidata_entities_business_id_businesses",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_wikidata_entities"),
        sa.UniqueConstraint("qid", name="uq_wikidata_entities_qid"),
    )
    op.create_index(
        "ix_wikidata_entities_business_id",
        "wikidata_entities",
        ["business_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_wikidata_entities_business_id", table_name="wikidata_entities")
    op.drop_table("wikidata_entities")
    op.drop_index("ix_llm_fingerprints_business_id", table_name="llm_fingerprints")
    op.drop_table("llm_fingerprints")
    op.drop_index("ix_crawl_jobs_business_id", table_name="crawl_jobs")
    op.drop_table("crawl_jobs")
    op.drop_index("ix_businesses_automation_due", table_name="businesses")
    op.drop_index("ix_businesses_team_id", table_name="businesses")
    op.drop_table("businesses")
    op.drop_table("teams")
