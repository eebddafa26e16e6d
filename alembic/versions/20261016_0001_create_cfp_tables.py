"""create cfp tables

Revision ID: 20261016_0001
Revises:
Create Date: 2026-10-16 09:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261016_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "teams",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("plan_name", sa.String(length=32), nullable=False, comment="free, pro, agency"),
        sa.Column("subscription_status", sa.String(length=32), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_teams_plan_name", "teams", ["plan_name"], unique=False)

    op.create_table(
        "businesses",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("team_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=120), nullable=True),
        sa.Column(
            "location",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment="city, state, country, lat, lng",
        ),
        sa.Column(
            "status",
            sa.String(length=32),
            nullable=False,
            comment="pending, crawling, crawled, generating, published, error",
        ),
        sa.Column(
            "crawl_data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment="Normalized crawl snapshot",
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("wikidata_qid", sa.String(length=32), nullable=True),
        sa.Column("wikidata_published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("automation_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_crawled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_crawl_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_auto_published_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_businesses_team_id", "businesses", ["team_id"], unique=False)
    op.create_index("ix_businesses_status", "businesses", ["status"], unique=False)
    op.create_index("ix_businesses_automation_enabled", "businesses", ["automation_enabled"], unique=False)
    op.create_index("ix_businesses_wikidata_qid", "businesses", ["wikidata_qid"], unique=False)

    op.create_table(
        "crawl_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("job_type", sa.String(length=50), nullable=False, comment="crawl, fingerprint"),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "result",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment="Execution result metadata",
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crawl_jobs_business_id", "crawl_jobs", ["business_id"], unique=False)
    op.create_index("ix_crawl_jobs_status", "crawl_jobs", ["status"], unique=False)
    op.create_index(
        "ix_crawl_jobs_business_id_created_at",
        "crawl_jobs",
        ["business_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "fingerprints",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("visibility_score", sa.Integer(), nullable=False),
        sa.Column("mention_rate", sa.Float(), nullable=False),
        sa.Column("sentiment_score", sa.Float(), nullable=False),
        sa.Column("accuracy_score", sa.Float(), nullable=False),
        sa.Column("avg_rank_position", sa.Float(), nullable=True),
        sa.Column(
            "llm_results",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            comment="Ordered per-model observations",
        ),
        sa.Column("competitive_leaderboard", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_fingerprints_business_id_created_at",
        "fingerprints",
        ["business_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "wikidata_entities",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("qid", sa.String(length=32), nullable=False),
        sa.Column(
            "entity_data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            comment="labels, descriptions, claims",
        ),
        sa.Column(
            "published_to",
            sa.String(length=64),
            nullable=False,
            comment="Target instance identifier, e.g. test.wikidata",
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("enrichment_level", sa.Integer(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_id", "version", name="uq_wikidata_entities_business_version"),
    )
    op.create_index("ix_wikidata_entities_qid", "wikidata_entities", ["qid"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_wikidata_entities_qid", table_name="wikidata_entities")
    op.drop_table("wikidata_entities")
    op.drop_index("ix_fingerprints_business_id_created_at", table_name="fingerprints")
    op.drop_table("fingerprints")
    op.drop_index("ix_crawl_jobs_business_id_created_at", table_name="crawl_jobs")
    op.drop_index("ix_crawl_jobs_status", table_name="crawl_jobs")
    op.drop_index("ix_crawl_jobs_business_id", table_name="crawl_jobs")
    op.drop_table("crawl_jobs")
    op.drop_index("ix_businesses_wikidata_qid", table_name="businesses")
    op.drop_index("ix_businesses_automation_enabled", table_name="businesses")
    op.drop_index("ix_businesses_status", table_name="businesses")
    op.drop_index("ix_businesses_team_id", table_name="businesses")
    op.drop_table("businesses")
    op.drop_index("ix_teams_plan_name", table_name="teams")
    op.drop_table("teams")
