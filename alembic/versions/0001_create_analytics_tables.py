"""create metric aggregate, event log and touchpoint tables

Revision ID: 0001_create_analytics_tables
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_create_analytics_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ---- metric_aggregates (one row per design/campaign) ----
    op.create_table(
        "metric_aggregates",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        # "<len(design)>:<design>" + "~" (no campaign) or "=<campaign>"
        sa.Column("aggregate_key", sa.Text(), nullable=False, unique=True),
        sa.Column("business_id", sa.Text(), nullable=True),
        sa.Column("design_id", sa.Text(), nullable=False),
        sa.Column("campaign_id", sa.Text(), nullable=True),
        sa.Column(
            "counters",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column(
            "per_channel",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column(
            "time_series",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_metric_aggregates_business_updated",
        "metric_aggregates",
        ["business_id", "updated_at"],
    )
    op.create_index(
        "ix_metric_aggregates_design",
        "metric_aggregates",
        ["design_id"],
    )

    # ---- metric_events (append-only) ----
    op.create_table(
        "metric_events",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("aggregate_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("channel", sa.Text(), nullable=False),
        sa.Column("value", sa.Float(), nullable=False, server_default="1"),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "metadata_json",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.ForeignKeyConstraint(
            ["aggregate_id"], ["metric_aggregates.id"], ondelete="CASCADE"
        ),
    )
    op.create_index(
        "ix_metric_events_aggregate_occurred",
        "metric_events",
        ["aggregate_id", "occurred_at"],
    )

    # ---- touchpoints ----
    op.create_table(
        "touchpoints",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("aggregate_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("channel", sa.Text(), nullable=False),
        sa.Column("interaction_type", sa.Text(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(
            ["aggregate_id"], ["metric_aggregates.id"], ondelete="CASCADE"
        ),
    )
    op.create_index(
        "ix_touchpoints_aggregate_occurred",
        "touchpoints",
        ["aggregate_id", "occurred_at", "sequence"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_touchpoints_aggregate_occurred",
        table_name="touchpoints",
    )
    op.drop_table("touchpoints")
    op.drop_index(
        "ix_metric_events_aggregate_occurred",
        table_name="metric_events",
    )
    op.drop_table("metric_events")
    op.drop_index(
        "ix_metric_aggregates_design",
        table_name="metric_aggregates",
    )
    op.drop_index(
        "ix_metric_aggregates_business_updated",
        table_name="metric_aggregates",
    )
    op.drop_table("metric_aggregates")
