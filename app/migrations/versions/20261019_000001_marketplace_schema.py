"""marketplace schema: customers, providers, services, fill requests, ratings, audit

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
NOW = sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    op.create_table(
        "customer",
        sa.Column("customer_id", sa.String(length=64), primary_key=True),
        sa.Column("email", sa.String(length=255), unique=True),
        sa.Column("first_name", sa.String(length=100)),
        sa.Column("last_name", sa.String(length=100)),
        sa.Column("phone", sa.String(length=20)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
    )

    op.create_table(
        "service_provider",
        sa.Column("service_provider_id", sa.String(length=64), primary_key=True),
        sa.Column("first_name", sa.String(length=100)),
        sa.Column("last_name", sa.String(length=100)),
        sa.Column("email", sa.String(length=255)),
        sa.Column("phone", sa.String(length=20)),
        sa.Column("jobs_completed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("rating", sa.Numeric(3, 2)),
        sa.Column("profile_picture_url", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
    )

    op.create_table(
        "service",
        sa.Column("service_id", sa.String(length=64), primary_key=True),
        sa.Column("customer_id", sa.String(length=64), sa.ForeignKey("customer.customer_id"), nullable=False),
        sa.Column("service_type", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'finding_pros'")),
        sa.Column("scheduling_type", sa.String(length=16)),
        sa.Column("scheduled_date_time", sa.DateTime(timezone=True)),
        sa.Column("date_of_creation", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("location", sa.Text()),
        sa.Column("start_location", sa.Text()),
        sa.Column("end_location", sa.Text()),
        sa.Column("price", sa.Numeric(10, 2)),
        sa.Column("payment_method_type", sa.String(length=16)),
        sa.Column("autofill_type", sa.String(length=16), nullable=False, server_default=sa.text("'AutoFill'")),
        sa.Column(
            "service_provider_id",
            sa.String(length=64),
            sa.ForeignKey("service_provider.service_provider_id"),
        ),
        sa.Column("description", sa.Text()),
    )
    op.create_index("ix_service_customer_id", "service", ["customer_id"])
    op.create_index("ix_service_service_provider_id", "service", ["service_provider_id"])
    # Provider feed filters on lower(status).
    op.create_index("idx_service_status_lower", "service", [sa.text("lower(status)")])

    op.create_table(
        "service_fill_request",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "service_id",
            sa.String(length=64),
            sa.ForeignKey("service.service_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "service_provider_id",
            sa.String(length=64),
            sa.ForeignKey("service_provider.service_provider_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("bid", sa.Numeric(10, 2), nullable=False),
        sa.Column("proposed_date_time", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
    )
    op.create_index(
        "idx_fill_request_service_provider",
        "service_fill_request",
        ["service_id", "service_provider_id"],
    )

    op.create_table(
        "customer_ratings",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "service_id",
            sa.String(length=64),
            sa.ForeignKey("service.service_id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("customer_id", sa.String(length=64), sa.ForeignKey("customer.customer_id"), nullable=False),
        sa.Column(
            "service_provider_id",
            sa.String(length=64),
            sa.ForeignKey("service_provider.service_provider_id"),
            nullable=False,
        ),
        sa.Column("rating", sa.SmallInteger()),
        sa.Column("comment", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("old_value", JSON_TYPE),
        sa.Column("new_value", JSON_TYPE),
        sa.Column("actor_type", sa.String(length=50), nullable=False),
        sa.Column("actor_id", sa.String(length=64)),
        sa.Column("metadata", JSON_TYPE),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
    )
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])
    op.create_index("idx_audit_logs_action_timestamp", "audit_logs", ["action", "timestamp"])


def downgrade() -> None:
    op.drop_index("idx_audit_logs_action_timestamp", table_name="audit_logs")
    op.drop_index("ix_audit_logs_entity_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("customer_ratings")
    op.drop_index("idx_fill_request_service_provider", table_name="service_fill_request")
    op.drop_table("service_fill_request")
    op.drop_index("idx_service_status_lower", table_name="service")
    op.drop_index("ix_service_service_provider_id", table_name="service")
    op.drop_index("ix_service_customer_id", table_name="service")
    op.drop_table("service")
    op.drop_table("service_provider")
    op.drop_table("customer")
