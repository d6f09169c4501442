from __future__ import annotations
"""server/fleet/migrations/versions/0001_initial.py
~~~~~~~~~~~~~~~~~~~~~~~~
Schéma initial : machines (agrégat + historiques JSON), catalogue des types
d'évènements, outbox, journal des notifications.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

# JSONB sur Postgres, JSON ailleurs
JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")
TSTZ = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "machines",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("serial_number", sa.String(64), nullable=False),
        sa.Column("brand", sa.String(50), nullable=False),
        sa.Column("model_name", sa.String(50), nullable=False),
        sa.Column("nickname", sa.String(30), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("assigned_provider_id", sa.String(64), nullable=True),
        sa.Column("operating_hours", sa.Float(), nullable=False, server_default="0"),
        sa.Column("specs", JSON, nullable=False),
        sa.Column("usage_schedule", JSON, nullable=True),
        sa.Column("quick_checks", JSON, nullable=False),
        sa.Column("events_history", JSON, nullable=False),
        sa.Column("maintenance_alarms", JSON, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", TSTZ, nullable=False),
        sa.Column("updated_at", TSTZ, nullable=False),
    )
    op.create_index("ix_machines_serial_number", "machines", ["serial_number"], unique=True)
    op.create_index("ix_machines_status", "machines", ["status"])
    op.create_index("ix_machines_owner_id", "machines", ["owner_id"])
    op.create_index("ix_machines_assigned_provider_id", "machines", ["assigned_provider_id"])

    op.create_table(
        "machine_event_types",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("normalized_name", sa.String(100), nullable=False),
        sa.Column("languages", JSON, nullable=False),
        sa.Column("system_generated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("times_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("created_at", TSTZ, nullable=False),
    )
    op.create_index(
        "ix_machine_event_types_normalized_name", "machine_event_types", ["normalized_name"], unique=True
    )
    op.create_index("ix_machine_event_types_is_active", "machine_event_types", ["is_active"])

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("machine_id", sa.String(32), nullable=True),
        sa.Column("type", sa.String(64), nullable=False),
        sa.Column("payload", JSON, nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "DELIVERING", "DELIVERED", "FAILED", name="outbox_status"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_attempt_at", TSTZ, nullable=False),
        sa.Column("delivery_receipt", JSON, nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", TSTZ, nullable=False),
        sa.Column("updated_at", TSTZ, nullable=False),
        sa.ForeignKeyConstraint(["machine_id"], ["machines.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_outbox_events_machine_id", "outbox_events", ["machine_id"])
    op.create_index("ix_outbox_events_due", "outbox_events", ["status", "next_attempt_at"])

    op.create_table(
        "notification_log",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("outbox_event_id", sa.String(32), nullable=True),
        sa.Column("machine_id", sa.String(32), nullable=True),
        sa.Column("alarm_id", sa.String(32), nullable=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("recipient", sa.String(255), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", TSTZ, nullable=True),
        sa.Column("created_at", TSTZ, nullable=False),
    )
    op.create_index("ix_notification_log_outbox_event_id", "notification_log", ["outbox_event_id"])
    op.create_index("ix_notification_log_machine_id", "notification_log", ["machine_id"])


def downgrade() -> None:
    op.drop_index("ix_notification_log_machine_id", table_name="notification_log")
    op.drop_index("ix_notification_log_outbox_event_id", table_name="notification_log")
    op.drop_table("notification_log")
    op.drop_index("ix_outbox_events_due", table_name="outbox_events")
    op.drop_index("ix_outbox_events_machine_id", table_name="outbox_events")
    op.drop_table("outbox_events")
    sa.Enum(name="outbox_status").drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_machine_event_types_is_active", table_name="machine_event_types")
    op.drop_index("ix_machine_event_types_normalized_name", table_name="machine_event_types")
    op.drop_table("machine_event_types")
    op.drop_index("ix_machines_assigned_provider_id", table_name="machines")
    op.drop_index("ix_machines_owner_id", table_name="machines")
    op.drop_index("ix_machines_status", table_name="machines")
    op.drop_index("ix_machines_serial_number", table_name="machines")
    op.drop_table("machines")
