"""create automation engine tables

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261017_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "people",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=True),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_people_organization_id", "people", ["organization_id"], unique=False)
    op.create_index("ix_people_phone", "people", ["phone"], unique=False)
    op.create_index("ix_people_organization_name", "people", ["organization_id", "name"], unique=False)

    op.create_table(
        "tags",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=60), nullable=False),
        sa.Column("color", sa.String(length=20), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tags_organization_id", "tags", ["organization_id"], unique=False)
    op.create_index("ix_tags_organization_name", "tags", ["organization_id", "name"], unique=False)

    op.create_table(
        "person_tags",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("person_id", sa.String(length=36), nullable=False),
        sa.Column("tag_id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"]),
        sa.ForeignKeyConstraint(["tag_id"], ["tags.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("person_id", "tag_id", name="uq_person_tags_person_tag"),
    )
    op.create_index("ix_person_tags_person_id", "person_tags", ["person_id"], unique=False)
    op.create_index("ix_person_tags_tag_id", "person_tags", ["tag_id"], unique=False)

    op.create_table(
        "whatsapp_configs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("phone_number", sa.String(length=40), nullable=True),
        sa.Column("instance_name", sa.String(length=120), nullable=True),
        sa.Column("instance_id", sa.String(length=120), nullable=True),
        sa.Column("api_token", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="disconnected"),
        sa.Column("is_connected", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_whatsapp_configs_organization_id", "whatsapp_configs", ["organization_id"], unique=False)

    op.create_table(
        "whatsapp_conversations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("config_id", sa.String(length=36), nullable=False),
        sa.Column("phone_number", sa.String(length=40), nullable=False),
        sa.Column("contact_name", sa.String(length=120), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["config_id"], ["whatsapp_configs.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("config_id", "phone_number", name="uq_whatsapp_conversations_config_phone"),
    )
    op.create_index("ix_whatsapp_conversations_config_id", "whatsapp_conversations", ["config_id"], unique=False)

    op.create_table(
        "whatsapp_messages",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("conversation_id", sa.String(length=36), nullable=False),
        sa.Column("direction", sa.String(length=10), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("message_type", sa.String(length=20), nullable=False, server_default="text"),
        sa.Column("is_from_ai", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
        sa.Column("external_message_id", sa.String(length=120), nullable=True),
        sa.Column("error_message", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["conversation_id"], ["whatsapp_conversations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_whatsapp_messages_conversation_id", "whatsapp_messages", ["conversation_id"], unique=False)
    op.create_index(
        "ix_whatsapp_messages_conversation_created_at",
        "whatsapp_messages",
        ["conversation_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "integration_outbox_events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("event_type", sa.String(length=120), nullable=False),
        sa.Column("target_app_key", sa.String(length=60), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_error", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_integration_outbox_events_organization_id",
        "integration_outbox_events",
        ["organization_id"],
        unique=False,
    )
    op.create_index("ix_integration_outbox_events_event_type", "integration_outbox_events", ["event_type"], unique=False)
    op.create_index(
        "ix_integration_outbox_events_target_app_key",
        "integration_outbox_events",
        ["target_app_key"],
        unique=False,
    )
    op.create_index(
        "ix_integration_outbox_events_status_next_attempt",
        "integration_outbox_events",
        ["status", "next_attempt_at"],
        unique=False,
    )

    op.create_table(
        "automations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("trigger_type", sa.String(length=30), nullable=False, server_default="form_submission"),
        sa.Column("trigger_config", sa.JSON(), nullable=True),
        sa.Column("actions", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_automations_organization_id", "automations", ["organization_id"], unique=False)
    op.create_index(
        "ix_automations_organization_trigger_active",
        "automations",
        ["organization_id", "trigger_type", "is_active"],
        unique=False,
    )

    op.create_table(
        "automation_runs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("automation_id", sa.String(length=36), nullable=False),
        sa.Column("person_id", sa.String(length=36), nullable=False),
        sa.Column("trigger_event_id", sa.String(length=120), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="running"),
        sa.Column("blocked_reason", sa.String(length=255), nullable=True),
        sa.Column("steps_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("steps_succeeded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("steps_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("steps_skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["automation_id"], ["automations.id"]),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "automation_id",
            "trigger_event_id",
            name="uq_automation_runs_automation_trigger_event",
        ),
    )
    op.create_index("ix_automation_runs_organization_id", "automation_runs", ["organization_id"], unique=False)
    op.create_index("ix_automation_runs_automation_id", "automation_runs", ["automation_id"], unique=False)
    op.create_index("ix_automation_runs_person_id", "automation_runs", ["person_id"], unique=False)
    op.create_index("ix_automation_runs_trigger_event_id", "automation_runs", ["trigger_event_id"], unique=False)
    op.create_index(
        "ix_automation_runs_automation_created_at",
        "automation_runs",
        ["automation_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_automation_runs_organization_status_created_at",
        "automation_runs",
        ["organization_id", "status", "created_at"],
        unique=False,
    )

    op.create_table(
        "automation_run_steps",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("run_id", sa.String(length=36), nullable=False),
        sa.Column("step_index", sa.Integer(), nullable=False),
        sa.Column("action_type", sa.String(length=40), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("input_json", sa.JSON(), nullable=True),
        sa.Column("output_json", sa.JSON(), nullable=True),
        sa.Column("error_code", sa.String(length=60), nullable=True),
        sa.Column("error_message", sa.String(length=255), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["run_id"], ["automation_runs.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("run_id", "step_index", name="uq_automation_run_steps_run_step"),
    )
    op.create_index("ix_automation_run_steps_run_id", "automation_run_steps", ["run_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_automation_run_steps_run_id", table_name="automation_run_steps")
    op.drop_table("automation_run_steps")

    op.drop_index("ix_automation_runs_organization_status_created_at", table_name="automation_runs")
    op.drop_index("ix_automation_runs_automation_created_at", table_name="automation_runs")
    op.drop_index("ix_automation_runs_trigger_event_id", table_name="automation_runs")
    op.drop_index("ix_automation_runs_person_id", table_name="automation_runs")
    op.drop_index("ix_automation_runs_automation_id", table_name="automation_runs")
    op.drop_index("ix_automation_runs_organization_id", table_name="automation_runs")
    op.drop_table("automation_runs")

    op.drop_index("ix_automations_organization_trigger_active", table_name="automations")
    op.drop_index("ix_automations_organization_id", table_name="automations")
    op.drop_table("automations")

    op.drop_index("ix_integration_outbox_events_status_next_attempt", table_name="integration_outbox_events")
    op.drop_index("ix_integration_outbox_events_target_app_key", table_name="integration_outbox_events")
    op.drop_index("ix_integration_outbox_events_event_type", table_name="integration_outbox_events")
    op.drop_index("ix_integration_outbox_events_organization_id", table_name="integration_outbox_events")
    op.drop_table("integration_outbox_events")

    op.drop_index("ix_whatsapp_messages_conversation_created_at", table_name="whatsapp_messages")
    op.drop_index("ix_whatsapp_messages_conversation_id", table_name="whatsapp_messages")
    op.drop_table("whatsapp_messages")

    op.drop_index("ix_whatsapp_conversations_config_id", table_name="whatsapp_conversations")
    op.drop_table("whatsapp_conversations")

    op.drop_index("ix_whatsapp_configs_organization_id", table_name="whatsapp_configs")
    op.drop_table("whatsapp_configs")

    op.drop_index("ix_person_tags_tag_id", table_name="person_tags")
    op.drop_index("ix_person_tags_person_id", table_name="person_tags")
    op.drop_table("person_tags")

    op.drop_index("ix_tags_organization_name", table_name="tags")
    op.drop_index("ix_tags_organization_id", table_name="tags")
    op.drop_table("tags")

    op.drop_index("ix_people_organization_name", table_name="people")
    op.drop_index("ix_people_phone", table_name="people")
    op.drop_index("ix_people_organization_id", table_name="people")
    op.drop_table("people")

    op.drop_table("organizations")
