"""initial_escalation_schema

Creates the escalation engine tables:
  - tenants, users                   — organizations and their members
  - programs, workstreams            — hierarchy above units (archivable)
  - units                            — computed status, escalation level, block state
  - unit_proofs                      — evidence records and their review state
  - unit_escalations                 — append-only escalation events
  - unit_status_events               — append-only status audit trail
  - escalation_notifications         — queued outbound notifications
  - scheduled_jobs                   — cron-triggered job run history

Tables created conditionally (IF NOT EXISTS semantics) so the revision can run
against a development database that already received them via db.create_all().

Revision ID: 7c1e2f9a4b10
Revises:
Create Date: 2025-05-12 09:41:27.118304
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7c1e2f9a4b10'
down_revision = None
branch_labels = None
depends_on = None


def _archive_columns():
    return [
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_by", sa.Integer(), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Tenants / Users ───────────────────────────────────────────────────
    if "tenants" not in existing:
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("settings", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("role", sa.String(length=30), nullable=False,
                      comment="PLATFORM_ADMIN | PROGRAM_OWNER | WORKSTREAM_LEAD | "
                              "FIELD_CONTRIBUTOR | CLIENT_VIEWER"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        )
        op.create_index("ix_users_tenant_role", "users", ["tenant_id", "role"])
        op.create_index("ix_users_email", "users", ["email"])

    # ── Programs / Workstreams ────────────────────────────────────────────
    if "programs" not in existing:
        op.create_table(
            "programs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("owner_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            *_archive_columns(),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_programs_tenant_id", "programs", ["tenant_id"])
        op.create_index("ix_programs_archived_at", "programs", ["archived_at"])

    if "workstreams" not in existing:
        op.create_table(
            "workstreams",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("program_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("lead_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            *_archive_columns(),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["program_id"], ["programs.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["lead_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workstreams_tenant_id", "workstreams", ["tenant_id"])
        op.create_index("ix_workstreams_program_id", "workstreams", ["program_id"])
        op.create_index("ix_workstreams_archived_at", "workstreams", ["archived_at"])

    # ── Units ─────────────────────────────────────────────────────────────
    if "units" not in existing:
        op.create_table(
            "units",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("workstream_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("deadline", sa.DateTime(timezone=True), nullable=True,
                      comment="Date by which the unit must be GREEN"),
            sa.Column("proof_requirements", sa.JSON(), nullable=True,
                      comment='{"required_count": 1, "required_types": ["photo"]}'),
            sa.Column("requires_reviewer_approval", sa.Boolean(), nullable=False, server_default="1"),
            sa.Column("requires_reference_number", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("requires_expiry_date", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("high_criticality", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("computed_status", sa.String(length=20), nullable=False,
                      server_default="RED", comment="GREEN | RED | BLOCKED"),
            sa.Column("status_computed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_status_change_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("current_escalation_level", sa.Integer(), nullable=False,
                      server_default="0", comment="0 = none, 1..3"),
            sa.Column("escalation_level_changed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("blocked_reason", sa.Text(), nullable=True),
            sa.Column("blocked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("blocked_by", sa.Integer(), nullable=True),
            sa.Column("is_confirmed", sa.Boolean(), nullable=False, server_default="1"),
            sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("confirmed_by", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            *_archive_columns(),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["workstream_id"], ["workstreams.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["blocked_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["confirmed_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_units_tenant_id", "units", ["tenant_id"])
        op.create_index("ix_units_workstream_id", "units", ["workstream_id"])
        op.create_index("ix_units_archived_at", "units", ["archived_at"])
        op.create_index("ix_units_tenant_status", "units", ["tenant_id", "computed_status"])
        op.create_index("ix_units_deadline", "units", ["deadline"])

    # ── Unit Proofs ───────────────────────────────────────────────────────
    if "unit_proofs" not in existing:
        op.create_table(
            "unit_proofs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("unit_id", sa.Integer(), nullable=False),
            sa.Column("proof_type", sa.String(length=20), nullable=False,
                      comment="photo | video | document"),
            sa.Column("file_url", sa.String(length=1000), nullable=True),
            sa.Column("file_path", sa.String(length=1000), nullable=True),
            sa.Column("mime_type", sa.String(length=100), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("reference_number", sa.String(length=100), nullable=True),
            sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("is_expired", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("uploaded_by", sa.Integer(), nullable=True),
            sa.Column("uploaded_by_email", sa.String(length=200), nullable=True),
            sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("approval_status", sa.String(length=20), nullable=False,
                      server_default="pending", comment="pending | approved | rejected"),
            sa.Column("approved_by", sa.Integer(), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            sa.Column("is_valid", sa.Boolean(), nullable=False, server_default="1"),
            sa.Column("is_superseded", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("superseded_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("superseded_by", sa.Integer(), nullable=True),
            sa.Column("superseded_by_proof_id", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["unit_id"], ["units.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["uploaded_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["approved_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["superseded_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["superseded_by_proof_id"], ["unit_proofs.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_unit_proofs_tenant_id", "unit_proofs", ["tenant_id"])
        op.create_index("ix_unit_proofs_unit_id", "unit_proofs", ["unit_id"])
        op.create_index("ix_unit_proofs_tenant_approval", "unit_proofs", ["tenant_id", "approval_status"])

    # ── Escalations / Status events ───────────────────────────────────────
    if "unit_escalations" not in existing:
        op.create_table(
            "unit_escalations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("unit_id", sa.Integer(), nullable=False),
            sa.Column("escalation_type", sa.String(length=20), nullable=False,
                      comment="automatic | manual"),
            sa.Column("level", sa.Integer(), nullable=False, comment="1..3"),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("percent_elapsed", sa.Integer(), nullable=True,
                      comment="Only for automatic escalations"),
            sa.Column("status", sa.String(length=20), nullable=False,
                      server_default="active", comment="active | resolved"),
            sa.Column("triggered_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("visible_to_roles", sa.JSON(), nullable=True),
            sa.Column("recipients", sa.JSON(), nullable=True,
                      comment="Emails notified for this event"),
            sa.Column("escalated_by", sa.Integer(), nullable=True),
            sa.Column("proposed_blocked", sa.Boolean(), nullable=False, server_default="0",
                      comment="Reporter asked for a block but lacked authority"),
            sa.Column("proposed_by_role", sa.String(length=30), nullable=True),
            sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("resolved_by", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["unit_id"], ["units.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["escalated_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["resolved_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_unit_escalations_tenant_id", "unit_escalations", ["tenant_id"])
        op.create_index("ix_unit_escalations_unit_id", "unit_escalations", ["unit_id"])
        op.create_index("ix_unit_esc_unit_level", "unit_escalations", ["unit_id", "level"])
        op.create_index("ix_unit_esc_tenant_status", "unit_escalations", ["tenant_id", "status"])

    if "unit_status_events" not in existing:
        op.create_table(
            "unit_status_events",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("unit_id", sa.Integer(), nullable=False),
            sa.Column("event_type", sa.String(length=30), nullable=False),
            sa.Column("old_status", sa.String(length=20), nullable=True),
            sa.Column("new_status", sa.String(length=20), nullable=True),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("triggered_by", sa.Integer(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["unit_id"], ["units.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["triggered_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_unit_status_events_tenant_id", "unit_status_events", ["tenant_id"])
        op.create_index("ix_unit_status_events_unit_id", "unit_status_events", ["unit_id"])
        op.create_index("ix_unit_status_events_unit_time", "unit_status_events", ["unit_id", "created_at"])

    # ── Notifications ─────────────────────────────────────────────────────
    if "escalation_notifications" not in existing:
        op.create_table(
            "escalation_notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("unit_id", sa.Integer(), nullable=True),
            sa.Column("escalation_id", sa.Integer(), nullable=True),
            sa.Column("notification_type", sa.String(length=30), nullable=False),
            sa.Column("recipient_user_id", sa.Integer(), nullable=True),
            sa.Column("recipient_email", sa.String(length=255), nullable=False),
            sa.Column("recipient_name", sa.String(length=200), nullable=True),
            sa.Column("recipient_role", sa.String(length=30), nullable=True),
            sa.Column("channel", sa.String(length=20), nullable=False, server_default="email"),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="normal"),
            sa.Column("subject", sa.String(length=500), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("template_data", sa.JSON(), nullable=True),
            sa.Column("dedupe_key", sa.String(length=64), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False,
                      server_default="pending", comment="pending | sent | failed"),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["unit_id"], ["units.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["escalation_id"], ["unit_escalations.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["recipient_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("dedupe_key", name="uq_esc_notif_dedupe_key"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_escalation_notifications_tenant_id", "escalation_notifications", ["tenant_id"])
        op.create_index("ix_escalation_notifications_unit_id", "escalation_notifications", ["unit_id"])
        op.create_index("ix_escalation_notifications_recipient_email", "escalation_notifications",
                        ["recipient_email"])
        op.create_index("ix_esc_notif_status_created", "escalation_notifications", ["status", "created_at"])
        op.create_index("ix_esc_notif_unit_recipient", "escalation_notifications",
                        ["unit_id", "recipient_email"])

    # ── Scheduled jobs ────────────────────────────────────────────────────
    if "scheduled_jobs" not in existing:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False,
                      comment="unit_escalation_sweep, deadline_reminders, ..."),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True,
                      comment="Recommended trigger interval"),
            sa.Column("status", sa.String(length=20), nullable=True, comment="active, paused"),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True,
                      comment="success, failed"),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def downgrade():
    op.drop_table("scheduled_jobs")
    op.drop_table("escalation_notifications")
    op.drop_table("unit_status_events")
    op.drop_table("unit_escalations")
    op.drop_table("unit_proofs")
    op.drop_table("units")
    op.drop_table("workstreams")
    op.drop_table("programs")
    op.drop_table("users")
    op.drop_table("tenants")
