"""Create take-home diversion control tables."""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: str | Sequence[str] | None = None
branch_labels = None
depends_on = None


def _uuid():
    return postgresql.UUID(as_uuid=True)


def upgrade() -> None:
    """Create patient, bottle, scan, alert, hold, review, DEA, notification, and audit tables."""

    op.create_table(
        "patients",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("mrn", sa.String(), nullable=True, unique=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "patient_home_addresses",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("patient_id", _uuid(), sa.ForeignKey("patients.id"), nullable=False),
        sa.Column("address_type", sa.String(), nullable=True),
        sa.Column("street_address", sa.String(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("geofence_radius_meters", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
    )
    op.create_table(
        "takehome_orders",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("patient_id", _uuid(), sa.ForeignKey("patients.id"), nullable=False),
        sa.Column("days", sa.Integer(), nullable=False),
        sa.Column("risk_level", sa.String(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("prescriber_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "takehome_bottles",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("patient_id", _uuid(), sa.ForeignKey("patients.id"), nullable=False),
        sa.Column("organization_id", _uuid(), nullable=True),
        sa.Column("authorization_id", _uuid(), nullable=True),
        sa.Column("bottle_number", sa.Integer(), nullable=False),
        sa.Column("medication_name", sa.String(), nullable=False),
        sa.Column("dose_amount", sa.Float(), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("dosing_window_start", sa.Time(), nullable=True),
        sa.Column("dosing_window_end", sa.Time(), nullable=True),
        sa.Column("dispensed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispensed_by", sa.String(), nullable=True),
        sa.Column("dispensing_latitude", sa.Float(), nullable=True),
        sa.Column("dispensing_longitude", sa.Float(), nullable=True),
        sa.Column("qr_code_data", sa.Text(), nullable=False),
        sa.Column("qr_code_hash", sa.String(length=64), nullable=False, unique=True),
        sa.Column("label_code", sa.String(length=12), nullable=True, unique=True),
        sa.Column("status", sa.String(), nullable=False, server_default="dispensed"),
        sa.Column("compliance_status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("non_compliance_reason", sa.String(), nullable=True),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consumption_latitude", sa.Float(), nullable=True),
        sa.Column("consumption_longitude", sa.Float(), nullable=True),
    )
    op.create_index(
        "ix_takehome_bottles_scheduled_date",
        "takehome_bottles",
        ["scheduled_date"],
    )
    op.create_table(
        "takehome_scan_logs",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("bottle_id", _uuid(), sa.ForeignKey("takehome_bottles.id"), nullable=True),
        sa.Column("qr_code_hash", sa.String(length=64), nullable=True),
        sa.Column("patient_id", _uuid(), nullable=True),
        sa.Column("scan_type", sa.String(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("accuracy_meters", sa.Float(), nullable=True),
        sa.Column("address_resolved", sa.String(), nullable=True),
        sa.Column("is_within_home_geofence", sa.Boolean(), nullable=True),
        sa.Column("distance_from_home_meters", sa.Float(), nullable=True),
        sa.Column("is_within_dosing_window", sa.Boolean(), nullable=True),
        sa.Column("minutes_outside_window", sa.Integer(), nullable=True),
        sa.Column("verification_passed", sa.Boolean(), nullable=False),
        sa.Column("verification_failures", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("scanned_by", sa.String(), nullable=True),
        sa.Column("scanned_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "takehome_compliance_alerts",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("patient_id", _uuid(), sa.ForeignKey("patients.id"), nullable=False),
        sa.Column("bottle_id", _uuid(), sa.ForeignKey("takehome_bottles.id"), nullable=True),
        sa.Column("scan_log_id", _uuid(), sa.ForeignKey("takehome_scan_logs.id"), nullable=True),
        sa.Column("alert_type", sa.String(), nullable=False),
        sa.Column("severity", sa.String(), nullable=True),
        sa.Column("alert_title", sa.String(), nullable=False),
        sa.Column("alert_description", sa.Text(), nullable=True),
        sa.Column("callback_required", sa.Boolean(), nullable=True),
        sa.Column("callback_due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("clinical_review_required", sa.Boolean(), nullable=True),
        sa.Column("dea_reportable", sa.Boolean(), nullable=True),
        sa.Column("notified", sa.Boolean(), nullable=True),
        sa.Column("status", sa.String(), nullable=True, server_default="open"),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("bottle_id", "alert_type", name="uq_alert_bottle_type"),
    )
    op.create_table(
        "compliance_holds",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("patient_id", _uuid(), sa.ForeignKey("patients.id"), nullable=False),
        sa.Column("hold_type", sa.String(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("severity", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("requires_clearance_from", sa.JSON(), nullable=True),
        sa.Column("clearance_signatures", sa.JSON(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_by_role", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cleared_by", sa.String(), nullable=True),
        sa.Column("cleared_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("override_reason", sa.Text(), nullable=True),
        sa.Column("override_type", sa.String(), nullable=True),
        sa.Column("overridden_by", sa.String(), nullable=True),
        sa.Column("review_due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_compliance_holds_patient_status",
        "compliance_holds",
        ["patient_id", "status"],
    )
    op.create_table(
        "compliance_review_tasks",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("hold_id", _uuid(), sa.ForeignKey("compliance_holds.id"), nullable=False),
        sa.Column("patient_id", _uuid(), sa.ForeignKey("patients.id"), nullable=False),
        sa.Column("task_type", sa.String(), nullable=True),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(), nullable=True, server_default="pending"),
        sa.Column("completed_by", sa.String(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "dea_diversion_reports",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("event_data", sa.JSON(), nullable=True),
        sa.Column("dea_reference_number", sa.String(), nullable=False, unique=True),
        sa.Column("sync_status", sa.String(), nullable=True),
        sa.Column("reported_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "patient_notifications",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("patient_id", _uuid(), sa.ForeignKey("patients.id"), nullable=False),
        sa.Column("alert_id", _uuid(), sa.ForeignKey("takehome_compliance_alerts.id"), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("channel", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=True, server_default="queued"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "audit_trail",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("actor", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("target_type", sa.String(), nullable=True),
        sa.Column("target_id", _uuid(), nullable=True),
        sa.Column("patient_id", _uuid(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    """Drop take-home diversion control tables."""

    op.drop_table("audit_trail")
    op.drop_table("patient_notifications")
    op.drop_table("dea_diversion_reports")
    op.drop_table("compliance_review_tasks")
    op.drop_index("ix_compliance_holds_patient_status", table_name="compliance_holds")
    op.drop_table("compliance_holds")
    op.drop_table("takehome_compliance_alerts")
    op.drop_table("takehome_scan_logs")
    op.drop_index("ix_takehome_bottles_scheduled_date", table_name="takehome_bottles")
    op.drop_table("takehome_bottles")
    op.drop_table("takehome_orders")
    op.drop_table("patient_home_addresses")
    op.drop_table("patients")
