"""Add approved travel exceptions for take-home geofencing."""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_02"
down_revision: str | Sequence[str] | None = "20261019_01"
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the travel exception table."""

    op.create_table(
        "takehome_travel_exceptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("patients.id"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("temporary_address", sa.String(), nullable=True),
        sa.Column("temporary_latitude", sa.Float(), nullable=True),
        sa.Column("temporary_longitude", sa.Float(), nullable=True),
        sa.Column("temporary_geofence_radius_meters", sa.Float(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("requested_by", sa.String(), nullable=True),
        sa.Column("decided_by", sa.String(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_travel_exceptions_patient_dates",
        "takehome_travel_exceptions",
        ["patient_id", "start_date", "end_date"],
    )


def downgrade() -> None:
    """Drop the travel exception table."""

    op.drop_index("ix_travel_exceptions_patient_dates", table_name="takehome_travel_exceptions")
    op.drop_table("takehome_travel_exceptions")
