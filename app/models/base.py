"""
TenantModel — Abstract base class for organization-scoped models.

Every engine table carries the owning organization's ``tenant_id`` directly,
so the tenant guard can compare it without walking
unit → workstream → program → tenant joins.
"""

from app.models import db


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
