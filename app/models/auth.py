"""
Auth Models — organizations (tenants) and users.

Every user belongs to exactly one organization and holds exactly one role.
Platform admins still carry a home tenant, but their authority is
organization-agnostic (see app/services/tenant_guard.py).
"""

from datetime import datetime, timezone

from app.models import db


# ═══════════════════════════════════════════════════════════════
# ROLES
# ═══════════════════════════════════════════════════════════════

PLATFORM_ADMIN = "PLATFORM_ADMIN"
PROGRAM_OWNER = "PROGRAM_OWNER"
WORKSTREAM_LEAD = "WORKSTREAM_LEAD"
FIELD_CONTRIBUTOR = "FIELD_CONTRIBUTOR"
CLIENT_VIEWER = "CLIENT_VIEWER"

VALID_ROLES = {
    PLATFORM_ADMIN,
    PROGRAM_OWNER,
    WORKSTREAM_LEAD,
    FIELD_CONTRIBUTOR,
    CLIENT_VIEWER,
}

# Roles allowed to approve/reject evidence, confirm units and confirm blocks
REVIEWER_ROLES = frozenset({PLATFORM_ADMIN, PROGRAM_OWNER, WORKSTREAM_LEAD})
# Roles allowed to lift a block
UNBLOCK_ROLES = frozenset({PLATFORM_ADMIN, PROGRAM_OWNER})
READ_ONLY_ROLES = frozenset({CLIENT_VIEWER})


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS (organizations)
# ═══════════════════════════════════════════════════════════════
class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    settings = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    users = db.relationship("User", back_populates="tenant", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "settings": self.settings or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Tenant {self.slug}>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    email = db.Column(db.String(200), nullable=False)
    full_name = db.Column(db.String(200))
    role = db.Column(db.String(30), nullable=False, default=FIELD_CONTRIBUTOR,
                     comment="PLATFORM_ADMIN | PROGRAM_OWNER | WORKSTREAM_LEAD | "
                             "FIELD_CONTRIBUTOR | CLIENT_VIEWER")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Same email can exist in different tenants
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        db.Index("ix_users_tenant_role", "tenant_id", "role"),
        db.Index("ix_users_email", "email"),
    )

    tenant = db.relationship("Tenant", back_populates="users")

    @property
    def display_name(self):
        return self.full_name or self.email.split("@")[0]

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.email} [{self.role}]>"
