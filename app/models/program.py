"""
Program hierarchy models.

Hierarchy:
    Tenant (organization) → Program → Workstream → Unit

Programs and workstreams are managed outside the engine; the engine reads
them to resolve names for notifications and to scope recipients.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import TenantModel
from app.models.archive import ArchiveMixin


class Program(ArchiveMixin, TenantModel):
    __tablename__ = "programs"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    workstreams = db.relationship("Workstream", back_populates="program", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "owner_id": self.owner_id,
            "is_archived": self.is_archived,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Program {self.id}: {self.name}>"


class Workstream(ArchiveMixin, TenantModel):
    __tablename__ = "workstreams"

    id = db.Column(db.Integer, primary_key=True)
    program_id = db.Column(
        db.Integer, db.ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    lead_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    program = db.relationship("Program", back_populates="workstreams")
    units = db.relationship("Unit", back_populates="workstream", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "program_id": self.program_id,
            "name": self.name,
            "lead_id": self.lead_id,
            "is_archived": self.is_archived,
        }

    def __repr__(self):
        return f"<Workstream {self.id}: {self.name}>"
