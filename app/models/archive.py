"""
Archive Mixin.

Archiving is the only deletion path for programs, workstreams and units.
An archived record stays in the table with all of its audit history; it is
simply excluded from escalation evaluation and from the attention queue.

Usage:
    class Unit(ArchiveMixin, TenantModel):
        ...

    unit.archive(user_id)
    db.session.commit()
"""

from datetime import datetime, timezone

from app.models import db


class ArchiveMixin:
    """Mixin that adds archive (soft delete) support to a model."""

    archived_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)
    archived_by = db.Column(db.Integer, nullable=True)

    def archive(self, user_id=None):
        """Mark this record as archived."""
        self.archived_at = datetime.now(timezone.utc)
        self.archived_by = user_id

    @property
    def is_archived(self):
        return self.archived_at is not None
