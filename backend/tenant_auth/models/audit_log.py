"""
Append-only audit trail of security-relevant events
"""

from sqlalchemy import Column, String, ForeignKey, JSON, Uuid
from sqlalchemy.orm import Session
from typing import Any, Dict, Optional
import uuid

from tenant_auth.models.base import BaseModel


class AuditLog(BaseModel):
    __tablename__ = "audit_logs"

    user_id = Column(
        Uuid(as_uuid=True),
        ForeignKey('users.id', ondelete='SET NULL'),
        nullable=True,
        index=True
    )

    event = Column(String(100), nullable=False, index=True)

    meta = Column(JSON, default=lambda: {}, nullable=False)

    ip = Column(String(64), nullable=True)

    @classmethod
    def record(
        cls,
        db: Session,
        event: str,
        user_id: Optional[uuid.UUID] = None,
        meta: Optional[Dict[str, Any]] = None,
        ip: Optional[str] = None,
    ) -> "AuditLog":
        """Add an entry to the session; the caller commits"""
        entry = cls(user_id=user_id, event=event, meta=meta or {}, ip=ip)
        db.add(entry)
        return entry
