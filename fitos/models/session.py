"""
Session Model

Server-side login sessions. The client holds an opaque token (cookie or
body); only its SHA-256 is stored, so a database leak does not leak
usable sessions. Access tokens (JWT) reference the session by id and stop
working as soon as the session is revoked or expires.
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from fitos.database import Base
import uuid


class Session(Base):
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    token_hash = Column(String(64), unique=True, nullable=False)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(255), nullable=True)

    expires_at = Column(DateTime, nullable=False)
    # Last time the expiry was pushed forward
    refreshed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    revoked_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="sessions")

    __table_args__ = (
        Index('idx_session_user_revoked', 'user_id', 'revoked_at'),
        Index('idx_session_expires', 'expires_at'),
    )

    def __repr__(self):
        return f"<Session {self.id} user={self.user_id}>"

    def is_live(self, now: datetime = None) -> bool:
        now = now or datetime.utcnow()
        return self.revoked_at is None and self.expires_at > now
