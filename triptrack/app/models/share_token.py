"""
Share token database model.

Time-boxed, unauthenticated read access to one request's tracking view.
"""

from sqlalchemy import Column, Integer, String, DateTime
from triptrack.app.db.session import Base


class ShareToken(Base):
    """
    Share token.

    Only the SHA-256 digest of the token is stored; the raw value is handed
    out once at issuance. Tokens are never renewed, only re-issued.
    """
    __tablename__ = "share_tokens"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    request_id = Column(Integer, nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)

    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<ShareToken(id={self.id}, request_id={self.request_id}, expires_at={self.expires_at})>"
