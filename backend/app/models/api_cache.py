"""Dataset document model.

One row per logical dataset ("crypto_list", "supply_tracking", "fed_rate", ...)
holding the latest payload. Rows are overwritten wholesale on every
successful update.
"""

from datetime import datetime
from sqlalchemy import Column, String, BigInteger, DateTime, JSON

from .database import Base


class ApiCacheDocument(Base):
    """Latest persisted payload for a dataset."""
    __tablename__ = "api_cache"

    key = Column(String(64), primary_key=True)
    data = Column(JSON, nullable=True)

    # Epoch milliseconds of the update that produced `data`
    last_update = Column(BigInteger, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_document(self) -> dict:
        return {
            "_id": self.key,
            "data": self.data,
            "lastUpdate": self.last_update,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ApiCacheDocument(key={self.key}, last_update={self.last_update})>"
