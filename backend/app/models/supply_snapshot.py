"""Circulating supply snapshot model."""

from sqlalchemy import Column, String, BigInteger, JSON

from .database import Base


class SupplySnapshot(Base):
    """Point-in-time circulating supply for every listed coin.

    Identity is the 5-minute bucket key (``YYYY-MM-DD-HHMM``, UTC), so
    writing the same bucket twice overwrites rather than duplicates.
    """
    __tablename__ = "supply_snapshots"

    bucket_key = Column(String(16), primary_key=True)

    # Epoch milliseconds; nullable for rows written before the column existed
    timestamp = Column(BigInteger, nullable=True, index=True)

    # {coin_id: circulating_supply}
    supplies = Column(JSON, nullable=False, default=dict)

    def __repr__(self):
        return f"<SupplySnapshot(bucket={self.bucket_key}, coins={len(self.supplies or {})})>"
