from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint, func

from scout_api.db.session import Base


class StorageEntry(Base):
    __tablename__ = "storage_entries"
    __table_args__ = (UniqueConstraint("namespace", "key", name="uq_storage_namespace_key"),)

    id = Column(Integer, primary_key=True, index=True)
    namespace = Column(String(64), nullable=False, index=True)
    key = Column(String(255), nullable=False)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
