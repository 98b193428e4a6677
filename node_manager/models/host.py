from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, func
from sqlalchemy.orm import relationship

from node_manager.core.status import HostStatus
from node_manager.db.base import Base


class Host(Base):
    __tablename__ = "hosts"

    id = Column(Integer, primary_key=True, index=True)
    ip = Column(String, nullable=False, index=True)

    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=False, index=True)
    agency_name = Column(String, nullable=False)

    root_dir = Column(String, nullable=False)
    status = Column(Enum(HostStatus, native_enum=False, length=32), nullable=False)
    remark = Column(String, nullable=True)  # last init error, if any

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    agency = relationship("Agency", back_populates="hosts")
