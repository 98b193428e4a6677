from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from node_manager.db.base import Base


class Agency(Base):
    __tablename__ = "agencies"

    id = Column(Integer, primary_key=True, index=True)
    agency_name = Column(String, nullable=False)
    agency_desc = Column(String, nullable=True)

    chain_id = Column(Integer, ForeignKey("chains.id"), nullable=False, index=True)
    chain_name = Column(String, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    chain = relationship("Chain", back_populates="agencies")
    hosts = relationship("Host", back_populates="agency")

    __table_args__ = (
        UniqueConstraint("chain_id", "agency_name", name="uq_chain_agency_name"),
    )
