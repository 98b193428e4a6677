from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
    Enum,
    UniqueConstraint,
    func,
)

from node_manager.core.status import GroupStatus
from node_manager.db.base import Base


class Group(Base):
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, index=True)

    # id chosen by the operator in the topology, not the row id
    group_id = Column(Integer, nullable=False)
    chain_id = Column(Integer, ForeignKey("chains.id"), nullable=False, index=True)
    chain_name = Column(String, nullable=False)

    group_name = Column(String, nullable=False)
    group_type = Column(String, nullable=False, server_default="DEPLOY")
    node_count = Column(Integer, nullable=False, server_default="0")
    status = Column(Enum(GroupStatus, native_enum=False, length=32), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("chain_id", "group_id", name="uq_chain_group"),
    )
