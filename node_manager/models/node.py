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

from node_manager.core.status import NodeStatus
from node_manager.db.base import Base


class Node(Base):
    __tablename__ = "nodes"

    id = Column(Integer, primary_key=True, index=True)
    node_id = Column(String, nullable=False, index=True)
    node_name = Column(String, nullable=False)  # "<group_id>_<node_id>"
    group_id = Column(Integer, nullable=False)
    chain_id = Column(Integer, ForeignKey("chains.id"), nullable=False, index=True)

    node_ip = Column(String, nullable=False)
    p2p_port = Column(Integer, nullable=False)
    description = Column(String, nullable=True)
    status = Column(Enum(NodeStatus, native_enum=False, length=32), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("chain_id", "group_id", "node_id", name="uq_chain_group_node"),
    )
