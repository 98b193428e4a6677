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

from node_manager.core.status import FrontStatus
from node_manager.db.base import Base


class Front(Base):
    __tablename__ = "fronts"

    front_id = Column(Integer, primary_key=True, index=True)
    node_id = Column(String, nullable=False, index=True)

    front_ip = Column(String, nullable=False)
    front_port = Column(Integer, nullable=False)

    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=False)
    agency_name = Column(String, nullable=False)
    host_id = Column(Integer, ForeignKey("hosts.id"), nullable=False, index=True)
    host_index = Column(Integer, nullable=False)  # N in node[N] on the host

    image_tag = Column(String, nullable=False)
    run_type = Column(String, nullable=False, server_default="DOCKER")
    container_name = Column(String, nullable=False)

    jsonrpc_port = Column(Integer, nullable=False)
    p2p_port = Column(Integer, nullable=False)
    channel_port = Column(Integer, nullable=False)

    chain_id = Column(Integer, ForeignKey("chains.id"), nullable=False, index=True)
    chain_name = Column(String, nullable=False)
    status = Column(Enum(FrontStatus, native_enum=False, length=32), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("chain_id", "node_id", name="uq_chain_front_node"),
    )
