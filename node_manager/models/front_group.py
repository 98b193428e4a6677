from sqlalchemy import (
    Column,
    Integer,
    DateTime,
    ForeignKey,
    Enum,
    UniqueConstraint,
    func,
)

from node_manager.core.status import GroupStatus
from node_manager.db.base import Base


class FrontGroup(Base):
    __tablename__ = "front_groups"

    id = Column(Integer, primary_key=True, index=True)
    front_id = Column(Integer, ForeignKey("fronts.front_id", ondelete="CASCADE"), nullable=False)
    group_id = Column(Integer, nullable=False)  # operator group id
    chain_id = Column(Integer, ForeignKey("chains.id"), nullable=False, index=True)
    status = Column(Enum(GroupStatus, native_enum=False, length=32), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("front_id", "group_id", name="uq_front_group"),
    )
