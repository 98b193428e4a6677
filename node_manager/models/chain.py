from sqlalchemy import Column, Integer, String, DateTime, Enum, func
from sqlalchemy.orm import relationship

from node_manager.core.status import ChainStatus
from node_manager.db.base import Base


class Chain(Base):
    __tablename__ = "chains"

    id = Column(Integer, primary_key=True, index=True)
    chain_name = Column(String, unique=True, nullable=False)
    chain_desc = Column(String, nullable=True)

    # image tag, e.g. v2.7.2 or v2.7.2-gm
    version = Column(String, nullable=False)
    encrypt_type = Column(Integer, nullable=False, server_default="0")
    chain_status = Column(Enum(ChainStatus, native_enum=False, length=32), nullable=False)

    # root dir on the remote hosts, e.g. /opt/fisco
    root_dir = Column(String, nullable=False)
    run_type = Column(String, nullable=False, server_default="DOCKER")
    webase_sign_addr = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    agencies = relationship("Agency", back_populates="chain")
