from sqlalchemy import Column, Integer, String, DateTime, func

from node_manager.db.base import Base


class ImageTag(Base):
    __tablename__ = "image_tags"

    id = Column(Integer, primary_key=True, index=True)
    config_name = Column(String, nullable=False)
    config_type = Column(String, nullable=False, server_default="docker_image")
    config_value = Column(String, nullable=True)  # e.g. v2.7.2, v2.7.2-gm

    created_at = Column(DateTime(timezone=True), server_default=func.now())
