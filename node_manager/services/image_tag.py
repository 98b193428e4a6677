from sqlalchemy.orm import Session

from node_manager.core.errors import InvalidTag
from node_manager.models.image_tag import ImageTag


def get_image(db: Session, tag_id: int) -> str:
    """
    Resolve a tag id to its image reference (e.g. "v2.7.2-gm").
    Raises InvalidTag when the row is missing or its value is blank.
    """
    tag = db.query(ImageTag).filter(ImageTag.id == tag_id).first()
    if not tag or not (tag.config_value or "").strip():
        raise InvalidTag(f"Image tag id {tag_id} does not exist")
    return tag.config_value.strip()
