from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from node_manager.core.status import FrontStatus, GroupStatus, transition
from node_manager.models.front import Front
from node_manager.models.front_group import FrontGroup


def insert(db: Session, **fields) -> Front:
    fields.setdefault("status", FrontStatus.INITIALIZED)
    front = Front(**fields)
    db.add(front)
    db.flush()
    return front


def get_by_node_id(db: Session, node_id: str) -> Optional[Front]:
    return db.query(Front).filter(Front.node_id == node_id).first()


def select_by_host(db: Session, host_id: int) -> List[Front]:
    return db.query(Front).filter(Front.host_id == host_id).order_by(Front.host_index.asc()).all()


def select_by_chain(db: Session, chain_id: int) -> List[Front]:
    return db.query(Front).filter(Front.chain_id == chain_id).order_by(Front.front_id.asc()).all()


def select_by_groups(db: Session, chain_id: int, group_ids: Iterable[int]) -> List[Front]:
    group_ids = list(group_ids)
    if not group_ids:
        return []
    return (
        db.query(Front)
        .join(FrontGroup, FrontGroup.front_id == Front.front_id)
        .filter(Front.chain_id == chain_id, FrontGroup.group_id.in_(group_ids))
        .distinct()
        .order_by(Front.front_id.asc())
        .all()
    )


def group_ids_of(db: Session, front_id: int) -> List[int]:
    rows = db.query(FrontGroup.group_id).filter(FrontGroup.front_id == front_id)
    return sorted(row.group_id for row in rows)


def next_host_index(db: Session, host_id: int) -> int:
    fronts = select_by_host(db, host_id)
    return max((f.host_index for f in fronts), default=-1) + 1


def new_front_group(db: Session, front: Front, group_id: int, status: GroupStatus) -> FrontGroup:
    mapping = FrontGroup(
        front_id=front.front_id,
        group_id=group_id,
        chain_id=front.chain_id,
        status=status,
    )
    db.add(mapping)
    db.flush()
    return mapping


def update_group_map_status(db: Session, chain_id: int, group_id: int, status: GroupStatus) -> None:
    for mapping in (
        db.query(FrontGroup)
        .filter(FrontGroup.chain_id == chain_id, FrontGroup.group_id == group_id)
        .all()
    ):
        mapping.status = transition(mapping.status, status)
    db.flush()


def update_status(db: Session, front: Front, status: FrontStatus) -> Front:
    front.status = transition(front.status, status)
    db.flush()
    return front


def remove_front(db: Session, front_id: int) -> None:
    db.query(FrontGroup).filter(FrontGroup.front_id == front_id).delete(synchronize_session="fetch")
    db.query(Front).filter(Front.front_id == front_id).delete(synchronize_session="fetch")
    db.flush()


def delete_by_chain(db: Session, chain_id: int) -> int:
    db.query(FrontGroup).filter(FrontGroup.chain_id == chain_id).delete(synchronize_session="fetch")
    deleted = db.query(Front).filter(Front.chain_id == chain_id).delete(synchronize_session="fetch")
    db.flush()
    return deleted


def update_image_tag_by_chain(db: Session, chain_id: int, image_tag: str) -> None:
    for front in select_by_chain(db, chain_id):
        front.image_tag = image_tag
    db.flush()
