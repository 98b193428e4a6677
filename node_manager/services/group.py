from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from node_manager.core.status import GroupStatus, transition
from node_manager.models.chain import Chain
from node_manager.models.group import Group


def get(db: Session, chain_id: int, group_id: int) -> Optional[Group]:
    return (
        db.query(Group)
        .filter(Group.chain_id == chain_id, Group.group_id == group_id)
        .first()
    )


def select_by_chain(db: Session, chain_id: int) -> List[Group]:
    return db.query(Group).filter(Group.chain_id == chain_id).order_by(Group.group_id.asc()).all()


def save_group(
    db: Session,
    group_id: int,
    node_count: int,
    chain: Chain,
    status: GroupStatus = GroupStatus.MAINTAINING,
) -> Group:
    group = Group(
        group_id=group_id,
        chain_id=chain.id,
        chain_name=chain.chain_name,
        group_name=f"group{group_id}",
        group_type="DEPLOY",
        node_count=node_count,
        status=status,
    )
    db.add(group)
    db.flush()
    return group


def update_node_count(db: Session, chain_id: int, group_id: int, node_count: int) -> None:
    group = get(db, chain_id, group_id)
    if group is not None:
        group.node_count = node_count
        db.flush()


def save_or_update_node_count(db: Session, group_id: int, num: int, chain: Chain) -> Tuple[Group, bool]:
    """
    Add ``num`` nodes to a group, creating it when it does not exist.
    Returns (group, is_new_group).
    """
    group = get(db, chain.id, group_id)
    if group is None:
        return save_group(db, group_id, num, chain), True

    group.node_count += num
    group.status = transition(group.status, GroupStatus.MAINTAINING)
    db.flush()
    return group, False


def decrement_node_count(db: Session, chain_id: int, group_id: int, num: int = 1) -> None:
    group = get(db, chain_id, group_id)
    if group is not None:
        group.node_count = max(group.node_count - num, 0)
        db.flush()


def update_status(db: Session, group: Group, status: GroupStatus) -> Group:
    group.status = transition(group.status, status)
    db.flush()
    return group


def delete_by_chain(db: Session, chain_id: int) -> int:
    deleted = db.query(Group).filter(Group.chain_id == chain_id).delete(synchronize_session="fetch")
    db.flush()
    return deleted
