from typing import List

from sqlalchemy.orm import Session

from node_manager.core.status import NodeStatus, transition
from node_manager.models.node import Node


def node_name(group_id: int, node_id: str) -> str:
    return f"{group_id}_{node_id}"


def insert(
    db: Session,
    *,
    node_id: str,
    group_id: int,
    chain_id: int,
    ip: str,
    p2p_port: int,
    status: NodeStatus = NodeStatus.DEAD,
) -> Node:
    name = node_name(group_id, node_id)
    node = Node(
        node_id=node_id,
        node_name=name,
        group_id=group_id,
        chain_id=chain_id,
        node_ip=ip,
        p2p_port=p2p_port,
        description=name,
        status=status,
    )
    db.add(node)
    db.flush()
    return node


def select_by_node_id(db: Session, chain_id: int, node_id: str) -> List[Node]:
    return (
        db.query(Node)
        .filter(Node.chain_id == chain_id, Node.node_id == node_id)
        .order_by(Node.group_id.asc())
        .all()
    )


def update_status_by_node_id(db: Session, chain_id: int, node_id: str, status: NodeStatus) -> None:
    for node in select_by_node_id(db, chain_id, node_id):
        node.status = transition(node.status, status)
    db.flush()


def delete_by_node_id(db: Session, chain_id: int, node_id: str) -> int:
    deleted = (
        db.query(Node)
        .filter(Node.chain_id == chain_id, Node.node_id == node_id)
        .delete(synchronize_session="fetch")
    )
    db.flush()
    return deleted


def delete_by_chain(db: Session, chain_id: int) -> int:
    deleted = db.query(Node).filter(Node.chain_id == chain_id).delete(synchronize_session="fetch")
    db.flush()
    return deleted
