from typing import List, Optional

from sqlalchemy.orm import Session
import structlog

from node_manager.core.status import HostStatus, transition
from node_manager.models.agency import Agency
from node_manager.models.front import Front
from node_manager.models.host import Host

logger = structlog.get_logger(__name__)


def insert(
    db: Session,
    agency_id: int,
    agency_name: str,
    ip: str,
    root_dir: str,
) -> Host:
    host = Host(
        ip=ip,
        agency_id=agency_id,
        agency_name=agency_name,
        root_dir=root_dir,
        status=HostStatus.ADDED,
    )
    db.add(host)
    db.flush()
    return host


def get_by_id(db: Session, host_id: int) -> Optional[Host]:
    return db.query(Host).filter(Host.id == host_id).first()


def select_by_chain(db: Session, chain_id: int) -> List[Host]:
    return (
        db.query(Host)
        .join(Agency, Host.agency_id == Agency.id)
        .filter(Agency.chain_id == chain_id)
        .order_by(Host.id.asc())
        .all()
    )


def find_by_ip(hosts: List[Host], ip: str) -> Optional[Host]:
    return next((host for host in hosts if host.ip.lower() == ip.lower()), None)


def update_status(db: Session, host: Host, status: HostStatus, remark: Optional[str] = None) -> Host:
    host.status = transition(host.status, status)
    host.remark = remark
    db.flush()
    return host


def delete_if_unused(db: Session, delete_host: bool, host_id: int) -> bool:
    """Delete the host when asked to and no front runs on it any more."""
    if not delete_host:
        return False

    front_count = db.query(Front).filter(Front.host_id == host_id).count()
    if front_count > 0:
        logger.info("host still has fronts, keep it", host_id=host_id, fronts=front_count)
        return False

    deleted = db.query(Host).filter(Host.id == host_id).delete(synchronize_session="fetch")
    db.flush()
    return deleted > 0


def delete_by_chain(db: Session, chain_id: int) -> int:
    agency_ids = [row.id for row in db.query(Agency.id).filter(Agency.chain_id == chain_id)]
    if not agency_ids:
        return 0
    deleted = (
        db.query(Host)
        .filter(Host.agency_id.in_(agency_ids))
        .delete(synchronize_session="fetch")
    )
    db.flush()
    return deleted
