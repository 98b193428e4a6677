from typing import List, Optional

from sqlalchemy.orm import Session
import structlog

from node_manager.models.agency import Agency
from node_manager.models.chain import Chain
from node_manager.models.host import Host

logger = structlog.get_logger(__name__)


def insert(db: Session, agency_name: str, chain: Chain) -> Agency:
    agency = Agency(
        agency_name=agency_name,
        agency_desc=agency_name,
        chain_id=chain.id,
        chain_name=chain.chain_name,
    )
    db.add(agency)
    db.flush()
    return agency


def get_by_id(db: Session, agency_id: int) -> Optional[Agency]:
    return db.query(Agency).filter(Agency.id == agency_id).first()


def get_by_chain_and_name(db: Session, chain_id: int, agency_name: str) -> Optional[Agency]:
    return (
        db.query(Agency)
        .filter(Agency.chain_id == chain_id, Agency.agency_name == agency_name)
        .first()
    )


def select_by_chain(db: Session, chain_id: int) -> List[Agency]:
    return db.query(Agency).filter(Agency.chain_id == chain_id).order_by(Agency.id.asc()).all()


def delete_if_unused(db: Session, delete_agency: bool, agency_id: int) -> bool:
    """Delete the agency when asked to and no host references it any more."""
    if not delete_agency:
        return False

    host_count = db.query(Host).filter(Host.agency_id == agency_id).count()
    if host_count > 0:
        logger.info("agency still has hosts, keep it", agency_id=agency_id, hosts=host_count)
        return False

    deleted = db.query(Agency).filter(Agency.id == agency_id).delete(synchronize_session="fetch")
    db.flush()
    return deleted > 0


def delete_by_chain(db: Session, chain_id: int) -> int:
    deleted = db.query(Agency).filter(Agency.chain_id == chain_id).delete(synchronize_session="fetch")
    db.flush()
    return deleted
