from typing import Optional

from sqlalchemy.orm import Session

from node_manager.core.status import ChainStatus, EncryptType, RunType, transition
from node_manager.models.chain import Chain


def get_by_name(db: Session, chain_name: str) -> Optional[Chain]:
    return db.query(Chain).filter(Chain.chain_name == chain_name).first()


def get_by_id(db: Session, chain_id: int) -> Optional[Chain]:
    return db.query(Chain).filter(Chain.id == chain_id).first()


def insert(
    db: Session,
    *,
    chain_name: str,
    version: str,
    encrypt_type: EncryptType,
    root_dir: str,
    webase_sign_addr: str,
    chain_desc: Optional[str] = None,
    run_type: RunType = RunType.DOCKER,
) -> Chain:
    chain = Chain(
        chain_name=chain_name,
        chain_desc=chain_desc or chain_name,
        version=version,
        encrypt_type=int(encrypt_type),
        chain_status=ChainStatus.INITIALIZED,
        root_dir=root_dir,
        run_type=run_type.value,
        webase_sign_addr=webase_sign_addr,
    )
    db.add(chain)
    db.flush()
    return chain


def upgrade(db: Session, chain: Chain, version: str) -> Chain:
    # status is kept, only the image version moves
    chain.version = version
    db.flush()
    return chain


def update_status(db: Session, chain: Chain, status: ChainStatus) -> Chain:
    chain.chain_status = transition(chain.chain_status, status)
    db.flush()
    return chain


def delete(db: Session, chain: Chain) -> None:
    db.query(Chain).filter(Chain.id == chain.id).delete(synchronize_session="fetch")
    db.flush()
