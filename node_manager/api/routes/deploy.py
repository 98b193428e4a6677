from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from node_manager.db.session import get_db
from node_manager.schemas.deploy import (
    AddNodesRequest,
    DeployChainRequest,
    DeployResult,
    UpgradeRequest,
)
from node_manager.services.deploy import DeployService, get_deploy_service

router = APIRouter(prefix="/deploy", tags=["deploy"])


@router.post("/init", response_model=DeployResult)
def deploy_chain(
    payload: DeployChainRequest,
    db: Session = Depends(get_db),
    deploy_service: DeployService = Depends(get_deploy_service),
):
    return deploy_service.deploy_chain(
        db,
        chain_name=payload.chain_name,
        ip_conf=payload.ip_conf,
        tag_id=payload.tag_id,
        root_dir_on_host=payload.root_dir_on_host,
        webase_sign_addr=payload.webase_sign_addr,
    )


@router.post("/node/add", response_model=DeployResult)
def add_nodes(
    payload: AddNodesRequest,
    db: Session = Depends(get_db),
    deploy_service: DeployService = Depends(get_deploy_service),
):
    return deploy_service.add_nodes(
        db,
        chain_name=payload.chain_name,
        group_id=payload.group_id,
        ip=payload.ip,
        agency_name=payload.agency_name,
        num=payload.num,
    )


@router.post("/upgrade", response_model=DeployResult)
def upgrade(
    payload: UpgradeRequest,
    db: Session = Depends(get_db),
    deploy_service: DeployService = Depends(get_deploy_service),
):
    return deploy_service.upgrade(db, payload.chain_name, payload.tag_id)


@router.delete("/node/{node_id}", response_model=DeployResult)
def delete_node(
    node_id: str,
    delete_host: bool = Query(False, description="Also delete the host once it runs no node"),
    delete_agency: bool = Query(False, description="Also delete the agency once it has no host"),
    db: Session = Depends(get_db),
    deploy_service: DeployService = Depends(get_deploy_service),
):
    return deploy_service.delete_node(db, node_id, delete_host=delete_host, delete_agency=delete_agency)


@router.post("/node/{node_id}/start", response_model=DeployResult)
def start_node(
    node_id: str,
    db: Session = Depends(get_db),
    deploy_service: DeployService = Depends(get_deploy_service),
):
    return deploy_service.start_node(db, node_id)


@router.post("/node/{node_id}/stop", response_model=DeployResult)
def stop_node(
    node_id: str,
    db: Session = Depends(get_db),
    deploy_service: DeployService = Depends(get_deploy_service),
):
    return deploy_service.stop_node(db, node_id)


@router.delete("/chain/{chain_name}", response_model=DeployResult)
def delete_chain(
    chain_name: str,
    db: Session = Depends(get_db),
    deploy_service: DeployService = Depends(get_deploy_service),
):
    return deploy_service.delete_chain(db, chain_name)
