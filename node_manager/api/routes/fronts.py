from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from node_manager.db.session import get_db
from node_manager.models.front import Front
from node_manager.schemas.deploy import DeployResult
from node_manager.schemas.front import FrontRead

router = APIRouter(prefix="/fronts", tags=["fronts"])


@router.get("/all", response_model=DeployResult)
def list_fronts(
    chain_name: Optional[str] = Query(None, description="Only fronts of this chain"),
    page: int = Query(1, ge=1, description="Page number (starting from 1)"),
    db: Session = Depends(get_db),
):
    page_size = 10
    skip = (page - 1) * page_size

    query = db.query(Front)
    if chain_name:
        query = query.filter(Front.chain_name == chain_name)

    fronts = (
        query
        .order_by(Front.front_id.asc())
        .offset(skip)
        .limit(page_size)
        .all()
    )

    data = [FrontRead.model_validate(front).model_dump(mode="json") for front in fronts]
    return DeployResult(data=data)
