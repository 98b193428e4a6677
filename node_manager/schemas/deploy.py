from typing import Any, List, Optional

from pydantic import BaseModel, Field

from node_manager.core.errors import SUCCESS_CODE


class DeployResult(BaseModel):
    code: int = SUCCESS_CODE
    message: str = "success"
    data: Optional[Any] = None

    @property
    def success(self) -> bool:
        return self.code == SUCCESS_CODE


class DeployChainRequest(BaseModel):
    chain_name: str
    ip_conf: List[str]
    tag_id: int
    root_dir_on_host: str = "/opt/fisco"
    webase_sign_addr: str


class AddNodesRequest(BaseModel):
    chain_name: str
    group_id: int = Field(..., ge=1)
    ip: str
    agency_name: Optional[str] = None
    num: int


class UpgradeRequest(BaseModel):
    chain_name: str
    tag_id: int
