from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from node_manager.core.status import FrontStatus


class FrontRead(BaseModel):
    front_id: int
    node_id: str
    front_ip: str
    front_port: int
    agency_name: str
    host_index: int
    image_tag: str
    container_name: str
    jsonrpc_port: int
    p2p_port: int
    channel_port: int
    chain_name: str
    status: FrontStatus
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
