from node_manager.db.base import Base
from node_manager.models.chain import Chain
from node_manager.models.agency import Agency
from node_manager.models.host import Host
from node_manager.models.group import Group
from node_manager.models.front import Front
from node_manager.models.front_group import FrontGroup
from node_manager.models.node import Node
from node_manager.models.image_tag import ImageTag
