"""On-disk layout of generated chains, local and remote.

Local tree (under NODES_ROOT)::

    <chain>/<ip>/node<idx>/config.ini
    <chain>/<ip>/node<idx>/application.yml
    <chain>/<ip>/node<idx>/conf/node.nodeid
    <chain>/<ip>/node<idx>/conf/group.<gid>.genesis
    <chain>/<ip>/sdk/
    <chain>/cert/<agency>/

Remote tree: ``<root_dir>/<chain>/node<idx>``.

The tree is a projection of the catalog; anything here can be regenerated.
"""

import configparser
import re
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import List, Set

import structlog

logger = structlog.get_logger(__name__)

_NODE_DIR = re.compile(r"^node(\d+)$")
_GENESIS_FILE = re.compile(r"^group\.(\d+)\.genesis$")

CONFIG_INI = "config.ini"
APPLICATION_YML = "application.yml"
NODE_ID_FILE = "node.nodeid"
REMOTE_DELETE_DIR = "deleted-tmp"


def _timestamp() -> str:
    return datetime.now().strftime("%Y%m%d%H%M%S%f")


def host_index_of(node_path: Path) -> int:
    match = _NODE_DIR.match(node_path.name)
    if not match:
        raise ValueError(f"Not a node directory: {node_path}")
    return int(match.group(1))


def _read_ini(path: Path) -> configparser.ConfigParser:
    # node config keys are indented, which configparser reads as continuations
    text = "\n".join(line.strip() for line in path.read_text(encoding="utf-8").splitlines())
    parser = configparser.ConfigParser(strict=False, interpolation=None)
    parser.read_string(text)
    return parser


@dataclass(frozen=True)
class NodeConfig:
    """Identity of one generated node directory."""

    node_id: str
    host_index: int
    p2p_port: int
    channel_port: int
    jsonrpc_port: int

    @classmethod
    def read(cls, node_path: Path) -> "NodeConfig":
        ini = _read_ini(node_path / CONFIG_INI)
        return cls(
            node_id=read_node_id(node_path),
            host_index=host_index_of(node_path),
            p2p_port=ini.getint("p2p", "listen_port"),
            channel_port=ini.getint("rpc", "channel_listen_port"),
            jsonrpc_port=ini.getint("rpc", "jsonrpc_listen_port"),
        )


def read_group_ids(node_path: Path) -> Set[int]:
    """Group ids a node belongs to, from its conf/group.<gid>.genesis files."""
    conf = node_path / "conf"
    if not conf.is_dir():
        return set()
    group_ids = set()
    for child in conf.iterdir():
        match = _GENESIS_FILE.match(child.name)
        if match:
            group_ids.add(int(match.group(1)))
    return group_ids


def read_node_id(node_path: Path) -> str:
    return (node_path / "conf" / NODE_ID_FILE).read_text(encoding="utf-8").strip()


class PathService:
    def __init__(self, nodes_root: Path, nodes_root_tmp: Path):
        self.nodes_root = Path(nodes_root)
        self.nodes_root_tmp = Path(nodes_root_tmp)

    # local layout

    def chain_root(self, chain_name: str) -> Path:
        return self.nodes_root / chain_name

    def ip_conf_file(self, chain_name: str) -> Path:
        return self.nodes_root / f"ipconf.{chain_name}"

    def host_root(self, chain_name: str, ip: str) -> Path:
        return self.chain_root(chain_name) / ip

    def host_sdk_dir(self, chain_name: str, ip: str) -> Path:
        return self.host_root(chain_name, ip) / "sdk"

    def node_root(self, chain_name: str, ip: str, host_index: int) -> Path:
        return self.host_root(chain_name, ip) / f"node{host_index}"

    def agency_cert_dir(self, chain_name: str, agency_name: str) -> Path:
        return self.chain_root(chain_name) / "cert" / agency_name

    def list_host_node_paths(self, chain_name: str, ip: str) -> List[Path]:
        """Node dirs generated for a host, ordered by host index."""
        host_root = self.host_root(chain_name, ip)
        if not host_root.is_dir():
            return []
        node_paths = [p for p in host_root.iterdir() if p.is_dir() and _NODE_DIR.match(p.name)]
        return sorted(node_paths, key=host_index_of)

    # remote layout

    @staticmethod
    def remote_chain_root(root_dir: str, chain_name: str) -> PurePosixPath:
        return PurePosixPath(root_dir) / chain_name

    @staticmethod
    def remote_node_root(root_dir: str, chain_name: str, host_index: int) -> PurePosixPath:
        return PurePosixPath(root_dir) / chain_name / f"node{host_index}"

    @staticmethod
    def remote_quarantine_dir(root_dir: str, chain_name: str, node_id: str) -> PurePosixPath:
        return PurePosixPath(root_dir) / REMOTE_DELETE_DIR / chain_name / f"{node_id}-{_timestamp()}"

    # removal

    def delete_chain(self, chain_name: str) -> None:
        """Hard delete of a chain's generated files; compensation for a failed deploy."""
        chain_root = self.chain_root(chain_name)
        if chain_root.exists():
            shutil.rmtree(chain_root)
        ip_conf = self.ip_conf_file(chain_name)
        if ip_conf.exists():
            ip_conf.unlink()

    def quarantine_chain(self, chain_name: str) -> Path:
        chain_root = self.chain_root(chain_name)
        target = self.nodes_root_tmp / f"{chain_name}-{_timestamp()}"
        if chain_root.exists():
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(chain_root), str(target))
        return target

    def quarantine_node(self, chain_name: str, ip: str, host_index: int, node_id: str) -> Path:
        """Move a node dir into NODES_ROOT_TMP. Raises OSError on failure."""
        node_root = self.node_root(chain_name, ip, host_index)
        target = self.nodes_root_tmp / chain_name / f"{ip}-node{host_index}-{node_id}-{_timestamp()}"
        if not node_root.exists():
            logger.warning("node dir already gone", path=str(node_root))
            return target
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(node_root), str(target))
        return target
