"""Per-node config artifacts, written locally and copied to the node's host."""

import shutil
import time
from pathlib import Path
from typing import Collection, Iterable, List

from sqlalchemy.orm import Session
import structlog

from node_manager.core.status import EncryptType
from node_manager.models.chain import Chain
from node_manager.models.front import Front
from node_manager.models.host import Host
from node_manager.services import front as front_service
from node_manager.services import host as host_service
from node_manager.services import paths as path_utils
from node_manager.services import templates
from node_manager.services.paths import PathService
from node_manager.services.ssh import SshClient

logger = structlog.get_logger(__name__)


class ConfigFileService:
    def __init__(self, paths: PathService, ssh: SshClient):
        self.paths = paths
        self.ssh = ssh

    def node_path(self, chain: Chain, front: Front) -> Path:
        return self.paths.node_root(chain.chain_name, front.front_ip, front.host_index)

    def write_application_yml(
        self,
        node_path: Path,
        encrypt_type: EncryptType,
        channel_port: int,
        front_port: int,
        webase_sign_addr: str,
    ) -> Path:
        content = templates.render(
            templates.APPLICATION_YML,
            encrypt_type=int(encrypt_type),
            channel_port=channel_port,
            front_port=front_port,
            webase_sign_addr=webase_sign_addr,
        )
        target = node_path / path_utils.APPLICATION_YML
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return target

    def write_config_ini(self, chain: Chain, front: Front, peers: List[str]) -> Path:
        content = templates.render(
            templates.CONFIG_INI,
            channel_port=front.channel_port,
            jsonrpc_port=front.jsonrpc_port,
            p2p_port=front.p2p_port,
            peers=peers,
            encrypt_type=chain.encrypt_type,
        )
        target = self.node_path(chain, front) / path_utils.CONFIG_INI
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return target

    def update_node_config_ini_by_groups(
        self,
        db: Session,
        chain: Chain,
        group_ids: Iterable[int],
        exclude_node_ids: Collection[str] = (),
        local_only_node_ids: Collection[str] = (),
    ) -> List[Front]:
        """
        Regenerate config.ini (p2p peer list) for every node in the groups and copy it
        to the node's host. Nodes in ``exclude_node_ids`` are neither rewritten nor listed
        as peers. Nodes in ``local_only_node_ids`` are only written locally
        (their whole dir is copied later). Any local or remote failure propagates.
        """
        group_ids = sorted(set(group_ids))
        peers = [
            f"{f.front_ip}:{f.p2p_port}"
            for f in front_service.select_by_chain(db, chain.id)
            if f.node_id not in exclude_node_ids
        ]
        fronts = [
            f for f in front_service.select_by_groups(db, chain.id, group_ids)
            if f.node_id not in exclude_node_ids
        ]

        hosts = {}
        for front in fronts:
            local_file = self.write_config_ini(chain, front, peers)
            if front.node_id in local_only_node_ids:
                continue

            host = hosts.get(front.host_id)
            if host is None:
                host = hosts[front.host_id] = host_service.get_by_id(db, front.host_id)
            remote_file = (
                self.paths.remote_node_root(host.root_dir, chain.chain_name, front.host_index)
                / path_utils.CONFIG_INI
            )
            self.ssh.scp(front.front_ip, local_file, remote_file)

        logger.info(
            "updated node config.ini",
            chain_name=chain.chain_name,
            group_ids=group_ids,
            nodes=len(fronts),
        )
        return fronts

    def write_group_configs(self, node_path: Path, group_id: int, node_ids: List[str]) -> None:
        conf = node_path / "conf"
        conf.mkdir(parents=True, exist_ok=True)
        genesis = templates.render(
            templates.GROUP_GENESIS,
            group_id=group_id,
            node_ids=node_ids,
            timestamp=int(time.time() * 1000),
        )
        (conf / f"group.{group_id}.genesis").write_text(genesis, encoding="utf-8")
        (conf / f"group.{group_id}.ini").write_text(
            templates.render(templates.GROUP_INI), encoding="utf-8"
        )

    def copy_group_configs(self, source_node_path: Path, node_path: Path, group_id: int) -> None:
        conf = node_path / "conf"
        conf.mkdir(parents=True, exist_ok=True)
        for suffix in ("genesis", "ini"):
            name = f"group.{group_id}.{suffix}"
            shutil.copyfile(source_node_path / "conf" / name, conf / name)

    def generate_new_nodes_group_configs(
        self,
        db: Session,
        new_group: bool,
        chain: Chain,
        group_id: int,
        new_fronts: List[Front],
    ) -> None:
        """
        A brand-new group gets a genesis listing all of its (new) nodes.
        A growing group hands its existing genesis to the new nodes; they join it later.
        """
        if new_group:
            node_ids = [f.node_id for f in new_fronts]
            for front in new_fronts:
                self.write_group_configs(self.node_path(chain, front), group_id, node_ids)
            return

        new_ids = {f.front_id for f in new_fronts}
        existing = [
            f for f in front_service.select_by_groups(db, chain.id, [group_id])
            if f.front_id not in new_ids
        ]
        if not existing:
            raise FileNotFoundError(f"No existing node of group {group_id} to copy group config from")

        source = self.node_path(chain, existing[0])
        for front in new_fronts:
            self.copy_group_configs(source, self.node_path(chain, front), group_id)

    def transfer_nodes(self, chain: Chain, host: Host, fronts: List[Front]) -> None:
        for front in fronts:
            remote = self.paths.remote_node_root(host.root_dir, chain.chain_name, front.host_index)
            self.ssh.scp(host.ip, self.node_path(chain, front), remote)

    def transfer_host(self, chain: Chain, host: Host) -> None:
        """Copy every generated dir of a host (node dirs, sdk) to its remote chain root."""
        remote_root = self.paths.remote_chain_root(host.root_dir, chain.chain_name)
        self.ssh.mkdir(host.ip, remote_root)
        host_root = self.paths.host_root(chain.chain_name, host.ip)
        if not host_root.is_dir():
            return
        for child in sorted(host_root.iterdir()):
            self.ssh.scp(host.ip, child, remote_root / child.name)

    def init_host_sdk(self, chain_name: str, ip: str, agency_name: str) -> Path:
        """Seed a new host's sdk dir with the certs of its agency."""
        sdk_dir = self.paths.host_sdk_dir(chain_name, ip)
        sdk_dir.mkdir(parents=True, exist_ok=True)
        cert_dir = self.paths.agency_cert_dir(chain_name, agency_name)
        if cert_dir.is_dir():
            for cert in sorted(cert_dir.glob("*.crt")):
                shutil.copyfile(cert, sdk_dir / cert.name)
        return sdk_dir
