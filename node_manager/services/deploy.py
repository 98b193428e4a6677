"""Deployment orchestrator.

Composes the entity services, the path/config services, the bootstrap tool
and the restart service into the chain workflows:

  - deploy_chain: build a chain from an operator topology
  - add_nodes:    grow a group with new nodes on a (possibly new) host
  - delete_node:  remove a stopped node and reclaim an empty host/agency
  - upgrade:      move a chain to another image version
  - delete_chain, start_node, stop_node

Catalog writes of a workflow share one transaction (``transactional``). The
generated files are not covered by it: a failed deploy deletes the chain's
tree explicitly, and restarts are only published after the commit.
"""

import ipaddress
import threading
from contextlib import ExitStack, contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

import httpx
from sqlalchemy.orm import Session
import structlog

from node_manager.core.config import Settings, settings as default_settings
from node_manager.core.errors import (
    SUCCESS_CODE,
    AddNodeFailed,
    AgencyNameRequired,
    BuildChainFailed,
    ChainNameExists,
    ChainNotFound,
    ConfigUpdateFailed,
    DeployFailed,
    ExternalToolError,
    HostNotFound,
    InvalidIp,
    InvalidNodeCount,
    NodeDirDeleteFailed,
    NodeNotFound,
    NodeStillRunning,
    RemoteCommandFailed,
    SameVersionError,
    ValidationError,
)
from node_manager.core.status import EncryptType, FrontStatus, GroupStatus, HostStatus, RunType
from node_manager.db.session import SessionLocal, after_commit, transactional
from node_manager.models.agency import Agency
from node_manager.models.chain import Chain
from node_manager.models.front import Front
from node_manager.models.host import Host
from node_manager.schemas.deploy import DeployResult
from node_manager.services import agency as agency_service
from node_manager.services import chain as chain_service
from node_manager.services import docker
from node_manager.services import front as front_service
from node_manager.services import group as group_service
from node_manager.services import host as host_service
from node_manager.services import image_tag as image_tag_service
from node_manager.services import node as node_service
from node_manager.services.build_chain import ChainBootstrapTool
from node_manager.services.config_files import ConfigFileService
from node_manager.services.node_async import NodeAsyncService
from node_manager.services.paths import NodeConfig, PathService, read_group_ids, read_node_id
from node_manager.services.ssh import SshClient
from node_manager.services.topology import ConfigLine, parse_ip_conf

logger = structlog.get_logger(__name__)


class DeployService:
    def __init__(
        self,
        paths: PathService,
        ssh: SshClient,
        bootstrap: ChainBootstrapTool,
        node_async: NodeAsyncService,
        settings: Optional[Settings] = None,
    ):
        self.paths = paths
        self.ssh = ssh
        self.bootstrap = bootstrap
        self.node_async = node_async
        self.settings = settings or default_settings
        self.config_files = ConfigFileService(paths, ssh)

        # one writer per (chain, group) at a time, one deploy per chain name
        self._locks: Dict[tuple, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "DeployService":
        settings = settings or default_settings
        paths = PathService(Path(settings.NODES_ROOT), Path(settings.NODES_ROOT_TMP))
        ssh = SshClient.from_settings(settings)
        return cls(
            paths=paths,
            ssh=ssh,
            bootstrap=ChainBootstrapTool.from_settings(paths, settings),
            node_async=NodeAsyncService.from_settings(SessionLocal, ssh, settings),
            settings=settings,
        )

    def _lock_for(self, key) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(key, threading.Lock())

    @contextmanager
    def _locked_groups(self, chain_id: int, group_ids: Iterable[int]):
        # always acquired in sorted order
        keys = sorted(("group", chain_id, group_id) for group_id in set(group_ids))
        with ExitStack() as stack:
            for key in keys:
                stack.enter_context(self._lock_for(key))
            yield

    # ------------------------------------------------------------------
    # create chain
    # ------------------------------------------------------------------

    def deploy_chain(
        self,
        db: Session,
        chain_name: str,
        ip_conf: List[str],
        tag_id: int,
        root_dir_on_host: str,
        webase_sign_addr: str,
    ) -> DeployResult:
        if not chain_name or not chain_name.strip():
            raise ValidationError("Chain name cannot be blank")

        # one deploy per chain name; a waiting duplicate then fails the name check
        with self._lock_for(("chain", chain_name)):
            return self._deploy_chain(db, chain_name, ip_conf, tag_id, root_dir_on_host, webase_sign_addr)

    def _deploy_chain(
        self,
        db: Session,
        chain_name: str,
        ip_conf: List[str],
        tag_id: int,
        root_dir_on_host: str,
        webase_sign_addr: str,
    ) -> DeployResult:
        logger.info("check chain name exists", chain_name=chain_name)
        if chain_service.get_by_name(db, chain_name) is not None:
            raise ChainNameExists(f"Chain {chain_name} already exists")

        image = image_tag_service.get_image(db, tag_id)
        encrypt_type = EncryptType.from_image(image)

        logger.info("parse ip conf", chain_name=chain_name, lines=len(ip_conf or []))
        config_lines = parse_ip_conf(ip_conf, self.ssh)

        try:
            with transactional(db):
                build_result = self.bootstrap.build_chain(encrypt_type, config_lines, chain_name)
                if build_result.failed:
                    # nothing written to the catalog yet
                    return DeployResult(code=BuildChainFailed.code, message=build_result.execute_out)

                chain = self._persist_chain(
                    db,
                    chain_name=chain_name,
                    image=image,
                    encrypt_type=encrypt_type,
                    config_lines=config_lines,
                    root_dir=root_dir_on_host,
                    webase_sign_addr=webase_sign_addr,
                )
                self._init_host_list(db, chain)
        except Exception as e:
            try:
                self.paths.delete_chain(chain_name)
            except OSError:
                logger.exception("delete chain files failed after deploy error", chain_name=chain_name)
            logger.error("deploy chain failed", chain_name=chain_name, error=repr(e))
            raise DeployFailed(f"Deploy chain {chain_name} failed: {e}") from e

        logger.info("deploy chain success", chain_name=chain_name)
        return DeployResult(code=SUCCESS_CODE, message=build_result.execute_out)

    def _persist_chain(
        self,
        db: Session,
        *,
        chain_name: str,
        image: str,
        encrypt_type: EncryptType,
        config_lines: List[ConfigLine],
        root_dir: str,
        webase_sign_addr: str,
    ) -> Chain:
        chain = chain_service.insert(
            db,
            chain_name=chain_name,
            version=image,
            encrypt_type=encrypt_type,
            root_dir=root_dir,
            webase_sign_addr=webase_sign_addr,
        )

        # natural key -> row id, local to this deploy
        agency_ids: Dict[str, int] = {}
        host_ids: Dict[str, int] = {}
        host_agency: Dict[str, Tuple[str, int]] = {}
        host_groups: Dict[str, Set[int]] = {}
        group_counts: Dict[int, int] = {}

        for line in config_lines:
            if line.agency_name not in agency_ids:
                agency_ids[line.agency_name] = agency_service.insert(db, line.agency_name, chain).id
            agency_id = agency_ids[line.agency_name]
            host_agency.setdefault(line.ip, (line.agency_name, agency_id))

            if line.ip not in host_ids:
                host = host_service.insert(db, agency_id, line.agency_name, line.ip, root_dir)
                host_ids[line.ip] = host.id

            host_groups.setdefault(line.ip, set()).update(line.group_ids)
            for group_id in sorted(line.group_ids):
                if group_id in group_counts:
                    group_counts[group_id] += line.num
                else:
                    group_service.save_group(db, group_id, line.num, chain, GroupStatus.MAINTAINING)
                    group_counts[group_id] = line.num

        # a host may run several nodes; each node joins every group of its host
        for ip, host_id in host_ids.items():
            agency_name, agency_id = host_agency[ip]
            for node_path in self.paths.list_host_node_paths(chain_name, ip):
                node_config = NodeConfig.read(node_path)
                front_port = self.settings.DEFAULT_FRONT_PORT + node_config.host_index

                front = front_service.insert(
                    db,
                    node_id=node_config.node_id,
                    front_ip=ip,
                    front_port=front_port,
                    agency_id=agency_id,
                    agency_name=agency_name,
                    host_id=host_id,
                    host_index=node_config.host_index,
                    image_tag=image,
                    run_type=RunType.DOCKER.value,
                    container_name=docker.container_name(root_dir, chain_name, node_config.host_index),
                    jsonrpc_port=node_config.jsonrpc_port,
                    p2p_port=node_config.p2p_port,
                    channel_port=node_config.channel_port,
                    chain_id=chain.id,
                    chain_name=chain_name,
                    status=FrontStatus.INITIALIZED,
                )

                for group_id in sorted(host_groups[ip]):
                    node_service.insert(
                        db,
                        node_id=node_config.node_id,
                        group_id=group_id,
                        chain_id=chain.id,
                        ip=ip,
                        p2p_port=node_config.p2p_port,
                    )
                    front_service.new_front_group(db, front, group_id, GroupStatus.MAINTAINING)

                self.config_files.write_application_yml(
                    node_path,
                    encrypt_type,
                    node_config.channel_port,
                    front_port,
                    webase_sign_addr,
                )

        # same value as the seed above once every line is counted
        for group_id, node_count in group_counts.items():
            group_service.update_node_count(db, chain.id, group_id, node_count)

        return chain

    def _init_host_list(self, db: Session, chain: Chain) -> None:
        """Copy each host's generated tree to it. A failing host is logged, not fatal."""
        for host in host_service.select_by_chain(db, chain.id):
            try:
                self.config_files.transfer_host(chain, host)
            except (ExternalToolError, OSError) as e:
                logger.warning("init host failed", chain_name=chain.chain_name, ip=host.ip, error=str(e))
                host_service.update_status(db, host, HostStatus.INIT_FAILED, remark=str(e))
            else:
                host_service.update_status(db, host, HostStatus.INITIATED)

    # ------------------------------------------------------------------
    # grow group
    # ------------------------------------------------------------------

    def add_nodes(
        self,
        db: Session,
        chain_name: str,
        group_id: int,
        ip: str,
        agency_name: Optional[str],
        num: int,
    ) -> DeployResult:
        logger.info("add node check chain exists", chain_name=chain_name)
        chain = chain_service.get_by_name(db, chain_name)
        if chain is None:
            raise ChainNotFound(f"Chain {chain_name} does not exist")

        logger.info("add node check ip", ip=ip)
        try:
            ipaddress.IPv4Address(ip)
        except ValueError as e:
            raise InvalidIp(f"Invalid IPv4 address: {ip}") from e

        if num <= 0 or num >= self.settings.MAX_NODES_PER_REQUEST:
            raise InvalidNodeCount(
                f"Node count must be between 1 and {self.settings.MAX_NODES_PER_REQUEST - 1}"
            )

        chain_id = chain.id
        with self._locked_groups(chain_id, [group_id]), transactional(db):
            host, agency = self._resolve_host(db, chain, ip, agency_name)
            _, new_group = group_service.save_or_update_node_count(db, group_id, num, chain)

            try:
                new_fronts = self._init_front_and_node(db, num, chain, host, agency, group_id)
                new_node_ids = {f.node_id for f in new_fronts}

                self.config_files.update_node_config_ini_by_groups(
                    db, chain, [group_id], local_only_node_ids=new_node_ids
                )
                self.config_files.generate_new_nodes_group_configs(db, new_group, chain, group_id, new_fronts)
                self.config_files.transfer_nodes(chain, host, new_fronts)
            except Exception as e:
                # files already written for the new nodes stay; the catalog rolls back
                logger.exception("add node error", chain_name=chain_name, group_id=group_id, ip=ip)
                raise AddNodeFailed(f"Add {num} node(s) to group {group_id} on {ip} failed: {e}") from e

            after_commit(db, lambda: self.node_async.start_front_of_group(chain_id, group_id))

        logger.info("add node success", chain_name=chain_name, group_id=group_id, ip=ip, num=num)
        return DeployResult(code=SUCCESS_CODE, message="success", data=sorted(new_node_ids))

    def _resolve_host(
        self,
        db: Session,
        chain: Chain,
        ip: str,
        agency_name: Optional[str],
    ) -> Tuple[Host, Agency]:
        host = host_service.find_by_ip(host_service.select_by_chain(db, chain.id), ip)
        if host is not None:
            # a known host keeps its agency, whatever the caller passed
            return host, agency_service.get_by_id(db, host.agency_id)

        if not agency_name or not agency_name.strip():
            raise AgencyNameRequired(f"Host {ip} is new, agency name is required")

        agency = self._init_agency_if_new(db, chain, agency_name.strip())
        self.config_files.init_host_sdk(chain.chain_name, ip, agency.agency_name)
        host = host_service.insert(db, agency.id, agency.agency_name, ip, chain.root_dir)
        return host, agency

    def _init_agency_if_new(self, db: Session, chain: Chain, agency_name: str) -> Agency:
        agency = agency_service.get_by_chain_and_name(db, chain.id, agency_name)
        if agency is not None:
            return agency

        result = self.bootstrap.gen_agency_cert(EncryptType(chain.encrypt_type), chain.chain_name, agency_name)
        if result.failed:
            raise BuildChainFailed(f"Generate cert for agency {agency_name} failed", output=result.execute_out)
        return agency_service.insert(db, agency_name, chain)

    def _init_front_and_node(
        self,
        db: Session,
        num: int,
        chain: Chain,
        host: Host,
        agency: Agency,
        group_id: int,
    ) -> List[Front]:
        encrypt_type = EncryptType(chain.encrypt_type)
        start_index = front_service.next_host_index(db, host.id)

        new_fronts = []
        for host_index in range(start_index, start_index + num):
            node_path = self.paths.node_root(chain.chain_name, host.ip, host_index)
            if node_path.exists():
                # left over by an earlier failed add; the catalog has no row for it
                logger.warning("quarantine stale node dir", path=str(node_path))
                self.paths.quarantine_node(chain.chain_name, host.ip, host_index, "stale")

            result = self.bootstrap.gen_node_cert(encrypt_type, chain.chain_name, agency.agency_name, node_path)
            if result.failed:
                raise BuildChainFailed(f"Generate node cert under {node_path} failed", output=result.execute_out)
            node_id = read_node_id(node_path)

            front_port = self.settings.DEFAULT_FRONT_PORT + host_index
            channel_port = self.settings.DEFAULT_CHANNEL_PORT + host_index
            p2p_port = self.settings.DEFAULT_P2P_PORT + host_index
            front = front_service.insert(
                db,
                node_id=node_id,
                front_ip=host.ip,
                front_port=front_port,
                agency_id=agency.id,
                agency_name=agency.agency_name,
                host_id=host.id,
                host_index=host_index,
                image_tag=chain.version,
                run_type=chain.run_type,
                container_name=docker.container_name(chain.root_dir, chain.chain_name, host_index),
                jsonrpc_port=self.settings.DEFAULT_JSONRPC_PORT + host_index,
                p2p_port=p2p_port,
                channel_port=channel_port,
                chain_id=chain.id,
                chain_name=chain.chain_name,
                status=FrontStatus.INITIALIZED,
            )
            node_service.insert(
                db,
                node_id=node_id,
                group_id=group_id,
                chain_id=chain.id,
                ip=host.ip,
                p2p_port=p2p_port,
            )
            front_service.new_front_group(db, front, group_id, GroupStatus.MAINTAINING)

            self.config_files.write_application_yml(
                node_path,
                encrypt_type,
                channel_port,
                front_port,
                chain.webase_sign_addr or "",
            )
            new_fronts.append(front)

        return new_fronts

    # ------------------------------------------------------------------
    # delete node
    # ------------------------------------------------------------------

    def delete_node(
        self,
        db: Session,
        node_id: str,
        delete_host: bool = False,
        delete_agency: bool = False,
    ) -> DeployResult:
        front = front_service.get_by_node_id(db, node_id)
        if front is None:
            raise NodeNotFound(f"Node {node_id} does not exist")
        if front.status.is_running:
            raise NodeStillRunning(f"Node {node_id} is running, stop it first")

        chain = chain_service.get_by_id(db, front.chain_id)
        if chain is None:
            raise ChainNotFound(f"Chain of node {node_id} does not exist")
        host = host_service.get_by_id(db, front.host_id)
        if host is None:
            raise HostNotFound(f"Host of node {node_id} does not exist")

        chain_id, chain_name = chain.id, chain.chain_name
        host_id, host_ip, host_root_dir = host.id, host.ip, host.root_dir
        front_id, agency_id, host_index = front.front_id, front.agency_id, front.host_index

        # e.g. NODES_ROOT/chain/ip/node0/conf/group.1.genesis
        node_path = self.paths.node_root(chain_name, host_ip, host_index)
        group_ids = read_group_ids(node_path) or set(front_service.group_ids_of(db, front_id))

        with self._locked_groups(chain_id, group_ids), transactional(db):
            try:
                self.config_files.update_node_config_ini_by_groups(
                    db, chain, group_ids, exclude_node_ids={node_id}
                )
            except Exception as e:
                logger.exception("update related node config failed", group_ids=sorted(group_ids))
                raise ConfigUpdateFailed(f"Update config of group(s) {sorted(group_ids)} failed: {e}") from e

            try:
                self.paths.quarantine_node(chain_name, host_ip, host_index, node_id)
            except OSError as e:
                logger.exception("move node dir failed", chain_name=chain_name, ip=host_ip, host_index=host_index)
                raise NodeDirDeleteFailed(f"Move dir of node {node_id} failed: {e}") from e

            self._quarantine_on_remote(host_ip, host_root_dir, chain_name, host_index, node_id)

            node_service.delete_by_node_id(db, chain_id, node_id)
            front_service.remove_front(db, front_id)
            for group_id in group_ids:
                group_service.decrement_node_count(db, chain_id, group_id)

            host_service.delete_if_unused(db, delete_host, host_id)
            agency_service.delete_if_unused(db, delete_agency, agency_id)

            affected = frozenset(group_ids)
            after_commit(db, lambda: self.node_async.start_front_of_group(chain_id, affected))

        logger.info("delete node success", node_id=node_id, chain_name=chain_name)
        return DeployResult(code=SUCCESS_CODE, message="success")

    def _quarantine_on_remote(
        self,
        ip: str,
        root_dir: str,
        chain_name: str,
        host_index: int,
        node_id: str,
    ) -> None:
        src = self.paths.remote_node_root(root_dir, chain_name, host_index)
        dst = self.paths.remote_quarantine_dir(root_dir, chain_name, node_id)
        try:
            self.ssh.mv_dir(ip, src, dst)
        except ExternalToolError as e:
            logger.warning("move node dir on remote host failed", ip=ip, src=str(src), error=e.output or str(e))

    # ------------------------------------------------------------------
    # upgrade
    # ------------------------------------------------------------------

    def upgrade(self, db: Session, chain_name: str, tag_id: int) -> DeployResult:
        image = image_tag_service.get_image(db, tag_id)

        logger.info("upgrade check chain exists", chain_name=chain_name)
        chain = chain_service.get_by_name(db, chain_name)
        if chain is None:
            raise ChainNotFound(f"Chain {chain_name} does not exist")

        if (chain.version or "").lower() == image.lower():
            raise SameVersionError(f"Chain {chain_name} already runs {image}")

        chain_id = chain.id
        with transactional(db):
            chain_service.upgrade(db, chain, image)
            front_service.update_image_tag_by_chain(db, chain_id, image)
            after_commit(db, lambda: self.node_async.start_front_of_chain(chain_id))

        logger.info("upgrade chain", chain_name=chain_name, version=image)
        return DeployResult(code=SUCCESS_CODE, message="success")

    # ------------------------------------------------------------------
    # delete chain, start/stop node
    # ------------------------------------------------------------------

    def delete_chain(self, db: Session, chain_name: str) -> DeployResult:
        if not chain_name or not chain_name.strip():
            raise ValidationError("Chain name cannot be blank")

        chain = chain_service.get_by_name(db, chain_name)
        if chain is None:
            raise ChainNotFound(f"Chain {chain_name} does not exist")

        running = [f.node_id for f in front_service.select_by_chain(db, chain.id) if f.status.is_running]
        if running:
            raise NodeStillRunning(f"Stop node(s) {', '.join(running)} before deleting chain {chain_name}")

        logger.info("delete chain data", chain_name=chain_name)
        chain_id = chain.id
        with transactional(db):
            node_service.delete_by_chain(db, chain_id)
            front_service.delete_by_chain(db, chain_id)
            group_service.delete_by_chain(db, chain_id)
            host_service.delete_by_chain(db, chain_id)
            agency_service.delete_by_chain(db, chain_id)
            chain_service.delete(db, chain)

        try:
            self.paths.quarantine_chain(chain_name)
        except OSError:
            logger.exception("move chain files failed", chain_name=chain_name)

        return DeployResult(code=SUCCESS_CODE, message="success")

    def _front_and_chain(self, db: Session, node_id: str) -> Tuple[Front, Chain]:
        front = front_service.get_by_node_id(db, node_id)
        if front is None:
            raise NodeNotFound(f"Node {node_id} does not exist")
        chain = chain_service.get_by_id(db, front.chain_id)
        if chain is None:
            raise ChainNotFound(f"Chain of node {node_id} does not exist")
        return front, chain

    def start_node(self, db: Session, node_id: str) -> DeployResult:
        front, chain = self._front_and_chain(db, node_id)
        with transactional(db):
            try:
                self.node_async.start_front(db, chain, front)
            except httpx.HTTPError as e:
                raise RemoteCommandFailed(f"Front of node {node_id} did not answer", output=str(e)) from e
        return DeployResult(code=SUCCESS_CODE, message="success")

    def stop_node(self, db: Session, node_id: str) -> DeployResult:
        front, chain = self._front_and_chain(db, node_id)
        with transactional(db):
            self.node_async.stop_front(db, chain, front)
        return DeployResult(code=SUCCESS_CODE, message="success")


@lru_cache
def get_deploy_service() -> DeployService:
    return DeployService.from_settings()
