from pathlib import Path
from typing import List, Set

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from node_manager.core.config import Settings
from node_manager.core.errors import RemoteCommandFailed
from node_manager.core.status import FrontStatus, NodeStatus
from node_manager.db.base import Base
import node_manager.models  # noqa: F401  # import models so metadata is populated
from node_manager.models.image_tag import ImageTag
from node_manager.services import front as front_service
from node_manager.services import node as node_service
from node_manager.services.deploy import DeployService
from node_manager.services.paths import PathService
from node_manager.services.shell import ExecuteResult

TOPOLOGY = ["10.0.0.1:agencyA:2:{1}", "10.0.0.2:agencyA:1:{1,2}"]

TAG_V1 = 1
TAG_V2 = 2
TAG_GM = 3
TAG_BLANK = 4


class FakeSsh:
    """Records every remote call; ips in ``unreachable`` fail to connect."""

    def __init__(self):
        self.unreachable: Set[str] = set()
        self.failing_scp: Set[str] = set()
        self.commands = []
        self.copies = []
        self.moves = []

    def connect(self, ip: str) -> bool:
        return ip not in self.unreachable

    def exec(self, ip: str, command: str) -> ExecuteResult:
        self.commands.append((ip, command))
        if ip in self.unreachable:
            return ExecuteResult(exit_code=255, execute_out="connection refused")
        return ExecuteResult(exit_code=0, execute_out="")

    def exec_or_raise(self, ip: str, command: str) -> str:
        result = self.exec(ip, command)
        if result.failed:
            raise RemoteCommandFailed(f"Command failed on {ip}", output=result.execute_out)
        return result.execute_out

    def mkdir(self, ip: str, remote_dir) -> None:
        self.exec_or_raise(ip, f"mkdir -p {remote_dir}")

    def scp(self, ip: str, local_path: Path, remote_path) -> None:
        if ip in self.failing_scp:
            raise RemoteCommandFailed(f"Copy {local_path} to {ip} failed", output="scp: lost connection")
        self.copies.append((ip, Path(local_path), str(remote_path)))

    def mv_dir(self, ip: str, src, dst) -> None:
        self.moves.append((ip, str(src), str(dst)))


class FakeBootstrap:
    """Writes the node tree the chain bootstrap scripts would produce."""

    def __init__(self, paths: PathService):
        self.paths = paths
        self.fail_build = False
        self.counter = 0
        self.build_calls = []
        self.agency_certs = []

    def _new_node_id(self) -> str:
        self.counter += 1
        return f"{self.counter:04x}" * 32

    def _write_node(self, node_path: Path, host_index: int) -> str:
        conf = node_path / "conf"
        conf.mkdir(parents=True, exist_ok=True)
        node_id = self._new_node_id()
        (conf / "node.nodeid").write_text(node_id + "\n", encoding="utf-8")
        (node_path / "config.ini").write_text(
            "[rpc]\n"
            "    channel_listen_ip=0.0.0.0\n"
            f"    channel_listen_port={20200 + host_index}\n"
            "    jsonrpc_listen_ip=127.0.0.1\n"
            f"    jsonrpc_listen_port={8545 + host_index}\n"
            "[p2p]\n"
            "    listen_ip=0.0.0.0\n"
            f"    listen_port={30300 + host_index}\n",
            encoding="utf-8",
        )
        return node_id

    def build_chain(self, encrypt_type, config_lines, chain_name) -> ExecuteResult:
        self.build_calls.append((encrypt_type, list(config_lines), chain_name))
        if self.fail_build:
            return ExecuteResult(exit_code=1, execute_out="build_chain.sh: bad ip conf")

        next_index = {}
        for line in config_lines:
            for _ in range(line.num):
                host_index = next_index.get(line.ip, 0)
                next_index[line.ip] = host_index + 1
                node_path = self.paths.node_root(chain_name, line.ip, host_index)
                self._write_node(node_path, host_index)
                for group_id in line.group_ids:
                    (node_path / "conf" / f"group.{group_id}.genesis").write_text("genesis\n", encoding="utf-8")
                    (node_path / "conf" / f"group.{group_id}.ini").write_text("[consensus]\n", encoding="utf-8")
            sdk = self.paths.host_sdk_dir(chain_name, line.ip)
            sdk.mkdir(parents=True, exist_ok=True)
            self.gen_agency_cert(encrypt_type, chain_name, line.agency_name)

        return ExecuteResult(exit_code=0, execute_out="All completed.")

    def gen_agency_cert(self, encrypt_type, chain_name, agency_name) -> ExecuteResult:
        self.agency_certs.append((chain_name, agency_name))
        cert_dir = self.paths.agency_cert_dir(chain_name, agency_name)
        cert_dir.mkdir(parents=True, exist_ok=True)
        (cert_dir / "agency.crt").write_text("cert\n", encoding="utf-8")
        return ExecuteResult(exit_code=0, execute_out="")

    def gen_node_cert(self, encrypt_type, chain_name, agency_name, node_path: Path) -> ExecuteResult:
        conf = node_path / "conf"
        conf.mkdir(parents=True, exist_ok=True)
        (conf / "node.nodeid").write_text(self._new_node_id() + "\n", encoding="utf-8")
        return ExecuteResult(exit_code=0, execute_out="")


class FakeNodeAsync:
    """Records restart publications; start/stop apply statuses without any remote call."""

    def __init__(self):
        self.chain_restarts: List[int] = []
        self.group_restarts = []

    def start_front_of_chain(self, chain_id: int) -> None:
        self.chain_restarts.append(chain_id)

    def start_front_of_group(self, chain_id: int, group_ids) -> None:
        if isinstance(group_ids, int):
            group_ids = [group_ids]
        self.group_restarts.append((chain_id, frozenset(group_ids)))

    def start_front(self, db, chain, front) -> None:
        front_service.update_status(db, front, FrontStatus.RUNNING)
        node_service.update_status_by_node_id(db, chain.id, front.node_id, NodeStatus.RUNNING)

    def stop_front(self, db, chain, front) -> None:
        front_service.update_status(db, front, FrontStatus.STOPPED)
        node_service.update_status_by_node_id(db, chain.id, front.node_id, NodeStatus.DEAD)

    def shutdown(self, wait: bool = True) -> None:
        pass


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'catalog.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    session.add_all([
        ImageTag(id=TAG_V1, config_name="docker_image", config_value="v2.7.2"),
        ImageTag(id=TAG_V2, config_name="docker_image", config_value="v2.8.0"),
        ImageTag(id=TAG_GM, config_name="docker_image", config_value="v2.7.2-gm"),
        ImageTag(id=TAG_BLANK, config_name="docker_image", config_value="  "),
    ])
    session.commit()
    yield session
    session.close()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'catalog.db'}",
        NODES_ROOT=str(tmp_path / "NODES_ROOT"),
        NODES_ROOT_TMP=str(tmp_path / "NODES_ROOT_TMP"),
    )


@pytest.fixture
def paths(settings):
    return PathService(Path(settings.NODES_ROOT), Path(settings.NODES_ROOT_TMP))


@pytest.fixture
def ssh():
    return FakeSsh()


@pytest.fixture
def bootstrap(paths):
    return FakeBootstrap(paths)


@pytest.fixture
def node_async():
    return FakeNodeAsync()


@pytest.fixture
def deploy_service(paths, ssh, bootstrap, node_async, settings):
    return DeployService(paths, ssh, bootstrap, node_async, settings=settings)


@pytest.fixture
def deployed_chain(db, deploy_service):
    result = deploy_service.deploy_chain(
        db,
        chain_name="chain1",
        ip_conf=TOPOLOGY,
        tag_id=TAG_V1,
        root_dir_on_host="/opt/fisco",
        webase_sign_addr="127.0.0.1:5004",
    )
    assert result.success
    return "chain1"
