import shutil

import pytest

from node_manager.core.errors import (
    ConfigUpdateFailed,
    NodeDirDeleteFailed,
    NodeNotFound,
    NodeStillRunning,
    RemoteCommandFailed,
)
from node_manager.core.status import FrontStatus
from node_manager.models.agency import Agency
from node_manager.models.front import Front
from node_manager.models.front_group import FrontGroup
from node_manager.models.group import Group
from node_manager.models.host import Host
from node_manager.models.node import Node
from node_manager.services import front as front_service


def front_at(db, ip, host_index=0):
    return db.query(Front).filter(Front.front_ip == ip, Front.host_index == host_index).one()


def counts(db):
    return {g.group_id: g.node_count for g in db.query(Group).all()}


def test_delete_node(db, deploy_service, deployed_chain, paths, ssh, node_async):
    front = front_at(db, "10.0.0.2")
    node_id, chain_id = front.node_id, front.chain_id
    node_path = paths.node_root(deployed_chain, "10.0.0.2", 0)

    result = deploy_service.delete_node(db, node_id)

    assert result.success
    assert db.query(Front).filter(Front.node_id == node_id).count() == 0
    assert db.query(Node).filter(Node.node_id == node_id).count() == 0
    assert db.query(FrontGroup).count() == 2
    assert counts(db) == {1: 2, 2: 0}

    # quarantined, not removed
    assert not node_path.exists()
    moved = list((paths.nodes_root_tmp / deployed_chain).iterdir())
    assert len(moved) == 1 and node_id in moved[0].name
    assert ssh.moves[0][0] == "10.0.0.2"
    assert ssh.moves[0][1] == "/opt/fisco/chain1/node0"
    assert ssh.moves[0][2].startswith(f"/opt/fisco/deleted-tmp/chain1/{node_id}-")

    # host and agency are kept unless asked for
    assert db.query(Host).filter(Host.ip == "10.0.0.2").count() == 1
    assert node_async.group_restarts == [(chain_id, frozenset({1, 2}))]


def test_remaining_peers_drop_the_departed_node(db, deploy_service, deployed_chain, paths):
    deploy_service.delete_node(db, front_at(db, "10.0.0.1", 1).node_id)

    text = (paths.node_root(deployed_chain, "10.0.0.2", 0) / "config.ini").read_text(encoding="utf-8")
    assert "10.0.0.1:30300" in text
    assert "10.0.0.1:30301" not in text


def test_running_node_is_refused(db, deploy_service, deployed_chain):
    front = front_at(db, "10.0.0.1")
    front_service.update_status(db, front, FrontStatus.RUNNING)
    db.commit()
    before = (db.query(Front).count(), db.query(Node).count(), counts(db))

    with pytest.raises(NodeStillRunning):
        deploy_service.delete_node(db, front.node_id)

    assert (db.query(Front).count(), db.query(Node).count(), counts(db)) == before


def test_unknown_node(db, deploy_service, deployed_chain):
    with pytest.raises(NodeNotFound):
        deploy_service.delete_node(db, "missing")


def test_last_nodes_on_host_remove_host_then_agency(db, deploy_service, deployed_chain):
    first = front_at(db, "10.0.0.1", 0).node_id
    second = front_at(db, "10.0.0.1", 1).node_id

    deploy_service.delete_node(db, first, delete_host=True, delete_agency=True)
    assert db.query(Host).filter(Host.ip == "10.0.0.1").count() == 1

    deploy_service.delete_node(db, second, delete_host=True, delete_agency=True)
    assert db.query(Host).filter(Host.ip == "10.0.0.1").count() == 0
    # 10.0.0.2 still references agencyA
    assert db.query(Agency).count() == 1

    deploy_service.delete_node(db, front_at(db, "10.0.0.2").node_id, delete_host=True, delete_agency=True)
    assert db.query(Host).count() == 0
    assert db.query(Agency).count() == 0


def test_host_kept_without_flag(db, deploy_service, deployed_chain):
    deploy_service.delete_node(db, front_at(db, "10.0.0.2").node_id, delete_host=False, delete_agency=True)
    assert db.query(Host).filter(Host.ip == "10.0.0.2").count() == 1
    assert db.query(Agency).count() == 1


def test_config_update_failure(db, deploy_service, deployed_chain, ssh, paths):
    node_id = front_at(db, "10.0.0.2").node_id
    ssh.failing_scp.add("10.0.0.1")

    with pytest.raises(ConfigUpdateFailed):
        deploy_service.delete_node(db, node_id)

    assert db.query(Front).filter(Front.node_id == node_id).count() == 1
    assert paths.node_root(deployed_chain, "10.0.0.2", 0).exists()


def test_local_move_failure(db, deploy_service, deployed_chain, paths, monkeypatch, node_async):
    node_id = front_at(db, "10.0.0.2").node_id

    def broken_move(*args, **kwargs):
        raise OSError("read-only file system")

    monkeypatch.setattr(paths, "quarantine_node", broken_move)

    with pytest.raises(NodeDirDeleteFailed):
        deploy_service.delete_node(db, node_id)

    assert db.query(Front).filter(Front.node_id == node_id).count() == 1
    assert counts(db) == {1: 3, 2: 1}
    assert node_async.group_restarts == []


def test_remote_move_failure_is_tolerated(db, deploy_service, deployed_chain, ssh, monkeypatch):
    def broken_mv(ip, src, dst):
        raise RemoteCommandFailed("mv failed", output="No such file or directory")

    monkeypatch.setattr(ssh, "mv_dir", broken_mv)

    assert deploy_service.delete_node(db, front_at(db, "10.0.0.2").node_id).success


def test_group_ids_fall_back_to_catalog(db, deploy_service, deployed_chain, paths, node_async):
    front = front_at(db, "10.0.0.2")
    shutil.rmtree(paths.node_root(deployed_chain, "10.0.0.2", 0) / "conf")

    deploy_service.delete_node(db, front.node_id)

    assert node_async.group_restarts[-1][1] == frozenset({1, 2})
    assert counts(db) == {1: 2, 2: 0}
