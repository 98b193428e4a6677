import pytest

from node_manager.core.errors import (
    AddNodeFailed,
    AgencyNameRequired,
    ChainNotFound,
    InvalidIp,
    InvalidNodeCount,
)
from node_manager.core.status import FrontStatus, GroupStatus, HostStatus
from node_manager.models.agency import Agency
from node_manager.models.front import Front
from node_manager.models.group import Group
from node_manager.models.host import Host
from node_manager.models.node import Node
from node_manager.services import group as group_service
from node_manager.services.paths import read_group_ids


def snapshot(db):
    return tuple(db.query(model).count() for model in (Agency, Host, Group, Front, Node))


def group(db, group_id):
    return db.query(Group).filter(Group.group_id == group_id).one()


def test_grow_group_on_known_host(db, deploy_service, deployed_chain, node_async, paths):
    result = deploy_service.add_nodes(db, deployed_chain, group_id=1, ip="10.0.0.1", agency_name=None, num=2)

    assert result.success
    assert len(result.data) == 2
    assert group(db, 1).node_count == 5
    assert group(db, 1).status is GroupStatus.MAINTAINING

    fronts = db.query(Front).filter(Front.front_ip == "10.0.0.1").order_by(Front.host_index).all()
    assert [f.host_index for f in fronts] == [0, 1, 2, 3]
    new = fronts[2:]
    assert all(f.status is FrontStatus.INITIALIZED for f in new)
    assert [f.p2p_port for f in new] == [30302, 30303]
    assert [f.channel_port for f in new] == [20202, 20203]
    assert all(f.agency_name == "agencyA" for f in new)

    # new nodes got the group's existing genesis
    for front in new:
        assert read_group_ids(paths.node_root(deployed_chain, "10.0.0.1", front.host_index)) == {1}

    chain_id = fronts[0].chain_id
    assert node_async.group_restarts == [(chain_id, frozenset({1}))]


def test_known_host_keeps_its_agency(db, deploy_service, deployed_chain):
    deploy_service.add_nodes(db, deployed_chain, group_id=1, ip="10.0.0.2", agency_name="other", num=1)

    assert db.query(Agency).count() == 1
    front = db.query(Front).filter(Front.front_ip == "10.0.0.2").order_by(Front.host_index.desc()).first()
    assert front.agency_name == "agencyA"


def test_peers_are_rewritten_for_the_group(db, deploy_service, deployed_chain, ssh, paths):
    ssh.copies.clear()
    deploy_service.add_nodes(db, deployed_chain, group_id=1, ip="10.0.0.1", agency_name=None, num=1)

    config_ini = paths.node_root(deployed_chain, "10.0.0.2", 0) / "config.ini"
    text = config_ini.read_text(encoding="utf-8")
    assert "10.0.0.1:30302" in text
    remote = {(ip, r) for ip, _, r in ssh.copies}
    assert ("10.0.0.2", "/opt/fisco/chain1/node0/config.ini") in remote
    # the new node is copied whole, not file by file
    assert ("10.0.0.1", "/opt/fisco/chain1/node2") in remote
    assert ("10.0.0.1", "/opt/fisco/chain1/node2/config.ini") not in remote


def test_new_group_gets_its_own_genesis(db, deploy_service, deployed_chain, paths):
    deploy_service.add_nodes(db, deployed_chain, group_id=7, ip="10.0.0.2", agency_name=None, num=2)

    assert group(db, 7).node_count == 2
    genesis = paths.node_root(deployed_chain, "10.0.0.2", 1) / "conf" / "group.7.genesis"
    text = genesis.read_text(encoding="utf-8")
    for front in db.query(Front).filter(Front.front_ip == "10.0.0.2", Front.host_index >= 1):
        assert front.node_id in text


def test_new_ip_requires_agency_name(db, deploy_service, deployed_chain):
    before = snapshot(db)
    with pytest.raises(AgencyNameRequired):
        deploy_service.add_nodes(db, deployed_chain, group_id=1, ip="10.0.0.3", agency_name=None, num=1)
    assert snapshot(db) == before


def test_new_ip_with_new_agency(db, deploy_service, deployed_chain, bootstrap, paths):
    hosts, agencies = db.query(Host).count(), db.query(Agency).count()

    result = deploy_service.add_nodes(db, deployed_chain, group_id=2, ip="10.0.0.3", agency_name="agencyB", num=1)

    assert result.success
    assert db.query(Host).count() == hosts + 1
    assert db.query(Agency).count() == agencies + 1
    host = db.query(Host).filter(Host.ip == "10.0.0.3").one()
    assert host.agency_name == "agencyB"
    assert host.status is HostStatus.ADDED
    assert (deployed_chain, "agencyB") in bootstrap.agency_certs
    assert (paths.host_sdk_dir(deployed_chain, "10.0.0.3") / "agency.crt").is_file()

    front = db.query(Front).filter(Front.front_ip == "10.0.0.3").one()
    assert front.host_index == 0
    assert group(db, 2).node_count == 2


def test_new_ip_with_existing_agency(db, deploy_service, deployed_chain):
    agencies = db.query(Agency).count()
    deploy_service.add_nodes(db, deployed_chain, group_id=1, ip="10.0.0.3", agency_name="agencyA", num=1)
    assert db.query(Agency).count() == agencies


@pytest.mark.parametrize("num", [0, -1, 200, 500])
def test_invalid_node_count_changes_nothing(db, deploy_service, deployed_chain, node_async, num):
    before = snapshot(db)
    with pytest.raises(InvalidNodeCount):
        deploy_service.add_nodes(db, deployed_chain, group_id=1, ip="10.0.0.1", agency_name=None, num=num)
    assert snapshot(db) == before
    assert group(db, 1).node_count == 3
    assert node_async.group_restarts == []


def test_invalid_ip(db, deploy_service, deployed_chain):
    with pytest.raises(InvalidIp):
        deploy_service.add_nodes(db, deployed_chain, group_id=1, ip="10.0.0", agency_name="a", num=1)


def test_unknown_chain(db, deploy_service):
    with pytest.raises(ChainNotFound):
        deploy_service.add_nodes(db, "nope", group_id=1, ip="10.0.0.1", agency_name="a", num=1)


def test_failure_rolls_back_and_publishes_nothing(db, deploy_service, deployed_chain, ssh, node_async):
    before = snapshot(db)
    ssh.failing_scp.add("10.0.0.1")

    with pytest.raises(AddNodeFailed):
        deploy_service.add_nodes(db, deployed_chain, group_id=1, ip="10.0.0.1", agency_name=None, num=1)

    assert snapshot(db) == before
    assert group(db, 1).node_count == 3
    assert node_async.group_restarts == []


def test_retry_after_failure_reuses_host_index(db, deploy_service, deployed_chain, ssh, paths):
    ssh.failing_scp.add("10.0.0.1")
    with pytest.raises(AddNodeFailed):
        deploy_service.add_nodes(db, deployed_chain, group_id=1, ip="10.0.0.1", agency_name=None, num=1)
    ssh.failing_scp.clear()

    result = deploy_service.add_nodes(db, deployed_chain, group_id=1, ip="10.0.0.1", agency_name=None, num=1)

    assert result.success
    front = db.query(Front).filter(Front.node_id == result.data[0]).one()
    assert front.host_index == 2
    # the dir left by the failed attempt was moved aside
    assert any(p.name.startswith("10.0.0.1-node2-stale") for p in (paths.nodes_root_tmp / deployed_chain).iterdir())


def test_counts_follow_group_service(db, deploy_service, deployed_chain):
    chain_id = db.query(Front).first().chain_id
    deploy_service.add_nodes(db, deployed_chain, group_id=2, ip="10.0.0.1", agency_name=None, num=1)
    assert group_service.get(db, chain_id, 2).node_count == 2
