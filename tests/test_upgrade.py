import pytest

from node_manager.core.errors import (
    ChainNotFound,
    InvalidTag,
    NodeNotFound,
    NodeStillRunning,
    SameVersionError,
    ValidationError,
)
from node_manager.core.status import FrontStatus, NodeStatus
from node_manager.models.agency import Agency
from node_manager.models.chain import Chain
from node_manager.models.front import Front
from node_manager.models.front_group import FrontGroup
from node_manager.models.group import Group
from node_manager.models.host import Host
from node_manager.models.image_tag import ImageTag
from node_manager.models.node import Node
from tests.conftest import TAG_V1, TAG_V2


def test_upgrade(db, deploy_service, deployed_chain, node_async):
    chain = db.query(Chain).one()

    result = deploy_service.upgrade(db, deployed_chain, TAG_V2)

    assert result.success
    db.refresh(chain)
    assert chain.version == "v2.8.0"
    assert {f.image_tag for f in db.query(Front).all()} == {"v2.8.0"}
    assert node_async.chain_restarts == [chain.id]


def test_same_version_does_not_restart(db, deploy_service, deployed_chain, node_async):
    with pytest.raises(SameVersionError):
        deploy_service.upgrade(db, deployed_chain, TAG_V1)
    assert node_async.chain_restarts == []


def test_same_version_ignores_case(db, deploy_service, deployed_chain, node_async):
    db.add(ImageTag(id=10, config_name="docker_image", config_value="V2.7.2"))
    db.commit()
    with pytest.raises(SameVersionError):
        deploy_service.upgrade(db, deployed_chain, 10)
    assert node_async.chain_restarts == []


def test_upgrade_unknown_tag(db, deploy_service, deployed_chain):
    with pytest.raises(InvalidTag):
        deploy_service.upgrade(db, deployed_chain, 99)


def test_upgrade_unknown_chain(db, deploy_service):
    with pytest.raises(ChainNotFound):
        deploy_service.upgrade(db, "nope", TAG_V2)


def test_start_and_stop_node(db, deploy_service, deployed_chain):
    front = db.query(Front).first()
    node_id = front.node_id

    deploy_service.start_node(db, node_id)
    db.refresh(front)
    assert front.status is FrontStatus.RUNNING
    assert {n.status for n in db.query(Node).filter(Node.node_id == node_id)} == {NodeStatus.RUNNING}

    deploy_service.stop_node(db, node_id)
    db.refresh(front)
    assert front.status is FrontStatus.STOPPED
    assert {n.status for n in db.query(Node).filter(Node.node_id == node_id)} == {NodeStatus.DEAD}


def test_start_unknown_node(db, deploy_service):
    with pytest.raises(NodeNotFound):
        deploy_service.start_node(db, "missing")


def test_delete_chain(db, deploy_service, deployed_chain, paths):
    result = deploy_service.delete_chain(db, deployed_chain)

    assert result.success
    for model in (Chain, Agency, Host, Group, Front, Node, FrontGroup):
        assert db.query(model).count() == 0
    assert not paths.chain_root(deployed_chain).exists()
    assert any(p.name.startswith(f"{deployed_chain}-") for p in paths.nodes_root_tmp.iterdir())


def test_delete_chain_refuses_running_nodes(db, deploy_service, deployed_chain):
    deploy_service.start_node(db, db.query(Front).first().node_id)

    with pytest.raises(NodeStillRunning):
        deploy_service.delete_chain(db, deployed_chain)
    assert db.query(Chain).count() == 1


def test_delete_chain_validation(db, deploy_service):
    with pytest.raises(ValidationError):
        deploy_service.delete_chain(db, " ")
    with pytest.raises(ChainNotFound):
        deploy_service.delete_chain(db, "nope")
