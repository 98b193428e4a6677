import pytest

from node_manager.db.session import after_commit, transactional
from node_manager.models.image_tag import ImageTag


def tag(value):
    return ImageTag(config_name="docker_image", config_value=value)


def test_outermost_block_commits_and_runs_hooks(session_factory):
    db = session_factory()
    calls = []

    with transactional(db):
        db.add(tag("v1"))
        after_commit(db, lambda: calls.append("published"))
        assert calls == []

    assert calls == ["published"]
    other = session_factory()
    assert other.query(ImageTag).filter(ImageTag.config_value == "v1").count() == 1
    other.close()
    db.close()


def test_nested_block_joins_outer(session_factory):
    db = session_factory()
    calls = []

    with transactional(db):
        with transactional(db):
            db.add(tag("v2"))
            after_commit(db, lambda: calls.append("inner"))
        # the inner block neither committed nor ran hooks
        assert calls == []
        other = session_factory()
        assert other.query(ImageTag).filter(ImageTag.config_value == "v2").count() == 0
        other.close()

    assert calls == ["inner"]
    db.close()


def test_error_rolls_back_and_drops_hooks(session_factory):
    db = session_factory()
    calls = []

    with pytest.raises(RuntimeError):
        with transactional(db):
            db.add(tag("v3"))
            db.flush()
            after_commit(db, lambda: calls.append("published"))
            raise RuntimeError("boom")

    assert calls == []
    assert db.query(ImageTag).filter(ImageTag.config_value == "v3").count() == 0

    # the next block starts clean
    with transactional(db):
        pass
    assert calls == []
    db.close()


def test_error_in_nested_block_rolls_back_outer(session_factory):
    db = session_factory()

    with pytest.raises(ValueError):
        with transactional(db):
            db.add(tag("v4"))
            with transactional(db):
                raise ValueError("bad")

    assert db.query(ImageTag).count() == 0
    db.close()


def test_failing_hook_does_not_fail_the_committed_block(session_factory):
    db = session_factory()
    calls = []

    def broken_publish():
        raise RuntimeError("cannot schedule new futures after shutdown")

    with transactional(db):
        db.add(tag("v5"))
        after_commit(db, broken_publish)
        after_commit(db, lambda: calls.append("published"))

    # later hooks still run and the write stays committed
    assert calls == ["published"]
    other = session_factory()
    assert other.query(ImageTag).filter(ImageTag.config_value == "v5").count() == 1
    other.close()
    db.close()
