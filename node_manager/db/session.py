from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
import structlog

from node_manager.core.config import settings

logger = structlog.get_logger(__name__)

_DEPTH_KEY = "transactional_depth"
_HOOKS_KEY = "after_commit_hooks"

connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transactional(db: Session) -> Iterator[Session]:
    """
    Required-propagation transaction block:
      - the outermost block commits on success and rolls back on any exception
      - nested blocks join the enclosing one and never commit themselves
    Hooks registered with after_commit() run once the outermost block commits;
    an exception from a hook is logged and does not propagate.
    """
    depth = db.info.get(_DEPTH_KEY, 0)
    db.info[_DEPTH_KEY] = depth + 1
    try:
        yield db
    except BaseException:
        if depth == 0:
            db.rollback()
            db.info.pop(_HOOKS_KEY, None)
        raise
    else:
        if depth == 0:
            db.commit()
            hooks = db.info.pop(_HOOKS_KEY, [])
            for hook in hooks:
                # committed already; hook errors are logged only
                try:
                    hook()
                except Exception:
                    logger.exception("after commit hook failed", hook=repr(hook))
    finally:
        db.info[_DEPTH_KEY] = depth


def after_commit(db: Session, hook: Callable[[], None]) -> None:
    db.info.setdefault(_HOOKS_KEY, []).append(hook)
