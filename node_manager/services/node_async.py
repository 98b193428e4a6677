"""Fire-and-forget (re)start of front processes.

Workflows publish a restart request and return; a thread pool restarts the
fronts over SSH, probes them over HTTP and records the resulting statuses.
Callers see convergence only by polling entity status.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, FrozenSet, Iterable, Optional, Union

import httpx
import structlog
from sqlalchemy.orm import Session
from tenacity import Retrying, stop_after_attempt, wait_exponential

from node_manager.core.config import Settings, settings as default_settings
from node_manager.core.errors import ExternalToolError
from node_manager.core.status import ChainStatus, FrontStatus, GroupStatus, NodeStatus
from node_manager.models.chain import Chain
from node_manager.models.front import Front
from node_manager.services import chain as chain_service
from node_manager.services import docker
from node_manager.services import front as front_service
from node_manager.services import group as group_service
from node_manager.services import node as node_service
from node_manager.services.ssh import SshClient

logger = structlog.get_logger(__name__)


class NodeAsyncService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        ssh: SshClient,
        image_repository: str,
        *,
        max_workers: int = 4,
        max_attempts: int = 3,
        health_path: str = "/WeBASE-Front/",
        health_timeout: float = 5.0,
        retry_wait=None,
        probe: Optional[Callable[[Front], None]] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.session_factory = session_factory
        self.ssh = ssh
        self.image_repository = image_repository
        self.max_attempts = max_attempts
        self.health_path = health_path
        self.health_timeout = health_timeout
        self.retry_wait = retry_wait if retry_wait is not None else wait_exponential(multiplier=1, max=10)
        self.probe = probe or self._probe_http
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="front-restart"
        )

    @classmethod
    def from_settings(
        cls,
        session_factory: Callable[[], Session],
        ssh: SshClient,
        settings: Optional[Settings] = None,
    ) -> "NodeAsyncService":
        settings = settings or default_settings
        return cls(
            session_factory,
            ssh,
            settings.IMAGE_REPOSITORY,
            max_workers=settings.RESTART_WORKERS,
            max_attempts=settings.RESTART_MAX_ATTEMPTS,
            health_path=settings.FRONT_HEALTH_PATH,
            health_timeout=settings.FRONT_HEALTH_TIMEOUT,
        )

    # publish

    def start_front_of_chain(self, chain_id: int) -> None:
        self._submit(chain_id, None)

    def start_front_of_group(self, chain_id: int, group_ids: Union[int, Iterable[int]]) -> None:
        if isinstance(group_ids, int):
            group_ids = [group_ids]
        self._submit(chain_id, frozenset(group_ids))

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _submit(self, chain_id: int, group_ids: Optional[FrozenSet[int]]) -> None:
        logger.info(
            "publish front restart",
            chain_id=chain_id,
            group_ids=sorted(group_ids) if group_ids is not None else "all",
        )
        future = self._executor.submit(self._restart_fronts, chain_id, group_ids)
        future.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.error("front restart task failed", error=repr(error))

    # worker

    def _restart_fronts(self, chain_id: int, group_ids: Optional[FrozenSet[int]]) -> None:
        db = self.session_factory()
        try:
            chain = chain_service.get_by_id(db, chain_id)
            if chain is None:
                logger.warning("chain gone before restart", chain_id=chain_id)
                return

            if group_ids is None:
                fronts = front_service.select_by_chain(db, chain_id)
            else:
                fronts = front_service.select_by_groups(db, chain_id, group_ids)

            running = {}
            for front in fronts:
                running[front.front_id] = self.restart_front(db, chain, front)
                db.commit()

            self._settle_groups(db, chain, group_ids)
            if group_ids is None and fronts and all(running.values()):
                chain_service.update_status(db, chain, ChainStatus.RUNNING)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("restart fronts failed", chain_id=chain_id)
        finally:
            db.close()

    def _settle_groups(self, db: Session, chain: Chain, group_ids: Optional[FrozenSet[int]]) -> None:
        """A group is NORMAL once every front in it is running."""
        groups = group_service.select_by_chain(db, chain.id)
        for group in groups:
            if group_ids is not None and group.group_id not in group_ids:
                continue
            members = front_service.select_by_groups(db, chain.id, [group.group_id])
            if members and all(f.status is FrontStatus.RUNNING for f in members):
                group_service.update_status(db, group, GroupStatus.NORMAL)
                front_service.update_group_map_status(db, chain.id, group.group_id, GroupStatus.NORMAL)

    def restart_front(self, db: Session, chain: Chain, front: Front) -> bool:
        """Restart one front and record the outcome; True when it came up."""
        try:
            if front.status is FrontStatus.RUNNING:
                self._mark_stopped(db, chain, front)
            self.start_front(db, chain, front)
        except (ExternalToolError, httpx.HTTPError) as e:
            logger.warning(
                "front did not come up",
                node_id=front.node_id,
                ip=front.front_ip,
                error=str(e),
            )
            self._mark_stopped(db, chain, front)
            return False
        return True

    def start_front(self, db: Session, chain: Chain, front: Front) -> None:
        command = docker.start_command(chain, front, self.image_repository)
        for attempt in self._retrying():
            with attempt:
                self.ssh.exec_or_raise(front.front_ip, command)
        for attempt in self._retrying():
            with attempt:
                self.probe(front)

        front_service.update_status(db, front, FrontStatus.RUNNING)
        node_service.update_status_by_node_id(db, chain.id, front.node_id, NodeStatus.RUNNING)
        logger.info("front started", node_id=front.node_id, container=front.container_name)

    def stop_front(self, db: Session, chain: Chain, front: Front) -> None:
        self.ssh.exec_or_raise(front.front_ip, docker.stop_command(front))
        self._mark_stopped(db, chain, front)
        logger.info("front stopped", node_id=front.node_id, container=front.container_name)

    def _mark_stopped(self, db: Session, chain: Chain, front: Front) -> None:
        front_service.update_status(db, front, FrontStatus.STOPPED)
        node_service.update_status_by_node_id(db, chain.id, front.node_id, NodeStatus.DEAD)

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            reraise=True,
        )

    def _probe_http(self, front: Front) -> None:
        url = f"http://{front.front_ip}:{front.front_port}{self.health_path}"
        response = httpx.get(url, timeout=self.health_timeout)
        response.raise_for_status()
