"""Status state machines for catalog entities.

Every status write goes through :func:`transition`, which checks the move
against the table for that enum. Moving to the current status is a no-op.
"""

from enum import Enum
from typing import Dict, FrozenSet, Type

from node_manager.core.errors import InvalidStatusTransition


class EncryptType(int, Enum):
    ECDSA = 0
    SM2 = 1

    @classmethod
    def from_image(cls, image: str) -> "EncryptType":
        # guomi images are tagged with a -gm suffix
        return cls.SM2 if image.endswith("-gm") else cls.ECDSA


class RunType(Enum):
    DOCKER = "DOCKER"


class ChainStatus(Enum):
    INITIALIZED = "INITIALIZED"
    RUNNING = "RUNNING"


class FrontStatus(Enum):
    INITIALIZED = "INITIALIZED"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"

    @property
    def is_running(self) -> bool:
        return self is FrontStatus.RUNNING


class GroupStatus(Enum):
    MAINTAINING = "MAINTAINING"
    NORMAL = "NORMAL"


class NodeStatus(Enum):
    DEAD = "DEAD"
    RUNNING = "RUNNING"


class HostStatus(Enum):
    ADDED = "ADDED"
    INITIATED = "INITIATED"
    INIT_FAILED = "INIT_FAILED"


_TRANSITIONS: Dict[Type[Enum], Dict[Enum, FrozenSet[Enum]]] = {
    ChainStatus: {
        ChainStatus.INITIALIZED: frozenset({ChainStatus.RUNNING}),
        ChainStatus.RUNNING: frozenset(),
    },
    FrontStatus: {
        FrontStatus.INITIALIZED: frozenset({FrontStatus.RUNNING, FrontStatus.STOPPED}),
        FrontStatus.RUNNING: frozenset({FrontStatus.STOPPED}),
        FrontStatus.STOPPED: frozenset({FrontStatus.RUNNING}),
    },
    GroupStatus: {
        GroupStatus.MAINTAINING: frozenset({GroupStatus.NORMAL}),
        GroupStatus.NORMAL: frozenset({GroupStatus.MAINTAINING}),
    },
    NodeStatus: {
        NodeStatus.DEAD: frozenset({NodeStatus.RUNNING}),
        NodeStatus.RUNNING: frozenset({NodeStatus.DEAD}),
    },
    HostStatus: {
        HostStatus.ADDED: frozenset({HostStatus.INITIATED, HostStatus.INIT_FAILED}),
        HostStatus.INIT_FAILED: frozenset({HostStatus.INITIATED}),
        HostStatus.INITIATED: frozenset(),
    },
}


def can_transition(current: Enum, target: Enum) -> bool:
    if type(current) is not type(target):
        return False
    if current is target:
        return True
    return target in _TRANSITIONS[type(current)][current]


def transition(current: Enum, target: Enum) -> Enum:
    """Return ``target`` if ``current -> target`` is allowed, else raise."""
    if not can_transition(current, target):
        raise InvalidStatusTransition(
            f"{type(current).__name__}: {current.name} -> {target.name} is not allowed"
        )
    return target
