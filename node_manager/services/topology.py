"""Parse operator topology ("ip conf") lines.

Two line formats are accepted and normalized to the same ``ConfigLine``:

    10.0.0.1:agencyA:2:{1,2}            ip:agency:count:{groups}
    10.0.0.1:2 agencyA 1,2 30300,...    the build_chain ip config format

Lines matching neither are treated as comments and skipped.
"""

import ipaddress
import re
from dataclasses import dataclass, replace
from typing import FrozenSet, Iterable, List, Optional, Protocol

import structlog

from node_manager.core.errors import (
    EmptyTopology,
    HostAgencyConflict,
    HostUnreachable,
    InvalidNodeCount,
)

logger = structlog.get_logger(__name__)

_OPERATOR_LINE = re.compile(
    r"^\s*(?P<ip>[0-9.]+):(?P<agency>[\w-]+):(?P<num>-?\d+):\{(?P<groups>\s*\d+(?:\s*,\s*\d+)*\s*)\}\s*$"
)
_BUILD_CHAIN_LINE = re.compile(
    r"^\s*(?P<ip>[0-9.]+):(?P<num>-?\d+)\s+(?P<agency>[\w-]+)\s+(?P<groups>\d+(?:,\d+)*)(?:\s+\S+)?\s*$"
)


class Reachability(Protocol):
    def connect(self, ip: str) -> bool: ...


@dataclass(frozen=True)
class ConfigLine:
    ip: str
    agency_name: str
    num: int
    group_ids: FrozenSet[int]

    @classmethod
    def parse(cls, line: str) -> Optional["ConfigLine"]:
        match = _OPERATOR_LINE.match(line) or _BUILD_CHAIN_LINE.match(line)
        if not match:
            return None

        ip = match.group("ip")
        try:
            ipaddress.IPv4Address(ip)
        except ValueError:
            return None

        group_ids = frozenset(int(g) for g in match.group("groups").split(","))
        return cls(
            ip=ip,
            agency_name=match.group("agency"),
            num=int(match.group("num")),
            group_ids=group_ids,
        )

    def to_build_chain_line(self) -> str:
        groups = ",".join(str(g) for g in sorted(self.group_ids))
        return f"{self.ip}:{self.num} {self.agency_name} {groups}"


def parse_ip_conf(ip_conf: Optional[Iterable[str]], ssh: Reachability) -> List[ConfigLine]:
    """
    Validate operator topology lines and return them in input order.

    Raises:
      - EmptyTopology: no input, or no parseable line
      - HostAgencyConflict: one ip bound to two agencies
      - HostUnreachable: ssh to the ip fails
      - InvalidNodeCount: node count <= 0
    """
    lines = list(ip_conf or [])
    if not lines:
        raise EmptyTopology()

    config_lines: List[ConfigLine] = []
    host_agency = {}
    for line in lines:
        if not line or not line.strip():
            continue

        config_line = ConfigLine.parse(line)
        if config_line is None:
            logger.debug("skip unparseable ip conf line", line=line)
            continue

        # a host only belongs to one agency
        known_agency = host_agency.get(config_line.ip)
        if known_agency is not None and known_agency.lower() != config_line.agency_name.lower():
            raise HostAgencyConflict(
                f"Host {config_line.ip} belongs to agency {known_agency}, "
                f"cannot assign it to {config_line.agency_name}"
            )
        if known_agency is None:
            host_agency[config_line.ip] = config_line.agency_name
        elif known_agency != config_line.agency_name:
            # keep the first spelling seen for the host
            config_line = replace(config_line, agency_name=known_agency)

        if not ssh.connect(config_line.ip):
            raise HostUnreachable(f"Cannot connect to host {config_line.ip} over SSH")

        if config_line.num <= 0:
            raise InvalidNodeCount(f"Node count must be positive: {line}")

        config_lines.append(config_line)

    if not config_lines:
        raise EmptyTopology()

    return config_lines
