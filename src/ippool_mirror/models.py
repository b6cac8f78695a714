"""Value types shared by the extractor, watcher and poster.

``IPPool`` is the typed view of a single ``ippools`` custom resource.  The
address fields are parsed best-effort: text that does not form a valid
address becomes ``None`` instead of failing the whole extraction, which
mirrors how the downstream consumer treats unknown addresses (an empty
string on the wire).
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Iterable, List, Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class EndPolicy(Enum):
    """How strictly the ``end`` address of a pool range is validated.

    Pools observed in the wild do not always carry an ``end`` address.
    ``REQUIRED`` rejects such pools, ``OPTIONAL`` accepts them and leaves
    :attr:`IPPool.end` unset.
    """

    REQUIRED = auto()
    OPTIONAL = auto()


def parse_address(value: Optional[str]) -> Optional[IPAddress]:
    """Return ``value`` as an address, or ``None`` when it is not one."""

    if not value:
        return None
    try:
        return ipaddress.ip_address(value.strip())
    except ValueError:
        return None


@dataclass(frozen=True)
class IPPool:
    """A named address range mirrored from the control plane."""

    name: str
    start: Optional[IPAddress]
    end: Optional[IPAddress]

    def to_dict(self) -> Dict[str, str]:
        return {
            "Name": self.name,
            "Start": "" if self.start is None else str(self.start),
            "End": "" if self.end is None else str(self.end),
        }


def to_payload(pools: Iterable[IPPool]) -> List[Dict[str, str]]:
    """Serialise ``pools`` into the JSON document sent downstream."""

    return [pool.to_dict() for pool in pools]
