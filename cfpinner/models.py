"""Data models for cfpinner."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, Optional

from cfpinner.config import DEFAULT_THREADS, DEFAULT_TRACK_TIMEOUT, TRACK_MAX_PER_RANGE


class Verdict(str, Enum):
    """Classification of a single probe outcome."""

    HIT = "HIT"
    MISS = "MISS"
    ERROR = "ERROR"


@dataclass(frozen=True)
class AddressBlock:
    """A parsed IPv4 block, base address normalized to the network address."""

    network: int  # numeric network address, host bits cleared
    prefix_len: int
    declaration: str = ""  # original text, for diagnostics

    @property
    def host_count(self) -> int:
        return 1 << (32 - self.prefix_len)

    @property
    def network_address(self) -> str:
        return str(ipaddress.IPv4Address(self.network))

    def __str__(self) -> str:
        return f"{self.network_address}/{self.prefix_len}"


@dataclass(frozen=True)
class ProbeTarget:
    """One concrete address to probe, with the URL and virtual host to present."""

    address: str
    url: str  # request URL with the address substituted for the host
    domain: str  # sent as the Host header / SNI name


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of probing a single address. Never mutated after creation."""

    address: str
    status_code: int = 0
    success: bool = False
    error: str = ""  # non-empty iff the transport failed
    cache_status: str = ""  # verbatim, e.g. HIT / MISS / EXPIRED / DYNAMIC
    ray_id: str = ""
    pop_code: str = ""  # IATA code parsed from the ray id suffix
    country: str = ""

    @property
    def is_alive(self) -> bool:
        return self.success and self.status_code > 0


@dataclass
class BatchReport:
    """Aggregated outcomes of one dispatch."""

    outcomes: list[ProbeOutcome] = field(default_factory=list)
    hits: int = 0
    misses: int = 0
    errors: int = 0

    @property
    def total(self) -> int:
        return len(self.outcomes)

    def _percent(self, count: int) -> float:
        return count * 100.0 / self.total if self.total else 0.0

    @property
    def hit_percent(self) -> float:
        return self._percent(self.hits)

    @property
    def miss_percent(self) -> float:
        return self._percent(self.misses)

    @property
    def error_percent(self) -> float:
        return self._percent(self.errors)


class AliveSet:
    """Addresses that answered during a discovery pass. Unordered."""

    def __init__(self, addresses: Iterable[str] = ()):
        self._addresses = frozenset(addresses)

    def __len__(self) -> int:
        return len(self._addresses)

    def __iter__(self) -> Iterator[str]:
        return iter(self._addresses)

    def __contains__(self, address: object) -> bool:
        return address in self._addresses

    def __eq__(self, other: object) -> bool:
        if isinstance(other, AliveSet):
            return self._addresses == other._addresses
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._addresses)

    def __repr__(self) -> str:
        return f"AliveSet({len(self._addresses)} addresses)"

    def sorted(self) -> list[str]:
        """Return the addresses in ascending numeric order."""
        return sorted(self._addresses, key=lambda a: ipaddress.IPv4Address(a))


@dataclass
class ArtifactMetadata:
    """Metadata of a generated tracking image."""

    identifier: str
    filename: str = ""
    full_path: str = ""
    width: int = 0
    height: int = 0
    timestamp: str = ""


@dataclass
class ScanConfig:
    """Configuration for a tracking or discovery run."""

    threads: int = DEFAULT_THREADS
    timeout: float = DEFAULT_TRACK_TIMEOUT
    force_all: bool = False
    max_per_range: int = TRACK_MAX_PER_RANGE
    quiet: bool = False
    json_output: bool = False
    csv_output: bool = False
    output_file: Optional[str] = None

    @property
    def interactive(self) -> bool:
        """Whether progress and tables go to the terminal."""
        return not (self.quiet or self.json_output or self.csv_output)
