"""On-disk state: address-block list, alive-address cache, freshness checks.

Both files share one line format: ``#`` comments and blank lines are
ignored, every other line is one declaration trimmed of whitespace.
"""

from __future__ import annotations

import ipaddress
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Union

from cfpinner.cidr import is_ipv6_declaration, parse_block
from cfpinner.config import (
    ALIVE_IPS_FILENAME,
    ALIVE_IPS_MAX_AGE_DAYS,
    IMAGES_DIRNAME,
    IP_RANGES_FILENAME,
    IP_RANGES_MAX_AGE_DAYS,
    STATE_DIR,
)
from cfpinner.errors import ConfigurationError, ParseError
from cfpinner.models import AddressBlock

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class StatePaths:
    """Locations of the files cfpinner keeps between runs."""

    root: Path = STATE_DIR

    @property
    def ip_ranges(self) -> Path:
        return self.root / IP_RANGES_FILENAME

    @property
    def alive_ips(self) -> Path:
        return self.root / ALIVE_IPS_FILENAME

    @property
    def images(self) -> Path:
        return self.root / IMAGES_DIRNAME

    def ensure(self) -> "StatePaths":
        self.images.mkdir(parents=True, exist_ok=True)
        return self


# ── Line files ─────────────────────────────────────────────────────────


def parse_list_lines(lines: Iterable[str]) -> list[str]:
    """Strip comments and blank lines, trim the rest."""
    entries = []
    for line in lines:
        entry = line.strip()
        if entry and not entry.startswith("#"):
            entries.append(entry)
    return entries


def read_list_file(path: PathLike) -> list[str]:
    """Read a comment-stripped line file.

    Raises
    ------
    ConfigurationError
        If the file cannot be read.
    """
    try:
        with open(path, encoding="utf-8") as f:
            return parse_list_lines(f)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read {path}: {exc.strerror or exc}") from exc


def write_list_file(path: PathLike, header: Iterable[str], entries: Iterable[str]) -> None:
    """Write ``# ``-prefixed *header* lines, a blank line, then one entry per line."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for line in header:
            f.write(f"# {line}\n")
        f.write("\n")
        for entry in entries:
            f.write(f"{entry}\n")


# ── Address blocks ─────────────────────────────────────────────────────


def load_blocks(path: PathLike) -> list[AddressBlock]:
    """Load IPv4 blocks from *path*, skipping IPv6 and malformed lines.

    Raises
    ------
    ConfigurationError
        If the file is unreadable or holds no usable block.
    """
    blocks = []
    for declaration in read_list_file(path):
        if is_ipv6_declaration(declaration):
            continue
        try:
            blocks.append(parse_block(declaration))
        except ParseError as exc:
            logger.warning("%s, skipping", exc)

    if not blocks:
        raise ConfigurationError(f"No IPv4 address blocks found in {path}")
    logger.info("Loaded %d IP ranges from %s", len(blocks), path)
    return blocks


# ── Alive cache ────────────────────────────────────────────────────────


def save_alive(path: PathLike, addresses: Iterable[str]) -> int:
    """Write the alive cache, addresses in numeric order.  Returns the count."""
    ordered = sorted(set(addresses), key=lambda a: ipaddress.IPv4Address(a))
    header = [
        "Cloudflare CDN Alive IPs",
        "IPs that answered a discovery probe with any HTTP status",
        f"Scanned: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"Total alive: {len(ordered)}",
    ]
    write_list_file(path, header, ordered)
    return len(ordered)


def load_alive(path: PathLike) -> list[str]:
    """Read the alive cache; malformed addresses are logged and dropped."""
    addresses = []
    for entry in read_list_file(path):
        try:
            addresses.append(str(ipaddress.IPv4Address(entry)))
        except ValueError:
            logger.warning("Ignoring malformed address %r in %s", entry, path)
    return addresses


# ── Freshness ──────────────────────────────────────────────────────────


def file_age_days(path: PathLike, now: Optional[float] = None) -> Optional[int]:
    """Whole days since *path* was last modified, or None if it does not exist."""
    try:
        mtime = Path(path).stat().st_mtime
    except FileNotFoundError:
        return None
    now = time.time() if now is None else now
    return int((now - mtime) // 86400)


def blocks_need_update(paths: StatePaths) -> bool:
    age = file_age_days(paths.ip_ranges)
    return age is None or age > IP_RANGES_MAX_AGE_DAYS


def has_recent_alive(paths: StatePaths) -> bool:
    age = file_age_days(paths.alive_ips)
    return age is not None and age < ALIVE_IPS_MAX_AGE_DAYS
