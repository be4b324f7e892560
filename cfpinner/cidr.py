"""Address-block expansion and strided sampling.

A block declaration is turned into a bounded list of concrete IPv4
addresses.  Blocks no larger than the cap are enumerated completely;
larger blocks are sampled at a fixed stride in O(cap) time, so a /13
never materializes its half a million hosts.

Public API:
    parse_block  -- parse ``a.b.c.d/len`` (or a bare address) into an AddressBlock
    expand       -- expand one block under a cap
    expand_all   -- expand a list of declarations, skipping IPv6 and bad lines
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable, Iterator, Optional, Union

from cfpinner.errors import ParseError
from cfpinner.models import AddressBlock

logger = logging.getLogger(__name__)

# Cap value meaning "expand every address" (force-all mode).
UNLIMITED: Optional[int] = None

BlockLike = Union[AddressBlock, str]


def is_ipv6_declaration(declaration: str) -> bool:
    """IPv6 blocks are recognized by their colons and never sampled."""
    return ":" in declaration


def host_count(prefix_len: int) -> int:
    """Number of addresses covered by a prefix of *prefix_len* bits."""
    if not 0 <= prefix_len <= 32:
        raise ValueError(f"prefix length out of range: {prefix_len}")
    return 1 << (32 - prefix_len)


def parse_block(declaration: str) -> AddressBlock:
    """Parse a block declaration into an :class:`AddressBlock`.

    A bare address is treated as a /32.  The base address is normalized to
    the network address by clearing host bits.

    Raises
    ------
    ParseError
        If the address is malformed, IPv6, or the prefix is not in [0, 32].
    """
    text = declaration.strip()
    if not text:
        raise ParseError(declaration, "empty declaration")
    if is_ipv6_declaration(text):
        raise ParseError(declaration, "IPv6 blocks are not supported")

    address_part, sep, prefix_part = text.partition("/")
    try:
        base = int(ipaddress.IPv4Address(address_part.strip()))
    except ValueError as exc:
        raise ParseError(declaration, str(exc)) from exc

    if not sep:
        return AddressBlock(network=base, prefix_len=32, declaration=text)

    prefix_part = prefix_part.strip()
    if not (prefix_part.isascii() and prefix_part.isdigit()):
        raise ParseError(declaration, f"prefix length {prefix_part!r} is not a number")
    prefix_len = int(prefix_part)
    if not 0 <= prefix_len <= 32:
        raise ParseError(declaration, f"prefix length {prefix_len} not in [0, 32]")

    mask = (0xFFFFFFFF << (32 - prefix_len)) & 0xFFFFFFFF
    return AddressBlock(network=base & mask, prefix_len=prefix_len, declaration=text)


def expand(block: BlockLike, cap: Optional[int] = UNLIMITED) -> list[str]:
    """Expand *block* into at most *cap* concrete addresses.

    When *cap* is :data:`UNLIMITED` or the block holds no more than *cap*
    hosts, every address is returned in ascending order; network and
    broadcast addresses are dropped for prefixes shorter than /31.
    Otherwise exactly *cap* addresses are chosen by strided sampling.
    The result depends only on (block, cap).
    """
    if isinstance(block, str):
        block = parse_block(block)
    if cap is not UNLIMITED and cap < 1:
        raise ValueError(f"cap must be a positive integer, got {cap}")

    if cap is UNLIMITED or block.host_count <= cap:
        offsets: Iterable[int] = _all_offsets(block)
    else:
        offsets = _strided_offsets(block.host_count, cap)

    return [_to_address(block.network + offset) for offset in offsets]


def expand_all(blocks: Iterable[BlockLike], cap: Optional[int] = UNLIMITED) -> list[str]:
    """Expand every block in order and concatenate the results.

    IPv6 declarations are skipped silently; malformed declarations are
    logged and skipped so one bad line does not abort the batch.
    """
    addresses: list[str] = []
    for block in blocks:
        if isinstance(block, str):
            if is_ipv6_declaration(block):
                logger.debug("Skipping IPv6 block %s", block.strip())
                continue
            try:
                block = parse_block(block)
            except ParseError as exc:
                logger.warning("%s, skipping", exc)
                continue
        addresses.extend(expand(block, cap))
    return addresses


def _all_offsets(block: AddressBlock) -> Iterator[int]:
    total = block.host_count
    if block.prefix_len < 31:
        return iter(range(1, total - 1))
    return iter(range(total))


def _strided_offsets(total: int, cap: int) -> Iterator[int]:
    """Yield *cap* offsets spread across ``range(total)``.

    Each stride after the first is nudged by ``i % 4`` so samples do not
    always land on the first address of a stride.  Offsets are clamped
    away from the network and broadcast addresses; neighbouring strides
    may therefore repeat an address, which is accepted.
    """
    step = total // cap
    for i in range(cap):
        offset = i * step
        if i > 0 and step > 4:
            offset += i % 4
        if total > 2:
            offset = min(max(offset, 1), total - 2)
        yield offset


def _to_address(value: int) -> str:
    return str(ipaddress.IPv4Address(value))
