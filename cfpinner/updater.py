"""Download the published CDN address blocks."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

import httpx

from cfpinner.cidr import is_ipv6_declaration
from cfpinner.config import IP_RANGES_DOWNLOAD_TIMEOUT, IP_RANGES_URL, USER_AGENT
from cfpinner.errors import ConfigurationError
from cfpinner.storage import StatePaths, blocks_need_update, parse_list_lines, write_list_file

logger = logging.getLogger(__name__)


async def download_blocks(
    url: str = IP_RANGES_URL,
    timeout: float = IP_RANGES_DOWNLOAD_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> list[str]:
    """Fetch the IPv4 block list published at *url*."""
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport) as client:
            resp = await client.get(url, headers={"User-Agent": USER_AGENT})
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        raise ConfigurationError(f"Failed to download IP ranges from {url}: {exc}") from exc

    blocks = [b for b in parse_list_lines(resp.text.splitlines()) if not is_ipv6_declaration(b)]
    if not blocks:
        raise ConfigurationError(f"No IPv4 ranges in response from {url}")
    logger.info("Downloaded %d IPv4 ranges", len(blocks))
    return blocks


async def update_blocks(
    paths: StatePaths,
    force: bool = False,
    url: str = IP_RANGES_URL,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """Refresh the block file when missing, stale, or *force* is set.

    Returns True if the file was rewritten, False if it was already fresh.
    """
    if not force and not blocks_need_update(paths):
        return False

    blocks = await download_blocks(url, transport=transport)
    header = [
        "Cloudflare CDN IP Ranges (IPv4 only)",
        f"Source: {url}",
        "Auto-downloaded by CFPinner",
        f"Last updated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
    ]
    write_list_file(paths.ip_ranges, header, blocks)
    logger.info("Saved IP ranges to %s", paths.ip_ranges)
    return True
