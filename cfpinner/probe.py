"""Single-address edge probe.

Each probe is one HEAD request sent to a literal edge address while
presenting the tracked domain as the virtual host.  Certificate checks are
disabled because the edge address never matches the certificate; the
domain still travels in the Host header and the TLS SNI extension so the
edge routes the request to the right zone.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Union

import httpx

from cfpinner.config import (
    CACHE_STATUS_HEADER,
    COUNTRY_HEADER,
    DEFAULT_TRACK_TIMEOUT,
    RAY_HEADER,
    USER_AGENT,
)
from cfpinner.errors import TransportError
from cfpinner.models import ProbeOutcome, ProbeTarget

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Target construction
# ---------------------------------------------------------------------------

def normalize_url(url: str) -> str:
    """Prefix *url* with ``https://`` when it carries no scheme."""
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url


def url_domain(url: str) -> str:
    """Return the virtual host of *url* (host plus explicit port, if any)."""
    return httpx.URL(normalize_url(url)).netloc.decode("ascii")


def build_target(url: str, address: str, domain: Optional[str] = None) -> ProbeTarget:
    """Substitute *address* for the host of *url*.

    Scheme, port, path and query are preserved.  *domain* defaults to the
    original host of *url*.
    """
    parsed = httpx.URL(normalize_url(url))
    return ProbeTarget(
        address=address,
        url=str(parsed.copy_with(host=address)),
        domain=domain or parsed.netloc.decode("ascii"),
    )


# ---------------------------------------------------------------------------
# Header signals
# ---------------------------------------------------------------------------

def parse_pop_code(ray_id: str) -> str:
    """Return the 3-letter PoP code following the last ``-`` of a ray id.

    ``"8428f15b8a9c1234-SJC"`` gives ``"SJC"``.  An empty string is returned
    when there is no dash or fewer than three characters follow it.
    """
    dash = ray_id.rfind("-")
    if dash == -1 or len(ray_id) - dash - 1 < 3:
        return ""
    return ray_id[dash + 1:dash + 4]


def extract_signals(headers: Union[httpx.Headers, Mapping[str, str]]) -> dict[str, str]:
    """Pull cache status, ray id, PoP code and country out of *headers*."""
    if not isinstance(headers, httpx.Headers):
        headers = httpx.Headers(headers)
    ray_id = headers.get(RAY_HEADER, "").strip()
    return {
        "cache_status": headers.get(CACHE_STATUS_HEADER, "").strip(),
        "ray_id": ray_id,
        "pop_code": parse_pop_code(ray_id),
        "country": headers.get(COUNTRY_HEADER, "").strip(),
    }


# ---------------------------------------------------------------------------
# Probe client
# ---------------------------------------------------------------------------

class EdgeProbe:
    """HEAD-request prober owning a private ``httpx.AsyncClient``.

    Use as an async context manager::

        async with EdgeProbe(timeout=5) as probe:
            outcome = await probe.probe(target)

    *transport* replaces the network stack (tests pass an
    ``httpx.MockTransport``).
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TRACK_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        user_agent: str = USER_AGENT,
    ):
        self.timeout = timeout
        self._transport = transport
        self._user_agent = user_agent
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "EdgeProbe":
        self._client = httpx.AsyncClient(
            http2=self._transport is None,
            verify=False,
            follow_redirects=False,
            timeout=httpx.Timeout(self.timeout),
            headers={"User-Agent": self._user_agent},
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def probe(self, target: ProbeTarget, timeout: Optional[float] = None) -> ProbeOutcome:
        """Probe *target* once.  Transport failures become ERROR data, never exceptions."""
        try:
            response = await self._head(target, timeout)
        except TransportError as exc:
            logger.debug("Probe of %s failed: %s", target.address, exc)
            return ProbeOutcome(address=target.address, error=str(exc))

        return ProbeOutcome(
            address=target.address,
            status_code=response.status_code,
            success=True,
            **extract_signals(response.headers),
        )

    async def _head(self, target: ProbeTarget, timeout: Optional[float]) -> httpx.Response:
        if self._client is None:
            raise RuntimeError("EdgeProbe must be used as an async context manager")

        sni_hostname = httpx.URL(f"https://{target.domain}").host
        request = self._client.build_request(
            "HEAD",
            target.url,
            headers={"Host": target.domain},
            timeout=httpx.Timeout(timeout) if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            extensions={"sni_hostname": sni_hostname},
        )
        try:
            return await self._client.send(request)
        except httpx.TransportError as exc:
            raise TransportError.from_exception(exc) from exc
