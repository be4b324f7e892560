"""Shared test fixtures for the cfpinner test suite."""

from __future__ import annotations

from typing import Callable, Iterable

import httpx
import pytest

from cfpinner.storage import StatePaths


def edge_handler(
    hits: Iterable[str] = (),
    down: Iterable[str] = (),
    colo: str = "SJC",
    calls: list[httpx.Request] | None = None,
) -> Callable[[httpx.Request], httpx.Response]:
    """Fake edge: HIT for *hits*, connection refused for *down*, MISS otherwise."""
    hits = set(hits)
    down = set(down)

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        address = request.url.host
        if address in down:
            raise httpx.ConnectError("Connection refused", request=request)
        return httpx.Response(
            200,
            headers={
                "CF-Cache-Status": "HIT" if address in hits else "MISS",
                "CF-Ray": f"8428f15b8a9c1234-{colo}",
                "CF-IPCountry": "US",
            },
        )

    return handler


@pytest.fixture()
def state(tmp_path) -> StatePaths:
    """State directory rooted in a temporary path."""
    return StatePaths(tmp_path / "state").ensure()
