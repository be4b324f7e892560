"""Probe dispatch engine for cfpinner.

Targets are split into contiguous, near-equal slices, one per worker.
Each worker owns a private :class:`EdgeProbe` (and therefore a private
connection pool) and probes its slice strictly in order.  Workers never
touch shared state: every outcome is sent over a single result channel
whose one consumer collects results, counts progress and forwards
interesting outcomes to the presentation layer.

Public API:
    partition   -- split a list into n contiguous slices of ceil(len/n)
    dispatch    -- probe a list of targets with a fixed worker pool
    track       -- look for a cached resource across edge addresses
    discover    -- find responsive edge addresses in the published blocks
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Callable, Iterable, Optional, Sequence, TypeVar

import httpx

from cfpinner.cidr import UNLIMITED, BlockLike, expand_all
from cfpinner.config import (
    ALIVE_MAX_PER_RANGE,
    DEFAULT_ALIVE_TIMEOUT,
    DEFAULT_THREADS,
    DEFAULT_TRACK_TIMEOUT,
    DISCOVERY_DOMAIN,
    DISCOVERY_PATH,
    TRACK_MAX_PER_RANGE,
)
from cfpinner.errors import ConfigurationError
from cfpinner.models import AliveSet, BatchReport, ProbeOutcome, ProbeTarget, Verdict
from cfpinner.probe import EdgeProbe, build_target, normalize_url, url_domain
from cfpinner.stats import alive_set, classify, summarize

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Signature: (completed, total).  Called once with completed == 0 before
# the first probe and then after every completed probe.
ProgressCallback = Callable[[int, int], None]

# Called with each outcome accepted by the mode's "interesting" filter.
OutcomeCallback = Callable[[ProbeOutcome], None]


# ---------------------------------------------------------------------------
# Work partitioning
# ---------------------------------------------------------------------------

def partition(items: Sequence[T], n: int) -> list[list[T]]:
    """Split *items* into *n* contiguous slices of ``ceil(len(items) / n)``.

    Trailing slices may be shorter or empty; concatenating the slices
    always gives back *items*.
    """
    if n < 1:
        raise ValueError(f"worker count must be positive, got {n}")
    size = math.ceil(len(items) / n)
    return [list(items[i * size:(i + 1) * size]) for i in range(n)]


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

async def _safe_probe(probe: EdgeProbe, target: ProbeTarget) -> ProbeOutcome:
    """Wrapper that turns unexpected per-target failures into ERROR outcomes."""
    try:
        return await probe.probe(target)
    except Exception as exc:
        logger.exception("Fatal error probing %s", target.address)
        return ProbeOutcome(address=target.address, error=f"Fatal probe error: {exc!r}")


async def dispatch(
    targets: Sequence[ProbeTarget],
    concurrency: int = DEFAULT_THREADS,
    timeout: float = DEFAULT_TRACK_TIMEOUT,
    *,
    progress_callback: ProgressCallback | None = None,
    outcome_callback: OutcomeCallback | None = None,
    interesting: Callable[[ProbeOutcome], bool] | None = None,
    cancel: asyncio.Event | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[ProbeOutcome]:
    """Probe every target with a pool of *concurrency* workers.

    Parameters
    ----------
    targets:
        Targets to probe; slice ``k`` of :func:`partition` goes to worker ``k``.
    concurrency:
        Number of workers.  Empty slices start no worker.
    timeout:
        Per-probe timeout in seconds; the only limit on a single probe.
    progress_callback:
        Optional progress sink, see :data:`ProgressCallback`.
    outcome_callback:
        Receives outcomes for which *interesting* returns true (all of
        them when *interesting* is None).
    cancel:
        When set, workers stop before their next probe and the call
        returns the outcomes collected so far.
    transport:
        Optional httpx transport shared by the workers' clients.

    Returns
    -------
    list[ProbeOutcome]
        One outcome per probed target in arrival order.  Order within a
        worker follows its slice; order across workers is unspecified.
    """
    targets = list(targets)
    total = len(targets)
    slices = [s for s in partition(targets, concurrency) if s]
    channel: asyncio.Queue[Optional[ProbeOutcome]] = asyncio.Queue()
    results: list[ProbeOutcome] = []

    logger.debug("Dispatching %d targets over %d workers", total, len(slices))

    async def _worker(index: int, assigned: list[ProbeTarget]) -> None:
        async with EdgeProbe(timeout=timeout, transport=transport) as probe:
            for position, target in enumerate(assigned):
                if cancel is not None and cancel.is_set():
                    logger.debug(
                        "Worker %d cancelled with %d targets left", index, len(assigned) - position,
                    )
                    return
                await channel.put(await _safe_probe(probe, target))

    async def _consume() -> None:
        completed = 0
        if progress_callback:
            progress_callback(0, total)
        while True:
            outcome = await channel.get()
            if outcome is None:
                return
            results.append(outcome)
            completed += 1
            if outcome_callback and (interesting is None or interesting(outcome)):
                outcome_callback(outcome)
            if progress_callback:
                progress_callback(completed, total)

    consumer = asyncio.create_task(_consume())
    workers = [asyncio.create_task(_worker(i, s)) for i, s in enumerate(slices)]
    try:
        await asyncio.gather(*workers)
    finally:
        # A failed worker takes its siblings down with it.
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        await channel.put(None)
        await consumer

    return results


# ---------------------------------------------------------------------------
# Target sources
# ---------------------------------------------------------------------------

def resolve_targets(
    blocks: Iterable[BlockLike] | None = None,
    alive: Iterable[str] | None = None,
    cap: Optional[int] = UNLIMITED,
) -> list[str]:
    """Pick the addresses to probe.

    A non-empty *alive* list replaces block expansion entirely; otherwise
    *blocks* are expanded under *cap*.

    Raises
    ------
    ConfigurationError
        If neither source yields an address.
    """
    addresses: list[str] = []
    if alive is not None:
        addresses = alive.sorted() if isinstance(alive, AliveSet) else list(alive)
    if addresses:
        logger.info("Using %d cached alive addresses", len(addresses))
    elif blocks is not None:
        addresses = expand_all(blocks, cap)

    if not addresses:
        raise ConfigurationError("No target addresses: load address blocks or an alive list first")
    return addresses


# ---------------------------------------------------------------------------
# Modes
# ---------------------------------------------------------------------------

async def track(
    url: str,
    *,
    blocks: Iterable[BlockLike] | None = None,
    alive: Iterable[str] | None = None,
    domain: str | None = None,
    threads: int = DEFAULT_THREADS,
    timeout: float = DEFAULT_TRACK_TIMEOUT,
    max_per_range: int = TRACK_MAX_PER_RANGE,
    force_all: bool = False,
    progress_callback: ProgressCallback | None = None,
    outcome_callback: OutcomeCallback | None = None,
    cancel: asyncio.Event | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BatchReport:
    """Check which edge addresses serve *url* from cache.

    *domain* defaults to the host of *url*.  HIT outcomes are forwarded to
    *outcome_callback* as they arrive.
    """
    addresses = resolve_targets(
        blocks=blocks, alive=alive, cap=UNLIMITED if force_all else max_per_range,
    )
    url = normalize_url(url)
    domain = domain or url_domain(url)
    targets = [build_target(url, address, domain) for address in addresses]

    logger.info("Tracking %s on %d addresses (virtual host %s)", url, len(targets), domain)
    outcomes = await dispatch(
        targets,
        threads,
        timeout,
        progress_callback=progress_callback,
        outcome_callback=outcome_callback,
        interesting=lambda o: classify(o) is Verdict.HIT,
        cancel=cancel,
        transport=transport,
    )
    return summarize(outcomes)


async def discover(
    blocks: Iterable[BlockLike],
    *,
    threads: int = DEFAULT_THREADS,
    timeout: float = DEFAULT_ALIVE_TIMEOUT,
    max_per_range: int = ALIVE_MAX_PER_RANGE,
    force_all: bool = False,
    progress_callback: ProgressCallback | None = None,
    outcome_callback: OutcomeCallback | None = None,
    cancel: asyncio.Event | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[BatchReport, AliveSet]:
    """Probe the edge itself (``/`` on the discovery domain) across *blocks*.

    Returns the batch report and the set of addresses that answered with
    any status code.  Alive outcomes are forwarded to *outcome_callback*.
    """
    addresses = resolve_targets(blocks=blocks, cap=UNLIMITED if force_all else max_per_range)
    base_url = f"https://{DISCOVERY_DOMAIN}{DISCOVERY_PATH}"
    targets = [build_target(base_url, address, DISCOVERY_DOMAIN) for address in addresses]

    logger.info("Scanning %d addresses for alive edge nodes", len(targets))
    outcomes = await dispatch(
        targets,
        threads,
        timeout,
        progress_callback=progress_callback,
        outcome_callback=outcome_callback,
        interesting=lambda o: o.is_alive,
        cancel=cancel,
        transport=transport,
    )
    return summarize(outcomes), alive_set(outcomes)
