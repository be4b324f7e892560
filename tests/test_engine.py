import asyncio
from collections import Counter

import httpx
import pytest

from cfpinner import engine
from cfpinner.errors import ConfigurationError
from cfpinner.models import AliveSet, ProbeOutcome, Verdict
from cfpinner.probe import EdgeProbe, build_target
from cfpinner.stats import classify

from tests.conftest import edge_handler


def _targets(count, base="104.16.0."):
    return [build_target("https://cdn.example.com/abc.png", f"{base}{i + 1}") for i in range(count)]


def test_partition_23_over_5():
    items = list(range(23))
    slices = engine.partition(items, 5)
    assert [len(s) for s in slices] == [5, 5, 5, 5, 3]
    assert [x for s in slices for x in s] == items


def test_partition_more_workers_than_items():
    assert engine.partition([1, 2], 4) == [[1], [2], [], []]
    assert engine.partition([], 3) == [[], [], []]


def test_partition_rejects_zero_workers():
    with pytest.raises(ValueError):
        engine.partition([1], 0)


@pytest.mark.asyncio
async def test_dispatch_probes_every_target_once():
    calls: list[httpx.Request] = []
    transport = httpx.MockTransport(edge_handler(hits={"104.16.0.3"}, down={"104.16.0.7"}, calls=calls))
    targets = _targets(23)

    outcomes = await engine.dispatch(targets, concurrency=5, timeout=1, transport=transport)

    assert len(outcomes) == 23
    assert Counter(o.address for o in outcomes) == Counter(t.address for t in targets)
    assert Counter(r.url.host for r in calls) == Counter(t.address for t in targets)
    verdicts = Counter(classify(o) for o in outcomes)
    assert verdicts == {Verdict.HIT: 1, Verdict.ERROR: 1, Verdict.MISS: 21}


@pytest.mark.asyncio
async def test_dispatch_keeps_slice_order_within_a_worker():
    transport = httpx.MockTransport(edge_handler())
    targets = _targets(12)

    outcomes = await engine.dispatch(targets, concurrency=3, transport=transport)

    arrival = [o.address for o in outcomes]
    for assigned in engine.partition([t.address for t in targets], 3):
        assert [a for a in arrival if a in assigned] == assigned


@pytest.mark.asyncio
async def test_dispatch_gives_each_worker_its_own_probe(monkeypatch):
    created: list[EdgeProbe] = []
    transport = httpx.MockTransport(edge_handler())

    def factory(timeout, transport=None):
        probe = EdgeProbe(timeout=timeout, transport=transport)
        created.append(probe)
        return probe

    monkeypatch.setattr(engine, "EdgeProbe", factory)
    await engine.dispatch(_targets(7), concurrency=3, transport=transport)
    assert len(created) == 3
    assert len({id(p) for p in created}) == 3


@pytest.mark.asyncio
async def test_dispatch_skips_empty_slices(monkeypatch):
    created = []
    original = engine.EdgeProbe

    def factory(timeout, transport=None):
        created.append(timeout)
        return original(timeout=timeout, transport=transport)

    monkeypatch.setattr(engine, "EdgeProbe", factory)
    outcomes = await engine.dispatch(_targets(2), concurrency=10, transport=httpx.MockTransport(edge_handler()))
    assert len(outcomes) == 2
    assert len(created) == 2


@pytest.mark.asyncio
async def test_dispatch_reports_progress_and_interesting_outcomes():
    transport = httpx.MockTransport(edge_handler(hits={"104.16.0.2", "104.16.0.5"}))
    progress: list[tuple[int, int]] = []
    seen: list[ProbeOutcome] = []

    await engine.dispatch(
        _targets(6),
        concurrency=2,
        progress_callback=lambda done, total: progress.append((done, total)),
        outcome_callback=seen.append,
        interesting=lambda o: classify(o) is Verdict.HIT,
        transport=transport,
    )

    assert progress[0] == (0, 6)
    assert progress[-1] == (6, 6)
    assert [done for done, _ in progress] == list(range(7))
    assert sorted(o.address for o in seen) == ["104.16.0.2", "104.16.0.5"]


@pytest.mark.asyncio
async def test_dispatch_empty_target_list():
    progress = []
    outcomes = await engine.dispatch([], concurrency=4, progress_callback=lambda d, t: progress.append((d, t)))
    assert outcomes == []
    assert progress == [(0, 0)]


@pytest.mark.asyncio
async def test_dispatch_cancel_stops_workers_early():
    cancel = asyncio.Event()

    def handler(request):
        cancel.set()
        return httpx.Response(200, headers={"CF-Cache-Status": "MISS"})

    outcomes = await engine.dispatch(
        _targets(10), concurrency=1, cancel=cancel, transport=httpx.MockTransport(handler),
    )
    assert [o.address for o in outcomes] == ["104.16.0.1"]


@pytest.mark.asyncio
async def test_unexpected_probe_failure_is_isolated():
    def handler(request):
        if request.url.host == "104.16.0.2":
            raise RuntimeError("boom")
        return httpx.Response(200, headers={"CF-Cache-Status": "HIT"})

    outcomes = await engine.dispatch(_targets(3), concurrency=1, transport=httpx.MockTransport(handler))
    by_address = {o.address: o for o in outcomes}
    assert classify(by_address["104.16.0.2"]) is Verdict.ERROR
    assert "boom" in by_address["104.16.0.2"].error
    assert classify(by_address["104.16.0.3"]) is Verdict.HIT


class _BrokenProbe:
    async def __aenter__(self):
        raise RuntimeError("client setup failed")

    async def __aexit__(self, *exc_info):
        return None


@pytest.mark.asyncio
async def test_worker_setup_failure_cancels_other_workers(monkeypatch):
    never = asyncio.Event()
    cancelled: list[str] = []

    async def stalled(request):
        try:
            await never.wait()
        except asyncio.CancelledError:
            cancelled.append(request.url.host)
            raise
        return httpx.Response(200)

    created = []
    original = engine.EdgeProbe

    def factory(timeout, transport=None):
        created.append(timeout)
        if len(created) == 2:
            return _BrokenProbe()
        return original(timeout=timeout, transport=httpx.MockTransport(stalled))

    monkeypatch.setattr(engine, "EdgeProbe", factory)

    with pytest.raises(RuntimeError, match="client setup failed"):
        await asyncio.wait_for(engine.dispatch(_targets(2), concurrency=2), timeout=5)
    assert cancelled == ["104.16.0.1"]


def test_resolve_targets_prefers_alive_list():
    addresses = engine.resolve_targets(blocks=["198.51.100.0/24"], alive=["203.0.113.5"], cap=4)
    assert addresses == ["203.0.113.5"]


def test_resolve_targets_sorts_alive_set():
    addresses = engine.resolve_targets(alive=AliveSet(["10.0.0.10", "10.0.0.2"]))
    assert addresses == ["10.0.0.2", "10.0.0.10"]


def test_resolve_targets_falls_back_to_blocks():
    assert engine.resolve_targets(blocks=["198.51.100.0/30"], alive=[], cap=10) == ["198.51.100.1", "198.51.100.2"]


def test_resolve_targets_without_addresses_fails():
    with pytest.raises(ConfigurationError):
        engine.resolve_targets()
    with pytest.raises(ConfigurationError):
        engine.resolve_targets(blocks=["2606:4700::/32"], cap=10)


@pytest.mark.asyncio
async def test_track_end_to_end():
    calls: list[httpx.Request] = []
    transport = httpx.MockTransport(edge_handler(hits={"198.51.100.65"}, down={"198.51.100.130"}, calls=calls))

    report = await engine.track(
        "cdn.example.com/images/abc.png",
        blocks=["198.51.100.0/24", "2606:4700::/32"],
        max_per_range=4,
        threads=2,
        transport=transport,
    )

    assert [o.address for o in report.outcomes] == [
        "198.51.100.1", "198.51.100.65", "198.51.100.130", "198.51.100.195",
    ]
    assert (report.hits, report.misses, report.errors) == (1, 2, 1)
    assert {r.headers["host"] for r in calls} == {"cdn.example.com"}
    assert {r.url.path for r in calls} == {"/images/abc.png"}


@pytest.mark.asyncio
async def test_track_uses_alive_list_instead_of_blocks():
    calls: list[httpx.Request] = []
    transport = httpx.MockTransport(edge_handler(calls=calls))

    report = await engine.track(
        "https://cdn.example.com/abc.png",
        blocks=["198.51.100.0/24"],
        alive=["203.0.113.7", "203.0.113.8"],
        transport=transport,
    )

    assert report.total == 2
    assert {r.url.host for r in calls} == {"203.0.113.7", "203.0.113.8"}


@pytest.mark.asyncio
async def test_track_force_all_ignores_cap():
    report = await engine.track(
        "https://cdn.example.com/abc.png",
        blocks=["198.51.100.0/26"],
        max_per_range=2,
        force_all=True,
        transport=httpx.MockTransport(edge_handler()),
    )
    assert report.total == 62


@pytest.mark.asyncio
async def test_track_only_forwards_hits():
    seen = []
    await engine.track(
        "https://cdn.example.com/abc.png",
        alive=["203.0.113.1", "203.0.113.2", "203.0.113.3"],
        outcome_callback=seen.append,
        transport=httpx.MockTransport(edge_handler(hits={"203.0.113.2"}, down={"203.0.113.3"})),
    )
    assert [o.address for o in seen] == ["203.0.113.2"]


@pytest.mark.asyncio
async def test_discover_probes_edge_root_and_builds_alive_set():
    calls: list[httpx.Request] = []
    transport = httpx.MockTransport(edge_handler(down={"198.51.100.2"}, calls=calls))
    seen = []

    report, alive = await engine.discover(
        ["198.51.100.0/29"], max_per_range=100, outcome_callback=seen.append, transport=transport,
    )

    assert report.total == 6
    assert alive.sorted() == ["198.51.100.1", "198.51.100.3", "198.51.100.4", "198.51.100.5", "198.51.100.6"]
    assert sorted(o.address for o in seen) == alive.sorted()
    assert {r.headers["host"] for r in calls} == {"www.cloudflare.com"}
    assert {r.url.path for r in calls} == {"/"}


@pytest.mark.asyncio
async def test_discover_cap_is_per_call():
    transport = httpx.MockTransport(edge_handler())
    report, _ = await engine.discover(["104.16.0.0/13"], max_per_range=5, transport=transport)
    assert report.total == 5
    report, _ = await engine.discover(["104.16.0.0/13"], max_per_range=3, transport=transport)
    assert report.total == 3
