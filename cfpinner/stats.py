"""Outcome classification and aggregation."""

from __future__ import annotations

import ipaddress
from typing import Iterable

from cfpinner.config import CACHE_HIT_VALUE
from cfpinner.models import AliveSet, BatchReport, ProbeOutcome, Verdict


def classify(outcome: ProbeOutcome) -> Verdict:
    """ERROR when the transport failed, HIT on an exact ``HIT`` cache status, else MISS."""
    if outcome.error:
        return Verdict.ERROR
    if outcome.cache_status == CACHE_HIT_VALUE:
        return Verdict.HIT
    return Verdict.MISS


def summarize(outcomes: Iterable[ProbeOutcome]) -> BatchReport:
    """Count verdicts and order outcomes by numeric address.

    Dispatch returns outcomes in arrival order, which varies between runs;
    sorting here keeps the rendered report deterministic.
    """
    ordered = sorted(outcomes, key=_address_key)
    report = BatchReport(outcomes=ordered)
    for outcome in ordered:
        verdict = classify(outcome)
        if verdict is Verdict.HIT:
            report.hits += 1
        elif verdict is Verdict.ERROR:
            report.errors += 1
        else:
            report.misses += 1
    return report


def alive_set(outcomes: Iterable[ProbeOutcome]) -> AliveSet:
    """Addresses whose probe completed with a status code, regardless of cache status."""
    return AliveSet(o.address for o in outcomes if o.is_alive)


def _address_key(outcome: ProbeOutcome) -> tuple[int, str]:
    try:
        return int(ipaddress.IPv4Address(outcome.address)), ""
    except ValueError:
        return 1 << 32, outcome.address
