"""
Brief: Shared pytest fixtures for the resolution engine tests.

Inputs:
  - None

Outputs:
  - Fixtures: fake_upstream, no_sleep, cache, orchestrator.
"""

import os
import signal
import sys
from typing import Dict, List, Optional, Tuple

import pytest

# Ensure 'src' is on sys.path so 'resolvelab' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from resolvelab.cache import TieredCache  # noqa: E402
from resolvelab.errors import (  # noqa: E402
    NotFoundError,
    RealDelegationUnavailableError,
    UpstreamLookupError,
)
from resolvelab.models import Record  # noqa: E402
from resolvelab.orchestrator import ResolutionOrchestrator  # noqa: E402
from resolvelab.upstream import DelegationChain, ZoneCut  # noqa: E402


class FakeClock:
    """Brief: Manually advanced clock in seconds."""

    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeUpstream:
    """
    Brief: In-memory UpstreamCollaborator.

    Inputs:
      - records: Mapping of (domain, type) -> list of Records.
      - chain: DelegationChain returned by discovery, or None to fail it.
      - fail_lookups: Raise UpstreamLookupError from every record lookup.

    Outputs:
      - Collaborator recording every call in .calls.
    """

    def __init__(
        self,
        records: Optional[Dict[Tuple[str, str], List[Record]]] = None,
        *,
        chain: Optional[DelegationChain] = None,
        fail_lookups: bool = False,
    ) -> None:
        self.records = dict(records or {})
        self.chain = chain
        self.fail_lookups = fail_lookups
        self.calls: List[tuple] = []

    async def lookup_records(self, domain, record_type):
        self.calls.append(("lookup_records", domain, record_type))
        if self.fail_lookups:
            raise UpstreamLookupError(domain, record_type, "timed out")
        try:
            return list(self.records[(domain, record_type)])
        except KeyError:
            raise NotFoundError(domain, record_type, "no such data") from None

    async def lookup_nameservers(self, domain):
        self.calls.append(("lookup_nameservers", domain))
        return [r.data["target"] for r in await self.lookup_records(domain, "NS")]

    async def discover_real_delegation_chain(self, domain):
        self.calls.append(("discover", domain))
        if self.chain is None:
            raise RealDelegationUnavailableError(domain, "collaborator offline")
        return self.chain


def example_chain() -> DelegationChain:
    """Brief: Real-looking chain for www.example.com (www not delegated)."""

    return DelegationChain(
        domain="www.example.com",
        zones=(
            ZoneCut("com", "tld", ("a.gtld-servers.net", "b.gtld-servers.net"), 12),
            ZoneCut("example.com", "intermediate", ("a.iana-servers.net",), 30),
            ZoneCut("www.example.com", "authoritative", (), 25),
        ),
        final_address="93.184.216.34",
    )


async def _no_sleep(_seconds):
    return None


@pytest.fixture
def no_sleep():
    return _no_sleep


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return TieredCache(now=clock)


@pytest.fixture
def fake_upstream():
    return FakeUpstream(
        {
            ("example.com", "A"): [Record("A", {"address": "93.184.216.34"})],
            ("www.example.com", "A"): [Record("A", {"address": "93.184.216.34"})],
            ("example.com", "MX"): [
                Record("MX", {"priority": 10, "exchange": "mail.example.com"})
            ],
            ("www.example.co.uk", "A"): [Record("A", {"address": "192.0.2.80"})],
        }
    )


@pytest.fixture
def orchestrator(fake_upstream, cache, no_sleep):
    return ResolutionOrchestrator(upstream=fake_upstream, cache=cache, sleep=no_sleep)


def _alarm_handler(signum, frame):
    raise TimeoutError("Test exceeded 10 seconds")


if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        yield
