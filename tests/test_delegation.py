"""
Brief: Tests for resolvelab.delegation stage generation (both strategies).

Inputs:
  - None

Outputs:
  - None
"""

import asyncio
import logging
import random

import pytest

from resolvelab.cache import TIER_RESOLVER
from resolvelab.delegation import (
    MODE_ITERATIVE,
    MODE_RECURSIVE,
    SOURCE_CACHE,
    SOURCE_FALLBACK,
    SOURCE_REAL,
    SOURCE_SIMULATED,
    DelegationStageGenerator,
    compare_with_simulation,
)
from resolvelab.errors import PacketLossExhaustedError
from resolvelab.models import SIMULATED_FALLBACK_VALUE, Record, TraceBuffer
from resolvelab.packet_loss import DELIVERY_RECOVERED, DeliveryResult, PacketLossSimulator
from resolvelab.settings import CustomResolver, ResolutionSettings
from resolvelab.upstream import DelegationChain, ZoneCut

from conftest import FakeUpstream, example_chain


def _generator(upstream, cache, sleep, seed=1):
    rng = random.Random(seed)
    return DelegationStageGenerator(
        upstream=upstream,
        cache=cache,
        rng=rng,
        sleep=sleep,
        packet_loss=PacketLossSimulator(rng=rng, sleep=sleep),
    )


def _generate(gen, domain, mode, settings=None, record_type="A"):
    trace = TraceBuffer()
    result = asyncio.run(
        gen.generate(
            domain,
            record_type,
            settings or ResolutionSettings(),
            mode=mode,
            trace=trace,
        )
    )
    return result, trace


def test_recursive_simulated_stage_order(fake_upstream, cache, no_sleep):
    """
    Brief: Recursive walk queries each level in order; referrals precede the next query.

    Inputs:
      - fixtures

    Outputs:
      - None
    """
    gen = _generator(fake_upstream, cache, no_sleep)
    result, trace = _generate(gen, "www.example.com", MODE_RECURSIVE)

    assert trace.stage_ids() == [
        "client_to_resolver_query",
        "resolver_cache",
        "resolver_to_root_query",
        "root_to_resolver_response",
        "resolver_to_tld_query",
        "tld_to_resolver_response",
        "resolver_to_intermediate_2_query",
        "intermediate_2_to_resolver_response",
        "resolver_to_authoritative_query",
        "authoritative_to_resolver_response",
    ]
    assert result.source == SOURCE_SIMULATED
    assert result.stages == trace.events()
    assert [r.data["address"] for r in result.answer.records] == ["93.184.216.34"]
    assert result.answer.rcode == "NOERROR"

    events = trace.events()
    referral = events[3].payload
    assert referral["referral"] is True
    assert referral["zone"] == "com"
    assert referral["nameservers"] == ["a.com-servers.net", "b.com-servers.net"]
    assert len(referral["glueRecords"]) == 2
    assert events[4].server.name == "a.com-servers.net"
    timing = events[3].payload["timing"]
    assert timing["rttMs"] == timing["networkDelayMs"] + timing["serverProcessingMs"]
    assert 5 <= timing["serverProcessingMs"] <= 14
    assert events[0].payload["query"]["packet"]["flags"]["rd"] == 1
    assert events[2].payload["query"]["packet"]["flags"]["rd"] == 0
    assert events[-1].payload["packet"]["flags"]["aa"] == 1

    # Net-new recursive walk populates the resolver tier only.
    assert cache.get(TIER_RESOLVER, "www.example.com", "A") is not None


def test_iterative_uses_client_as_actor(fake_upstream, cache, no_sleep):
    """
    Brief: Iterative mode has the client query every level itself.

    Inputs:
      - fixtures

    Outputs:
      - None
    """
    gen = _generator(fake_upstream, cache, no_sleep)
    result, trace = _generate(gen, "example.co.uk", MODE_ITERATIVE)
    assert trace.stage_ids() == [
        "client_to_root_query",
        "root_to_client_response",
        "client_to_tld_query",
        "tld_to_client_response",
        "client_to_sld_query",
        "sld_to_client_response",
        "client_to_authoritative_query",
        "authoritative_to_client_response",
    ]
    assert all(e.origin.kind == "client" for e in trace.events())
    assert cache.get(TIER_RESOLVER, "example.co.uk", "A") is None
    assert result.answer.simulated is True


def test_failed_lookup_substitutes_simulated_record(cache, no_sleep):
    """
    Brief: Upstream errors become one simulated record with an NXDOMAIN note.

    Inputs:
      - fixtures

    Outputs:
      - None
    """
    gen = _generator(FakeUpstream(fail_lookups=True), cache, no_sleep)
    result, trace = _generate(gen, "example.com", MODE_ITERATIVE, record_type="TXT")
    answer = result.answer
    assert len(answer.records) == 1
    assert answer.records[0].simulated is True
    assert answer.records[0].data["value"] == SIMULATED_FALLBACK_VALUE
    assert answer.rcode == "NXDOMAIN"
    last = trace.events()[-1]
    assert last.payload["found"] is False
    assert last.payload["error"] == "DNS resolution failed"
    assert last.payload["packet"]["answers"] == []


def test_resolver_cache_hit_skips_walk(fake_upstream, cache, no_sleep):
    """
    Brief: A resolver-tier entry answers right after the client query.

    Inputs:
      - fixtures

    Outputs:
      - None
    """
    cached = [Record("A", {"address": "192.0.2.7"})]
    cache.set(TIER_RESOLVER, "example.com", "A", cached, 120)
    gen = _generator(fake_upstream, cache, no_sleep)
    result, trace = _generate(gen, "example.com", MODE_RECURSIVE)
    assert trace.stage_ids() == ["client_to_resolver_query", "resolver_cache"]
    assert result.source == SOURCE_CACHE
    assert result.answer.from_resolver_cache is True
    assert result.answer.records == tuple(cached)
    assert fake_upstream.calls == []


def test_cache_disabled_skips_resolver_tier(fake_upstream, cache, no_sleep):
    """
    Brief: With caching off, no resolver cache stage and nothing is stored.

    Inputs:
      - fixtures

    Outputs:
      - None
    """
    gen = _generator(fake_upstream, cache, no_sleep)
    _, trace = _generate(
        gen, "example.com", MODE_RECURSIVE, ResolutionSettings(cache_enabled=False)
    )
    assert "resolver_cache" not in trace.stage_ids()
    assert cache.get(TIER_RESOLVER, "example.com", "A") is None


def test_custom_resolver_changes_descriptor(fake_upstream, cache, no_sleep):
    """
    Brief: The custom resolver only replaces the resolver ServerDescriptor.

    Inputs:
      - fixtures

    Outputs:
      - None
    """
    settings = ResolutionSettings(
        custom_resolver=CustomResolver(name="Lab DNS", address="10.0.0.53")
    )
    gen = _generator(fake_upstream, cache, no_sleep)
    _, trace = _generate(gen, "example.com", MODE_RECURSIVE, settings)
    first = trace.events()[0]
    assert (first.server.name, first.server.address) == ("Lab DNS", "10.0.0.53")
    assert trace.events()[2].origin.name == "Lab DNS"


def test_real_strategy_follows_zone_cuts(cache, no_sleep):
    """
    Brief: Real mode visits delegated zones only, with measured timings.

    Inputs:
      - fixtures

    Outputs:
      - None
    """
    upstream = FakeUpstream(
        {("www.example.com", "A"): [Record("A", {"address": "93.184.216.34"})]},
        chain=example_chain(),
    )
    gen = _generator(upstream, cache, no_sleep)
    result, trace = _generate(
        gen, "www.example.com", MODE_ITERATIVE, ResolutionSettings(query_mode="real")
    )
    assert result.source == SOURCE_REAL
    assert result.chain == example_chain()
    assert trace.stage_ids() == [
        "client_to_root_query",
        "root_to_client_response",
        "client_to_tld_query",
        "tld_to_client_response",
        "client_to_authoritative_query",
        "authoritative_to_client_response",
    ]
    events = trace.events()
    assert events[1].payload["nameservers"] == ["a.gtld-servers.net", "b.gtld-servers.net"]
    assert events[1].timing_ms == 12
    assert events[1].payload["timing"]["measured"] is True
    assert events[3].payload["zone"] == "example.com"
    assert events[3].timing_ms == 30
    assert events[4].server.name == "a.iana-servers.net"
    assert events[4].server.kind == "authoritative"
    assert events[5].payload["found"] is True


def test_real_strategy_names_skipped_levels(cache, no_sleep):
    """
    Brief: A level without NS records is named in the referral that skips it.

    Inputs:
      - fixtures

    Outputs:
      - None
    """
    chain = DelegationChain(
        domain="a.b.example.com",
        zones=(
            ZoneCut("com", "tld", ("a.gtld-servers.net",), 5),
            ZoneCut("example.com", "intermediate", (), 5),
            ZoneCut("b.example.com", "intermediate", ("ns.b.example.com",), 5),
            ZoneCut("a.b.example.com", "authoritative", (), 5),
        ),
        final_address=None,
    )
    gen = _generator(FakeUpstream(chain=chain), cache, no_sleep)
    _, trace = _generate(
        gen, "a.b.example.com", MODE_ITERATIVE, ResolutionSettings(query_mode="real")
    )
    referral = trace.events()[3]
    assert referral.payload["zone"] == "b.example.com"
    assert referral.payload["skippedZones"] == ["example.com"]
    assert "example.com is not delegated" in referral.narrative


def test_real_fallback_matches_simulated_shape(fake_upstream, cache, no_sleep):
    """
    Brief: A failing collaborator yields the simulated trace plus one notice.

    Inputs:
      - fixtures

    Outputs:
      - None
    """
    simulated, sim_trace = _generate(
        _generator(fake_upstream, cache, no_sleep, seed=42),
        "www.example.com",
        MODE_ITERATIVE,
        ResolutionSettings(cache_enabled=False),
    )
    fallback, fb_trace = _generate(
        _generator(fake_upstream, cache, no_sleep, seed=42),
        "www.example.com",
        MODE_ITERATIVE,
        ResolutionSettings(cache_enabled=False, query_mode="real"),
    )
    assert fallback.source == SOURCE_FALLBACK
    assert fb_trace.stage_ids() == ["real_delegation_fallback"] + sim_trace.stage_ids()
    assert [e.timing_ms for e in fb_trace.events()[1:]] == [
        e.timing_ms for e in sim_trace.events()
    ]
    assert fallback.answer.records == simulated.answer.records


def test_real_discovery_timeout_falls_back(fake_upstream, cache, no_sleep):
    """
    Brief: A discovery call slower than the local timeout triggers the fallback.

    Inputs:
      - fixtures

    Outputs:
      - None
    """

    class SlowUpstream(FakeUpstream):
        async def discover_real_delegation_chain(self, domain):
            await asyncio.sleep(5)

    upstream = SlowUpstream(fake_upstream.records)
    gen = _generator(upstream, cache, no_sleep)
    result, trace = _generate(
        gen,
        "example.com",
        MODE_ITERATIVE,
        ResolutionSettings(query_mode="real", real_delegation_timeout_ms=10),
    )
    assert result.source == SOURCE_FALLBACK
    assert trace.stage_ids()[0] == "real_delegation_fallback"
    assert trace.events()[0].payload["reason"] == "timed out"


def test_real_discovery_transport_error_falls_back(fake_upstream, cache, no_sleep):
    """
    Brief: Any exception from discovery, not just engine errors, triggers the
    fallback notice and the simulated walk.

    Inputs:
      - fixtures

    Outputs:
      - None
    """

    class ResetUpstream(FakeUpstream):
        async def discover_real_delegation_chain(self, domain):
            raise ConnectionError("socket reset")

    gen = _generator(ResetUpstream(fake_upstream.records), cache, no_sleep)
    result, trace = _generate(
        gen, "example.com", MODE_RECURSIVE, ResolutionSettings(query_mode="real")
    )
    assert result.source == SOURCE_FALLBACK
    notices = [e for e in trace if e.stage_id == "real_delegation_fallback"]
    assert len(notices) == 1
    assert notices[0].payload["reason"] == "socket reset"
    assert result.answer.records[0].data["address"] == "93.184.216.34"


def test_lookup_transport_error_substitutes_simulated_record(cache, no_sleep, caplog):
    """
    Brief: A non-engine exception from the leaf lookup is logged and replaced by
    the simulated fallback record.

    Inputs:
      - fixtures, caplog

    Outputs:
      - None
    """

    class UnreachableUpstream(FakeUpstream):
        async def lookup_records(self, domain, record_type):
            raise OSError("network unreachable")

    gen = _generator(UnreachableUpstream(), cache, no_sleep)
    with caplog.at_level(logging.WARNING, logger="resolvelab.delegation"):
        result, trace = _generate(gen, "example.com", MODE_RECURSIVE)
    assert len(result.answer.records) == 1
    assert result.answer.records[0].simulated is True
    assert result.answer.rcode == "NXDOMAIN"
    assert trace.events()[-1].payload["found"] is False
    assert "network unreachable" in caplog.text


def test_recovered_first_hop_is_logged(fake_upstream, cache, no_sleep, caplog):
    """
    Brief: A first hop that needed retries is reported at INFO with the number
    of attempts used.

    Inputs:
      - fixtures, caplog

    Outputs:
      - None
    """

    class RecoveringLoss:
        async def attempt(self, target, settings, *, trace, origin=None, query=None):
            return DeliveryResult(True, 2, DELIVERY_RECOVERED)

    gen = DelegationStageGenerator(
        upstream=fake_upstream,
        cache=cache,
        rng=random.Random(1),
        sleep=no_sleep,
        packet_loss=RecoveringLoss(),
    )
    with caplog.at_level(logging.INFO, logger="resolvelab.delegation"):
        _generate(gen, "example.com", MODE_ITERATIVE, ResolutionSettings(packet_loss=30))
    assert "recovered after 2 attempt(s)" in caplog.text


def test_first_hop_packet_loss_exhaustion_raises(fake_upstream, cache, no_sleep):
    """
    Brief: Total loss on the first hop raises after the fatal event.

    Inputs:
      - fixtures

    Outputs:
      - None
    """
    gen = _generator(fake_upstream, cache, no_sleep)
    trace = TraceBuffer()
    settings = ResolutionSettings(packet_loss=100, max_retries=2)
    with pytest.raises(PacketLossExhaustedError):
        asyncio.run(
            gen.generate("example.com", "A", settings, mode=MODE_ITERATIVE, trace=trace)
        )
    assert trace.stage_ids() == ["packet_loss", "packet_loss", "packet_loss_fatal"]
    assert trace.events()[0].server.kind == "root"


def test_compare_with_simulation_flags_fictional_servers():
    """
    Brief: Simulated levels that are not real zone cuts are reported.

    Inputs:
      - None

    Outputs:
      - None
    """
    report = compare_with_simulation("www.example.com", example_chain())
    assert report["simulated"] == ["com", "example.com", "www.example.com"]
    assert report["real"] == ["com", "example.com"]
    assert report["differences"] == [
        {
            "type": "fictional_server",
            "zone": "www.example.com",
            "message": "Simulated server for 'www.example.com' is not a real zone cut",
        }
    ]
    assert report["isAccurate"] is False

    exact = DelegationChain(
        domain="example.com",
        zones=(
            ZoneCut("com", "tld", ("a.gtld-servers.net",), 1),
            ZoneCut("example.com", "authoritative", ("a.iana-servers.net",), 1),
        ),
        final_address=None,
    )
    assert compare_with_simulation("example.com", exact)["isAccurate"] is True
