from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .cache import TIER_RESOLVER, TieredCache
from .hierarchy import HierarchyLevel, level_key, parse_hierarchy
from .models import (
    KIND_AUTHORITATIVE,
    KIND_ROOT,
    KIND_SLD,
    KIND_TLD,
    ROLE_QUERY,
    ROLE_RESPONSE,
    FinalAnswer,
    Record,
    ServerDescriptor,
    StageEvent,
    TraceBuffer,
)
from .packet_loss import DELIVERY_RECOVERED, DeliveryResult, PacketLossSimulator
from .packets import query_packet, referral_packet, response_packet
from .servers import (
    CLIENT,
    RESOLVER_CACHE,
    glue_for,
    nameservers_for,
    resolver_for,
    server_for_level,
)
from .settings import QUERY_MODE_REAL, ResolutionSettings
from .upstream import DelegationChain, UpstreamCollaborator, ZoneCut

"""Delegation stage generation.

Brief:
  Produces the ordered query/response stages of a hierarchy walk. Two
  strategies share one contract: the simulated strategy walks the parsed
  hierarchy with configured latency; the real-delegation strategy replays the
  zone cuts and measured timings reported by the live collaborator. Any error
  from the collaborator (including a local timeout) is absorbed: a fallback
  notice is appended and the simulated strategy runs instead.

  Stages are emitted strictly in traversal order, root first; each referral
  immediately precedes the query to the level it points to.
"""

logger = logging.getLogger("resolvelab.delegation")

MODE_RECURSIVE = "recursive"
MODE_ITERATIVE = "iterative"
MODES = (MODE_RECURSIVE, MODE_ITERATIVE)

SOURCE_SIMULATED = "simulated"
SOURCE_REAL = "real"
SOURCE_FALLBACK = "simulated_fallback"
SOURCE_CACHE = "cache"

STAGE_CLIENT_TO_RESOLVER = "client_to_resolver_query"
STAGE_RESOLVER_CACHE = "resolver_cache"
STAGE_RESOLVER_TO_CLIENT = "resolver_to_client_response"
STAGE_REAL_FALLBACK = "real_delegation_fallback"

# Simulated server processing time ranges (ms) by level kind.
_PROCESSING_MS = {
    KIND_ROOT: (5, 14),
    KIND_TLD: (8, 22),
    KIND_SLD: (8, 22),
}
_DEFAULT_PROCESSING_MS = (10, 29)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class GenerationResult:
    """Brief: Stages appended by one generate() call plus the final answer.

    Inputs:
      - stages: Events appended to the trace during the call, in order.
      - answer: FinalAnswer at the end of the walk.
      - source: SOURCE_SIMULATED, SOURCE_REAL, SOURCE_FALLBACK or SOURCE_CACHE.
      - chain: Delegation chain used in real mode, else None.
    """

    stages: Tuple[StageEvent, ...]
    answer: FinalAnswer
    source: str
    chain: Optional[DelegationChain] = None


def actor_for(mode: str, settings: ResolutionSettings) -> ServerDescriptor:
    """Brief: The actor walking the hierarchy: resolver (recursive) or client."""

    return resolver_for(settings) if mode == MODE_RECURSIVE else CLIENT


def _actor_key(actor: ServerDescriptor) -> str:
    return "client" if actor.kind == "client" else "resolver"


def _question(
    domain: str, record_type: str, *, recursion_desired: bool, packet_id: int
) -> Dict[str, Any]:
    return {
        "domain": domain,
        "type": record_type,
        "class": "IN",
        "recursionDesired": recursion_desired,
        "packet": query_packet(
            domain,
            record_type,
            packet_id=packet_id,
            recursion_desired=recursion_desired,
        ),
    }


class DelegationStageGenerator:
    """Brief: Emits delegation stages for one domain per generate() call.

    Inputs (constructor):
      - upstream: UpstreamCollaborator for record lookups and live discovery.
      - cache: TieredCache; only the resolver tier is used here.
      - rng: random.Random for processing times and packet ids.
      - sleep: Awaitable sleep taking seconds.
      - packet_loss: PacketLossSimulator applied to the client's first hop.

    Outputs:
      - Generator instance holding no per-call state; safe to share across
        concurrent resolutions that use the same rng.
    """

    def __init__(
        self,
        *,
        upstream: UpstreamCollaborator,
        cache: TieredCache,
        rng: random.Random,
        sleep: Sleep,
        packet_loss: PacketLossSimulator,
    ) -> None:
        self._upstream = upstream
        self._cache = cache
        self._rng = rng
        self._sleep = sleep
        self._packet_loss = packet_loss

    # Helpers --------------------------------------------------------------

    def _processing_ms(self, kind: str) -> int:
        low, high = _PROCESSING_MS.get(kind, _DEFAULT_PROCESSING_MS)
        return self._rng.randint(low, high)

    def _packet_id(self) -> int:
        return self._rng.randrange(0, 0x10000)

    async def _first_hop(
        self,
        target: ServerDescriptor,
        settings: ResolutionSettings,
        trace: TraceBuffer,
        question: Dict[str, Any],
    ) -> Optional[DeliveryResult]:
        if settings.packet_loss <= 0:
            return None
        query = {k: v for k, v in question.items() if k != "packet"}
        delivery = await self._packet_loss.attempt(
            target, settings, trace=trace, origin=CLIENT, query=query
        )
        if delivery.outcome == DELIVERY_RECOVERED:
            logger.info(
                "First hop to %s recovered after %d attempt(s)",
                target.name,
                delivery.attempts_used,
            )
        return delivery

    async def _lookup_answer(
        self, domain: str, record_type: str
    ) -> Tuple[List[Record], Optional[str]]:
        """Brief: Real record lookup with a simulated fallback on failure.

        Outputs:
          - (records, error): error is None for a real answer, else the reason
            the single simulated fallback record was substituted.
        """

        try:
            records = list(await self._upstream.lookup_records(domain, record_type))
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            logger.warning(
                "Upstream %s lookup for %s failed, using simulated record: %s",
                record_type,
                domain,
                reason,
            )
            return [Record.simulated_fallback(record_type)], reason
        if not records:
            return [Record.simulated_fallback(record_type)], "empty answer"
        return records, None

    def _answer_stage(
        self,
        domain: str,
        record_type: str,
        settings: ResolutionSettings,
        *,
        stage_id: str,
        server: ServerDescriptor,
        actor: ServerDescriptor,
        records: List[Record],
        error: Optional[str],
        timing_ms: int,
        timing: Dict[str, Any],
    ) -> StageEvent:
        found = error is None
        rcode = "NOERROR" if found else "NXDOMAIN"
        ttl = int(settings.cache_ttl)
        payload: Dict[str, Any] = {
            "found": found,
            "records": [r.to_dict() for r in records] if found else [],
            "ttl": ttl,
            "rcode": rcode,
            "authoritative": True,
            "recursionAvailable": False,
            "timing": timing,
            "packet": response_packet(
                domain,
                record_type,
                records,
                packet_id=self._packet_id(),
                ttl=ttl,
                authoritative=True,
                recursion_available=False,
                recursion_desired=False,
                rcode=rcode,
            ),
        }
        if found:
            narrative = (
                f"Authoritative answer: {domain} {record_type} = "
                f"{', '.join(r.text() for r in records)} (AA=1, TTL {ttl}s)."
            )
        else:
            payload["error"] = "DNS resolution failed"
            payload["fallbackRecord"] = records[0].to_dict()
            narrative = (
                f"The real {record_type} lookup for {domain} failed ({error}); the "
                "authoritative server is reported as NXDOMAIN and a simulated "
                "record stands in for the answer."
            )
        return StageEvent(
            stage_id=stage_id,
            role=ROLE_RESPONSE,
            server=server,
            origin=actor,
            timing_ms=timing_ms,
            payload=payload,
            narrative=narrative,
        )

    def _final(
        self,
        records: List[Record],
        error: Optional[str],
        settings: ResolutionSettings,
        server: ServerDescriptor,
    ) -> FinalAnswer:
        return FinalAnswer(
            records=tuple(records),
            ttl=int(settings.cache_ttl),
            rcode="NOERROR" if error is None else "NXDOMAIN",
            server=server,
        )

    # Entry points ---------------------------------------------------------

    async def generate(
        self,
        domain: str,
        record_type: str,
        settings: ResolutionSettings,
        *,
        mode: str,
        trace: TraceBuffer,
        levels: Optional[Tuple[HierarchyLevel, ...]] = None,
    ) -> GenerationResult:
        """Brief: Append the delegation stages for domain and return the answer.

        Inputs:
          - domain: Normalized domain.
          - record_type: Requested record type.
          - settings: Call settings (latency, loss, query mode, cache flag).
          - mode: MODE_RECURSIVE or MODE_ITERATIVE.
          - trace: Buffer receiving the stages.
          - levels: Pre-parsed hierarchy (parsed here when omitted).

        Outputs:
          - GenerationResult.

        Raises:
          - PacketLossExhaustedError: from the client's first hop.
        """

        levels = levels or parse_hierarchy(domain)
        start = len(trace)
        actor = actor_for(mode, settings)

        if mode == MODE_RECURSIVE:
            cached = await self._client_to_resolver(
                domain, record_type, settings, actor, trace
            )
            if cached is not None:
                return GenerationResult(
                    stages=trace.events()[start:], answer=cached, source=SOURCE_CACHE
                )

        source = SOURCE_SIMULATED
        chain: Optional[DelegationChain] = None
        if settings.query_mode == QUERY_MODE_REAL:
            try:
                chain = await asyncio.wait_for(
                    self._upstream.discover_real_delegation_chain(domain),
                    timeout=settings.real_delegation_timeout_ms / 1000.0,
                )
            except asyncio.TimeoutError:
                self._fallback_notice(domain, actor, "timed out", trace)
                source = SOURCE_FALLBACK
            except Exception as exc:
                # Any collaborator failure means real mode is unavailable.
                reason = str(exc) or type(exc).__name__
                self._fallback_notice(domain, actor, reason, trace)
                source = SOURCE_FALLBACK
            else:
                source = SOURCE_REAL

        if chain is not None:
            answer = await self._walk_real(
                domain, record_type, settings, mode, actor, levels, chain, trace
            )
        else:
            answer = await self._walk_simulated(
                domain, record_type, settings, mode, actor, levels, trace
            )

        if mode == MODE_RECURSIVE and settings.cache_enabled:
            self._cache.set(
                TIER_RESOLVER, domain, record_type, answer.records, answer.ttl
            )

        return GenerationResult(
            stages=trace.events()[start:], answer=answer, source=source, chain=chain
        )

    async def _client_to_resolver(
        self,
        domain: str,
        record_type: str,
        settings: ResolutionSettings,
        resolver: ServerDescriptor,
        trace: TraceBuffer,
    ) -> Optional[FinalAnswer]:
        """Brief: Client's query to the recursive resolver and the resolver
        tier lookup. Returns a FinalAnswer on a resolver cache hit."""

        question = _question(
            domain, record_type, recursion_desired=True, packet_id=self._packet_id()
        )
        await self._first_hop(resolver, settings, trace, question)
        latency = int(settings.network_latency_ms)
        await self._sleep(latency / 1000.0)
        trace.append(
            StageEvent(
                stage_id=STAGE_CLIENT_TO_RESOLVER,
                role=ROLE_QUERY,
                server=resolver,
                origin=CLIENT,
                timing_ms=latency,
                payload={"query": question},
                narrative=(
                    f"The client sends a recursive query (RD=1) for {domain} "
                    f"{record_type} to {resolver.name}, which will do all the work "
                    "of finding the answer."
                ),
            )
        )

        if not settings.cache_enabled:
            return None
        entry = self._cache.get(TIER_RESOLVER, domain, record_type)
        remaining = entry.remaining_seconds(self._cache.now()) if entry else None
        trace.append(
            StageEvent(
                stage_id=STAGE_RESOLVER_CACHE,
                role=ROLE_RESPONSE,
                server=RESOLVER_CACHE,
                origin=resolver,
                timing_ms=1,
                payload=(
                    {
                        "found": True,
                        "cached": True,
                        "records": [r.to_dict() for r in entry.records],
                        "ttl": remaining,
                    }
                    if entry
                    else {"found": False, "message": "Cache miss in resolver cache"}
                ),
                narrative=(
                    f"{resolver.name} already holds {domain} {record_type} in its "
                    f"cache ({remaining}s left) and can answer without contacting "
                    "any nameserver."
                    if entry
                    else f"{resolver.name} has no cached answer and starts at the root."
                ),
            )
        )
        if entry is None:
            return None
        return FinalAnswer(
            records=entry.records,
            ttl=int(remaining or 0),
            rcode="NOERROR",
            server=resolver,
            from_resolver_cache=True,
        )

    def _fallback_notice(
        self,
        domain: str,
        actor: ServerDescriptor,
        reason: str,
        trace: TraceBuffer,
    ) -> None:
        logger.warning(
            "Real delegation unavailable for %s, falling back to simulation: %s",
            domain,
            reason,
        )
        trace.append(
            StageEvent(
                stage_id=STAGE_REAL_FALLBACK,
                role=ROLE_RESPONSE,
                server=actor,
                origin=actor,
                timing_ms=0,
                payload={
                    "requestedMode": QUERY_MODE_REAL,
                    "usedMode": "simulated",
                    "reason": reason,
                },
                narrative=(
                    "Real delegation data was requested but is unavailable "
                    f"({reason}); showing the simulated delegation path instead."
                ),
            )
        )

    async def _walk_simulated(
        self,
        domain: str,
        record_type: str,
        settings: ResolutionSettings,
        mode: str,
        actor: ServerDescriptor,
        levels: Tuple[HierarchyLevel, ...],
        trace: TraceBuffer,
    ) -> FinalAnswer:
        """Brief: Query every parsed level in turn, following synthetic referrals."""

        latency = int(settings.network_latency_ms)
        akey = _actor_key(actor)
        last = len(levels) - 1

        for index, level in enumerate(levels):
            server = server_for_level(level)
            lkey = level_key(level)
            question = _question(
                domain,
                record_type,
                recursion_desired=False,
                packet_id=self._packet_id(),
            )
            if index == 0 and mode == MODE_ITERATIVE:
                await self._first_hop(server, settings, trace, question)

            await self._sleep(latency / 1000.0)
            trace.append(
                StageEvent(
                    stage_id=f"{akey}_to_{lkey}_query",
                    role=ROLE_QUERY,
                    server=server,
                    origin=actor,
                    timing_ms=latency,
                    payload={"query": question},
                    narrative=(
                        f"{actor.name} asks {server.name} ({level.zone}) for the "
                        f"{record_type} record of {domain} with RD=0."
                    ),
                )
            )

            processing = self._processing_ms(level.kind)
            rtt = 2 * latency + processing
            timing = {
                "networkDelayMs": 2 * latency,
                "serverProcessingMs": processing,
                "rttMs": rtt,
                "measured": False,
            }

            if index == last:
                records, error = await self._lookup_answer(domain, record_type)
                await self._sleep((latency + processing) / 1000.0)
                trace.append(
                    self._answer_stage(
                        domain,
                        record_type,
                        settings,
                        stage_id=f"{lkey}_to_{akey}_response",
                        server=server,
                        actor=actor,
                        records=records,
                        error=error,
                        timing_ms=rtt,
                        timing=timing,
                    )
                )
                return self._final(records, error, settings, server)

            child = levels[index + 1]
            nameservers = nameservers_for(child)
            glue = glue_for(child)
            await self._sleep((latency + processing) / 1000.0)
            trace.append(
                StageEvent(
                    stage_id=f"{lkey}_to_{akey}_response",
                    role=ROLE_RESPONSE,
                    server=server,
                    origin=actor,
                    timing_ms=rtt,
                    payload={
                        "found": False,
                        "referral": True,
                        "zone": child.zone,
                        "nameservers": nameservers,
                        "glueRecords": [
                            {"name": n, "ip": ip} for n, ip in glue.items()
                        ],
                        "rcode": "NOERROR",
                        "authoritative": False,
                        "timing": timing,
                        "packet": referral_packet(
                            child.zone,
                            nameservers,
                            glue,
                            domain=domain,
                            record_type=record_type,
                            packet_id=question["packet"]["id"],
                        ),
                    },
                    narrative=(
                        f"{server.name} does not know the answer and refers "
                        f"{actor.name} to the {child.zone} nameservers "
                        f"({', '.join(nameservers)}), including glue addresses."
                    ),
                )
            )

        raise AssertionError("hierarchy has no levels")  # pragma: no cover

    async def _walk_real(
        self,
        domain: str,
        record_type: str,
        settings: ResolutionSettings,
        mode: str,
        actor: ServerDescriptor,
        levels: Tuple[HierarchyLevel, ...],
        chain: DelegationChain,
        trace: TraceBuffer,
    ) -> FinalAnswer:
        """Brief: Replay the real zone cuts with measured timings.

        Notes:
          - Only delegated zones are visited; levels without NS records are
            served by their parent and are named in the preceding referral.
          - The last visited zone's nameserver gives the final answer and is
            shown as the authoritative server.
        """

        by_zone = {lvl.zone: lvl for lvl in levels}
        hops: List[Tuple[HierarchyLevel, Optional[ZoneCut]]] = [(levels[0], None)]
        for cut in chain.zones:
            if cut.delegated and cut.zone in by_zone:
                hops.append((by_zone[cut.zone], cut))
        skipped = [c.zone for c in chain.zones if not c.delegated]
        akey = _actor_key(actor)
        last = len(hops) - 1

        for index, (level, cut) in enumerate(hops):
            is_leaf = index == last
            kind = KIND_AUTHORITATIVE if is_leaf else level.kind
            lkey = KIND_AUTHORITATIVE if is_leaf else level_key(level)
            if cut is None:
                server = server_for_level(level)
            else:
                server = ServerDescriptor(cut.nameservers[0], None, kind)
            question = _question(
                domain,
                record_type,
                recursion_desired=False,
                packet_id=self._packet_id(),
            )
            if index == 0 and mode == MODE_ITERATIVE:
                await self._first_hop(server, settings, trace, question)

            if is_leaf:
                started = time.perf_counter()
                records, error = await self._lookup_answer(domain, record_type)
                rtt = int(round((time.perf_counter() - started) * 1000))
            else:
                rtt = hops[index + 1][1].query_time_ms
                records, error = [], None

            trace.append(
                StageEvent(
                    stage_id=f"{akey}_to_{lkey}_query",
                    role=ROLE_QUERY,
                    server=server,
                    origin=actor,
                    timing_ms=rtt // 2,
                    payload={"query": question},
                    narrative=(
                        f"{actor.name} asks {server.name} ({level.zone}) for the "
                        f"{record_type} record of {domain}."
                    ),
                )
            )
            timing = {"rttMs": rtt, "measured": True}

            if is_leaf:
                trace.append(
                    self._answer_stage(
                        domain,
                        record_type,
                        settings,
                        stage_id=f"{lkey}_to_{akey}_response",
                        server=server,
                        actor=actor,
                        records=records,
                        error=error,
                        timing_ms=rtt,
                        timing=timing,
                    )
                )
                return self._final(records, error, settings, server)

            child_level, child_cut = hops[index + 1]
            nameservers = list(child_cut.nameservers)
            passed = [
                z
                for z in skipped
                if child_level.zone.endswith("." + z)
                and (level.kind == KIND_ROOT or z.endswith("." + level.zone))
            ]
            narrative = (
                f"{server.name} refers {actor.name} to the real {child_level.zone} "
                f"nameservers ({', '.join(nameservers)})."
            )
            if passed:
                narrative += (
                    f" {', '.join(passed)} is not delegated and is served by its "
                    "parent zone."
                )
            trace.append(
                StageEvent(
                    stage_id=f"{lkey}_to_{akey}_response",
                    role=ROLE_RESPONSE,
                    server=server,
                    origin=actor,
                    timing_ms=rtt,
                    payload={
                        "found": False,
                        "referral": True,
                        "zone": child_level.zone,
                        "nameservers": nameservers,
                        "glueRecords": [],
                        "skippedZones": passed,
                        "rcode": "NOERROR",
                        "authoritative": False,
                        "timing": timing,
                        "packet": referral_packet(
                            child_level.zone,
                            nameservers,
                            None,
                            domain=domain,
                            record_type=record_type,
                            packet_id=question["packet"]["id"],
                        ),
                    },
                    narrative=narrative,
                )
            )

        raise AssertionError("delegation chain has no hops")  # pragma: no cover

    async def deliver_to_client(
        self,
        domain: str,
        record_type: str,
        settings: ResolutionSettings,
        answer: FinalAnswer,
        trace: TraceBuffer,
    ) -> StageEvent:
        """Brief: Recursive mode's closing stage: resolver answers the client."""

        resolver = resolver_for(settings)
        latency = int(settings.network_latency_ms)
        await self._sleep(latency / 1000.0)
        found = not answer.simulated
        return trace.append(
            StageEvent(
                stage_id=STAGE_RESOLVER_TO_CLIENT,
                role=ROLE_RESPONSE,
                server=resolver,
                origin=resolver,
                timing_ms=latency,
                payload={
                    "found": found,
                    "records": [r.to_dict() for r in answer.records] if found else [],
                    "ttl": answer.ttl,
                    "rcode": answer.rcode,
                    "authoritative": False,
                    "recursionAvailable": True,
                    "fromCache": answer.from_resolver_cache,
                    "packet": response_packet(
                        domain,
                        record_type,
                        answer.records,
                        packet_id=self._packet_id(),
                        ttl=answer.ttl,
                        authoritative=False,
                        recursion_available=True,
                        rcode=answer.rcode,
                    ),
                },
                narrative=(
                    f"{resolver.name} returns the final answer for {domain} to the "
                    f"client (RA=1); it may be cached for {answer.ttl} seconds."
                    if found
                    else f"{resolver.name} could not resolve {domain} and returns "
                    "NXDOMAIN to the client."
                ),
            )
        )


def compare_with_simulation(domain: str, chain: DelegationChain) -> Dict[str, Any]:
    """Brief: Compare the simulated hierarchy of domain with its real zone cuts.

    Inputs:
      - domain: Domain that was traced.
      - chain: DelegationChain from the live collaborator.

    Outputs:
      - dict with the simulated and real zone lists, a 'differences' list of
        {'type': 'fictional_server'|'missing_delegation', 'zone', 'message'}
        entries, and 'isAccurate' (False when any simulated zone is fictional).
    """

    levels = parse_hierarchy(domain)
    simulated = [lvl.zone for lvl in levels if lvl.kind != KIND_ROOT]
    real = [cut.zone for cut in chain.zones if cut.delegated]
    real_set = set(real)
    differences: List[Dict[str, str]] = []
    for zone in simulated:
        if zone not in real_set:
            differences.append(
                {
                    "type": "fictional_server",
                    "zone": zone,
                    "message": f"Simulated server for {zone!r} is not a real zone cut",
                }
            )
    for zone in real:
        if zone not in simulated:
            differences.append(
                {
                    "type": "missing_delegation",
                    "zone": zone,
                    "message": f"Real delegation for {zone!r} is not in the simulation",
                }
            )
    return {
        "domain": domain,
        "simulated": simulated,
        "real": real,
        "differences": differences,
        "isAccurate": not any(d["type"] == "fictional_server" for d in differences),
    }
