from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from .cache import TIER_BROWSER, TIER_OS, TieredCache
from .delegation import (
    MODE_RECURSIVE,
    MODES,
    DelegationStageGenerator,
    actor_for,
    compare_with_simulation,
)
from .dnssec import DnssecSimulator
from .errors import InvalidDomainError, PacketLossExhaustedError, ResolveLabError
from .hierarchy import normalize_domain, parse_hierarchy
from .models import (
    RECORD_TYPES,
    ROLE_RESPONSE,
    Outcome,
    ResolutionResult,
    StageEvent,
    TraceBuffer,
)
from .packet_loss import PacketLossSimulator
from .servers import BROWSER_CACHE, CLIENT, OS_CACHE
from .settings import ResolutionSettings
from .upstream import DnsPythonUpstream, UpstreamCollaborator

"""Resolution orchestrator.

Brief:
  Drives one resolution through its states:
  browser cache -> OS cache -> recursive or iterative walk -> optional DNSSEC
  -> cache write-through. A front-tier cache hit ends the run as a successful
  CacheHit outcome; invalid domains and exhausted packet loss end it as a
  failed result carrying the partial trace. No engine error escapes resolve().
"""

logger = logging.getLogger("resolvelab.orchestrator")

# Simulated lookup time of each front cache tier (ms).
_FRONT_TIERS = (
    (TIER_BROWSER, BROWSER_CACHE, 10),
    (TIER_OS, OS_CACHE, 20),
)

Sleep = Callable[[float], Awaitable[Any]]


class ResolutionOrchestrator:
    """Brief: Runs resolutions against a shared tiered cache.

    Inputs (constructor):
      - upstream: UpstreamCollaborator; defaults to DnsPythonUpstream().
      - cache: TieredCache shared by every call; a fresh one when omitted.
      - rng: random.Random used when settings.seed is None.
      - sleep: Awaitable sleep taking seconds; defaults to asyncio.sleep.
      - clock: Monotonic clock in seconds used for elapsed time.
      - dnssec_now: Optional UTC datetime factory for RRSIG dates (tests).

    Outputs:
      - Orchestrator; safe to share between concurrent resolve() calls.

    Example:
      >>> orch = ResolutionOrchestrator(sleep=no_sleep, upstream=fake)
      >>> result = asyncio.run(orch.resolve("example.com", "A"))
      >>> result.outcome.kind
      'resolved'
    """

    def __init__(
        self,
        *,
        upstream: Optional[UpstreamCollaborator] = None,
        cache: Optional[TieredCache] = None,
        rng: Optional[random.Random] = None,
        sleep: Optional[Sleep] = None,
        clock: Optional[Callable[[], float]] = None,
        dnssec_now=None,
    ) -> None:
        self.upstream = upstream if upstream is not None else DnsPythonUpstream()
        self.cache = cache if cache is not None else TieredCache()
        self._rng = rng or random.Random()
        self._sleep: Sleep = sleep or asyncio.sleep
        self._clock = clock or time.perf_counter
        self._dnssec = DnssecSimulator(sleep=self._sleep, now=dnssec_now)

    def _elapsed_ms(self, started: float) -> int:
        return int(round((self._clock() - started) * 1000))

    def _failed(
        self,
        exc: ResolveLabError,
        domain: str,
        record_type: str,
        mode: str,
        trace: TraceBuffer,
        started: float,
        settings: ResolutionSettings,
    ) -> ResolutionResult:
        elapsed = self._elapsed_ms(started)
        logger.info(
            "%s %s (%s) failed after %d ms: %s", domain, record_type, mode, elapsed, exc
        )
        return ResolutionResult(
            success=False,
            domain=domain,
            record_type=record_type,
            mode=mode,
            trace=trace.events(),
            elapsed_ms=elapsed,
            outcome=Outcome.failed(exc.kind),
            error_kind=exc.kind,
            error=str(exc),
            settings=settings.snapshot(),
        )

    async def _check_front_tiers(
        self, domain: str, record_type: str, trace: TraceBuffer
    ):
        """Brief: Browser then OS lookup; returns (tier, entry) on a hit."""

        for tier, server, lookup_ms in _FRONT_TIERS:
            await self._sleep(lookup_ms / 1000.0)
            entry = self.cache.get(tier, domain, record_type)
            if entry is None:
                payload: Dict[str, Any] = {
                    "found": False,
                    "message": f"Cache miss in {server.name.lower()}",
                }
                narrative = (
                    f"The {server.name.lower()} has no entry for {domain} "
                    f"{record_type}; the lookup continues."
                )
            else:
                remaining = entry.remaining_seconds(self.cache.now())
                payload = {
                    "found": True,
                    "cached": True,
                    "records": [r.to_dict() for r in entry.records],
                    "ttl": remaining,
                }
                narrative = (
                    f"Found {domain} {record_type} in the {server.name.lower()} "
                    f"with {remaining}s of TTL left; no network query is needed."
                )
            trace.append(
                StageEvent(
                    stage_id=f"{tier}_cache",
                    role=ROLE_RESPONSE,
                    server=server,
                    origin=CLIENT,
                    timing_ms=lookup_ms,
                    payload=payload,
                    narrative=narrative,
                )
            )
            if entry is not None:
                return tier, entry
        return None

    async def resolve(
        self,
        domain: str,
        record_type: str = "A",
        mode: str = MODE_RECURSIVE,
        settings: Optional[ResolutionSettings] = None,
    ) -> ResolutionResult:
        """Brief: Resolve domain/record_type and return the full trace.

        Inputs:
          - domain: Domain name; normalized before use.
          - record_type: One of RECORD_TYPES (case-insensitive).
          - mode: 'recursive' or 'iterative'.
          - settings: ResolutionSettings; defaults apply when omitted.

        Outputs:
          - ResolutionResult. success=False only for invalid domains and
            exhausted packet loss.

        Raises:
          - ValueError: unknown record_type or mode (caller error).
        """

        settings = settings or ResolutionSettings()
        record_type = str(record_type).upper()
        if record_type not in RECORD_TYPES:
            raise ValueError(f"unsupported record type {record_type!r}")
        if mode not in MODES:
            raise ValueError(f"unsupported mode {mode!r}")

        started = self._clock()
        trace = TraceBuffer()
        name = normalize_domain(domain)

        try:
            levels = parse_hierarchy(domain)
        except InvalidDomainError as exc:
            return self._failed(
                exc, str(domain), record_type, mode, trace, started, settings
            )

        if settings.cache_enabled:
            hit = await self._check_front_tiers(name, record_type, trace)
            if hit is not None:
                tier, entry = hit
                elapsed = self._elapsed_ms(started)
                logger.info(
                    "%s %s (%s) answered from %s cache in %d ms",
                    name,
                    record_type,
                    mode,
                    tier,
                    elapsed,
                )
                return ResolutionResult(
                    success=True,
                    domain=name,
                    record_type=record_type,
                    mode=mode,
                    trace=trace.events(),
                    elapsed_ms=elapsed,
                    outcome=Outcome.cache_hit(tier),
                    records=entry.records,
                    ttl=entry.remaining_seconds(self.cache.now()),
                    cached_from=tier,
                    delegation_source="cache",
                    settings=settings.snapshot(),
                )

        rng = random.Random(settings.seed) if settings.seed is not None else self._rng
        generator = DelegationStageGenerator(
            upstream=self.upstream,
            cache=self.cache,
            rng=rng,
            sleep=self._sleep,
            packet_loss=PacketLossSimulator(rng=rng, sleep=self._sleep),
        )

        try:
            generated = await generator.generate(
                name, record_type, settings, mode=mode, trace=trace, levels=levels
            )
        except PacketLossExhaustedError as exc:
            return self._failed(exc, name, record_type, mode, trace, started, settings)
        answer = generated.answer

        dnssec_validated: Optional[bool] = None
        if settings.dnssec_enabled and not answer.from_resolver_cache:
            report = await self._dnssec.validate(
                name,
                record_type,
                levels,
                validator=actor_for(mode, settings),
                simulate_failure=settings.simulate_dnssec_failure,
                trace=trace,
                ttl=answer.ttl,
            )
            dnssec_validated = report.validated

        if mode == MODE_RECURSIVE:
            await generator.deliver_to_client(
                name, record_type, settings, answer, trace
            )

        if settings.cache_enabled:
            for tier, _server, _ms in _FRONT_TIERS:
                self.cache.set(tier, name, record_type, answer.records, answer.ttl)

        for event in trace:
            logger.debug("stage %s -> %s", event.stage_id, event.server.name)
        elapsed = self._elapsed_ms(started)
        logger.info(
            "%s %s (%s) resolved via %s in %d ms, %d stage(s)",
            name,
            record_type,
            mode,
            generated.source,
            elapsed,
            len(trace),
        )
        return ResolutionResult(
            success=True,
            domain=name,
            record_type=record_type,
            mode=mode,
            trace=trace.events(),
            elapsed_ms=elapsed,
            outcome=Outcome.resolved(),
            records=answer.records,
            ttl=answer.ttl,
            delegation_source=generated.source,
            dnssec_validated=dnssec_validated,
            settings=settings.snapshot(),
        )

    async def compare(self, domain: str, timeout_ms: int = 5000) -> Dict[str, Any]:
        """Brief: Compare the simulated hierarchy of domain with its real chain.

        Raises:
          - InvalidDomainError, RealDelegationUnavailableError.
        """

        name = normalize_domain(domain)
        parse_hierarchy(name)
        chain = await asyncio.wait_for(
            self.upstream.discover_real_delegation_chain(name),
            timeout=timeout_ms / 1000.0,
        )
        return compare_with_simulation(name, chain)


_default_lock = threading.Lock()
_default: Optional[ResolutionOrchestrator] = None


def get_default_orchestrator() -> ResolutionOrchestrator:
    """Brief: Process-wide orchestrator used by the module-level resolve()."""

    global _default
    with _default_lock:
        if _default is None:
            _default = ResolutionOrchestrator()
        return _default


def set_default_orchestrator(orchestrator: Optional[ResolutionOrchestrator]) -> None:
    global _default
    with _default_lock:
        _default = orchestrator


async def resolve(
    domain: str,
    record_type: str = "A",
    mode: str = MODE_RECURSIVE,
    settings: Optional[ResolutionSettings] = None,
) -> ResolutionResult:
    """Brief: resolve() on the process-wide orchestrator (shared cache)."""

    return await get_default_orchestrator().resolve(
        domain, record_type, mode, settings
    )
