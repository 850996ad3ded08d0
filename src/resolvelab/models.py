from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

"""Trace and result types for the resolution engine.

Inputs:
  - Public types documented on individual classes.

Outputs:
  - Immutable descriptions of actors, records, trace stages, and results.

Brief:
  Field names produced by the ``to_dict()`` helpers (camelCase) and the string
  values of roles and kinds are the wire contract consumed by presentation
  layers; they must stay stable.
"""

ROLE_QUERY = "query"
ROLE_RESPONSE = "response"

KIND_CLIENT = "client"
KIND_CACHE_TIER = "cacheTier"
KIND_RESOLVER = "resolver"
KIND_ROOT = "root"
KIND_TLD = "tld"
KIND_SLD = "sld"
KIND_INTERMEDIATE = "intermediate"
KIND_AUTHORITATIVE = "authoritative"

LEVEL_KINDS = (
    KIND_ROOT,
    KIND_TLD,
    KIND_SLD,
    KIND_INTERMEDIATE,
    KIND_AUTHORITATIVE,
)
SERVER_KINDS = (KIND_CLIENT, KIND_CACHE_TIER, KIND_RESOLVER) + LEVEL_KINDS

OUTCOME_CACHE_HIT = "cache_hit"
OUTCOME_RESOLVED = "resolved"
OUTCOME_FAILED = "failed"

RECORD_TYPES = ("A", "AAAA", "CNAME", "MX", "NS", "TXT", "SOA")

SIMULATED_FALLBACK_VALUE = "Simulated response (actual DNS query failed)"


@dataclass(frozen=True)
class ServerDescriptor:
    """Logical actor taking part in a stage.

    Inputs:
      - name: Display name (e.g. 'a.root-servers.net', 'Browser Cache').
      - address: IP address when known, else None.
      - kind: One of SERVER_KINDS.

    Outputs:
      - Immutable descriptor, independent of whether the actor is real.
    """

    name: str
    address: Optional[str]
    kind: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "address": self.address, "kind": self.kind}


@dataclass(frozen=True)
class Record:
    """Single answer record of any supported type.

    Inputs:
      - type: Record type name (A, AAAA, CNAME, MX, NS, TXT, SOA).
      - data: Type specific fields, e.g. {'address': ...} for A/AAAA,
        {'target': ...} for CNAME/NS, {'priority', 'exchange'} for MX,
        {'data': ...} for TXT, SOA timer fields for SOA.
      - simulated: True when produced as a fallback after a failed lookup.

    Outputs:
      - Immutable record; equality compares type, data and simulated flag.
    """

    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    simulated: bool = False

    @classmethod
    def simulated_fallback(cls, record_type: str) -> "Record":
        """Brief: Build the placeholder record used when a real lookup fails."""

        return cls(
            type=record_type,
            data={"value": SIMULATED_FALLBACK_VALUE},
            simulated=True,
        )

    def text(self) -> str:
        """Brief: Short presentation form used in narratives."""

        d = self.data
        if self.type == "MX":
            return f"{d.get('priority')} {d.get('exchange')}"
        if self.type == "SOA":
            return f"{d.get('mname')} {d.get('rname')} {d.get('serial')}"
        for key in ("address", "target", "data", "value"):
            if key in d:
                return str(d[key])
        return str(d)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type}
        out.update(self.data)
        out["simulated"] = self.simulated
        return out


@dataclass(frozen=True)
class StageEvent:
    """Atomic unit of a resolution trace.

    Inputs:
      - stage_id: Stable identifier such as 'resolver_to_root_query'.
      - role: ROLE_QUERY or ROLE_RESPONSE.
      - server: The actor the message is addressed to or received from.
      - timing_ms: Time attributed to this stage.
      - payload: JSON-ready mapping (query or response details).
      - narrative: Plain language explanation of the stage.
      - origin: Actor that sent the message, when meaningful.

    Outputs:
      - Immutable stage; payload is deep-copied on serialization.
    """

    stage_id: str
    role: str
    server: ServerDescriptor
    timing_ms: int
    payload: Dict[str, Any]
    narrative: str
    origin: Optional[ServerDescriptor] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stageId": self.stage_id,
            "role": self.role,
            "serverDescriptor": self.server.to_dict(),
            "origin": self.origin.to_dict() if self.origin else None,
            "timingMs": int(self.timing_ms),
            "payload": copy.deepcopy(self.payload),
            "narrative": self.narrative,
        }


class TraceBuffer:
    """Append-only ordered buffer of StageEvents for one resolution.

    Notes:
      - Events are never replaced or removed once appended; events() returns an
        immutable snapshot.
    """

    def __init__(self) -> None:
        self._events: List[StageEvent] = []

    def append(self, event: StageEvent) -> StageEvent:
        self._events.append(event)
        return event

    def events(self) -> Tuple[StageEvent, ...]:
        return tuple(self._events)

    def stage_ids(self) -> List[str]:
        return [e.stage_id for e in self._events]

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[StageEvent]:
        return iter(tuple(self._events))


@dataclass(frozen=True)
class FinalAnswer:
    """Answer produced at the end of a delegation walk.

    Inputs:
      - records: Answer records (a single simulated record on lookup failure).
      - ttl: TTL in seconds used for caching.
      - rcode: 'NOERROR' for real answers, 'NXDOMAIN' when a fallback was used.
      - server: Actor that produced the answer.
      - from_resolver_cache: True when the resolver tier answered directly.
    """

    records: Tuple[Record, ...]
    ttl: int
    rcode: str
    server: ServerDescriptor
    from_resolver_cache: bool = False

    @property
    def simulated(self) -> bool:
        return any(r.simulated for r in self.records)


@dataclass(frozen=True)
class Outcome:
    """Tagged terminal outcome of the orchestrator state machine.

    Inputs:
      - kind: OUTCOME_CACHE_HIT, OUTCOME_RESOLVED or OUTCOME_FAILED.
      - source: Cache tier name for cache hits.
      - error_kind: ResolveLabError.kind for failures.
    """

    kind: str
    source: Optional[str] = None
    error_kind: Optional[str] = None

    @classmethod
    def cache_hit(cls, source: str) -> "Outcome":
        return cls(kind=OUTCOME_CACHE_HIT, source=source)

    @classmethod
    def resolved(cls) -> "Outcome":
        return cls(kind=OUTCOME_RESOLVED)

    @classmethod
    def failed(cls, error_kind: str) -> "Outcome":
        return cls(kind=OUTCOME_FAILED, error_kind=error_kind)

    @property
    def success(self) -> bool:
        return self.kind != OUTCOME_FAILED


@dataclass(frozen=True)
class ResolutionResult:
    """Terminal artifact of one resolve() call.

    Inputs:
      - success: False only for invalid domains and exhausted packet loss.
      - domain / record_type / mode: Echo of the request.
      - trace: Ordered StageEvents, including partial traces on failure.
      - elapsed_ms: Wall-clock time from start to terminal state.
      - outcome: Tagged Outcome.
      - records / ttl: Final answer when successful.
      - error_kind / error: Failure classification and message.
      - cached_from: Cache tier name on a cache hit.
      - delegation_source: 'simulated', 'real', 'simulated_fallback' or 'cache'.
      - dnssec_validated: None when DNSSEC was not run.
      - settings: Snapshot of the settings used.
    """

    success: bool
    domain: str
    record_type: str
    mode: str
    trace: Tuple[StageEvent, ...]
    elapsed_ms: int
    outcome: Outcome
    records: Tuple[Record, ...] = ()
    ttl: Optional[int] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    cached_from: Optional[str] = None
    delegation_source: Optional[str] = None
    dnssec_validated: Optional[bool] = None
    settings: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "domain": self.domain,
            "recordType": self.record_type,
            "mode": self.mode,
            "outcome": self.outcome.kind,
            "records": [r.to_dict() for r in self.records],
            "ttl": self.ttl,
            "trace": [e.to_dict() for e in self.trace],
            "elapsedMs": self.elapsed_ms,
            "errorKind": self.error_kind,
            "error": self.error,
            "cachedFrom": self.cached_from,
            "delegationSource": self.delegation_source,
            "dnssecValidated": self.dnssec_validated,
            "settings": copy.deepcopy(self.settings),
        }
