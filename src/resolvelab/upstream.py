from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import dns.asyncresolver
import dns.exception
import dns.rdatatype
import dns.resolver

from .errors import NotFoundError, RealDelegationUnavailableError, UpstreamLookupError
from .hierarchy import parse_hierarchy
from .models import KIND_ROOT, Record

"""Real-DNS collaborator used by the delegation stage generator.

Brief:
  Performs genuine lookups with dnspython's asyncio resolver: record lookups
  for the final answer, NS lookups, and discovery of a domain's real zone cuts
  with per-hop timings. The generator treats any failure here as recoverable.
"""

logger = logging.getLogger("resolvelab.upstream")


@dataclass(frozen=True)
class ZoneCut:
    """One level of a discovered delegation chain.

    Inputs:
      - zone: Zone name without trailing dot.
      - kind: Hierarchy kind of the level (tld, sld, intermediate, authoritative).
      - nameservers: NS host names; empty when the level is not delegated and
        is served by its parent zone.
      - query_time_ms: Measured time of the NS lookup.
    """

    zone: str
    kind: str
    nameservers: Tuple[str, ...]
    query_time_ms: int

    @property
    def delegated(self) -> bool:
        return bool(self.nameservers)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zone": self.zone,
            "kind": self.kind,
            "nameservers": list(self.nameservers),
            "queryTimeMs": self.query_time_ms,
        }


@dataclass(frozen=True)
class DelegationChain:
    """Result of live delegation discovery.

    Inputs:
      - domain: Domain that was traced.
      - zones: Levels below root, TLD first.
      - final_address: First IPv4 address of the domain, if any.
    """

    domain: str
    zones: Tuple[ZoneCut, ...]
    final_address: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "zones": [z.to_dict() for z in self.zones],
            "finalAddress": self.final_address,
        }


class UpstreamCollaborator(Protocol):
    """Protocol for the live DNS collaborator consumed by the generator."""

    async def lookup_records(self, domain: str, record_type: str) -> List[Record]:
        """Return records or raise UpstreamLookupError/NotFoundError."""

    async def lookup_nameservers(self, domain: str) -> List[str]:
        """Return NS host names or raise UpstreamLookupError/NotFoundError."""

    async def discover_real_delegation_chain(self, domain: str) -> DelegationChain:
        """Return the real zone cuts or raise RealDelegationUnavailableError."""


def record_from_rdata(rdata) -> Record:
    """Brief: Convert a dnspython rdata into a Record.

    Inputs:
      - rdata: dnspython Rdata of type A, AAAA, CNAME, NS, MX, TXT or SOA.

    Outputs:
      - Record with type-specific data fields.
    """

    rtype = dns.rdatatype.to_text(rdata.rdtype)
    if rtype in ("A", "AAAA"):
        data: Dict[str, Any] = {"address": rdata.address}
    elif rtype in ("CNAME", "NS"):
        data = {"target": rdata.target.to_text().rstrip(".")}
    elif rtype == "MX":
        data = {
            "priority": int(rdata.preference),
            "exchange": rdata.exchange.to_text().rstrip("."),
        }
    elif rtype == "TXT":
        data = {"data": b"".join(rdata.strings).decode("utf-8", "replace")}
    elif rtype == "SOA":
        data = {
            "mname": rdata.mname.to_text().rstrip("."),
            "rname": rdata.rname.to_text().rstrip("."),
            "serial": int(rdata.serial),
            "refresh": int(rdata.refresh),
            "retry": int(rdata.retry),
            "expire": int(rdata.expire),
            "minimum": int(rdata.minimum),
        }
    else:
        data = {"value": rdata.to_text()}
    return Record(type=rtype, data=data)


class DnsPythonUpstream:
    """Brief: UpstreamCollaborator backed by dns.asyncresolver.

    Inputs (constructor):
      - nameservers: Optional list of resolver IPs; when omitted the system
        configuration (/etc/resolv.conf) is used.
      - timeout_ms: Lifetime of each lookup in milliseconds.
      - resolver: Optional pre-built dns.asyncresolver.Resolver (tests).

    Outputs:
      - Collaborator instance; the resolver is created lazily on first use so
        construction never touches the system configuration.
    """

    def __init__(
        self,
        *,
        nameservers: Optional[Sequence[str]] = None,
        timeout_ms: int = 2000,
        resolver: Optional[dns.asyncresolver.Resolver] = None,
    ) -> None:
        self._nameservers = list(nameservers or [])
        self._timeout_ms = max(1, int(timeout_ms))
        self._resolver = resolver

    def _get_resolver(self) -> dns.asyncresolver.Resolver:
        if self._resolver is None:
            if self._nameservers:
                r = dns.asyncresolver.Resolver(configure=False)
                r.nameservers = list(self._nameservers)
            else:
                r = dns.asyncresolver.Resolver(configure=True)
            r.lifetime = self._timeout_ms / 1000.0
            self._resolver = r
        return self._resolver

    async def lookup_records(self, domain: str, record_type: str) -> List[Record]:
        """Brief: Resolve domain/record_type and convert the answer to Records.

        Raises:
          - NotFoundError: NXDOMAIN or no data of that type.
          - UpstreamLookupError: timeouts, unreachable servers, bad config.
        """

        try:
            answer = await self._get_resolver().resolve(domain, record_type)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer) as exc:
            raise NotFoundError(domain, record_type, str(exc)) from exc
        except dns.exception.DNSException as exc:
            raise UpstreamLookupError(domain, record_type, str(exc)) from exc
        return [record_from_rdata(rdata) for rdata in answer]

    async def lookup_nameservers(self, domain: str) -> List[str]:
        records = await self.lookup_records(domain, "NS")
        return [r.data["target"] for r in records]

    async def discover_real_delegation_chain(self, domain: str) -> DelegationChain:
        """Brief: Find which levels of domain are real zone cuts.

        Inputs:
          - domain: Domain to trace.

        Outputs:
          - DelegationChain with one ZoneCut per level below root and the
            first IPv4 address of the domain.

        Raises:
          - RealDelegationUnavailableError: when lookups fail for reasons other
            than 'no such data', or when not even the TLD is delegated.
        """

        try:
            levels = parse_hierarchy(domain)
        except ValueError as exc:
            raise RealDelegationUnavailableError(domain, str(exc)) from exc

        zones: List[ZoneCut] = []
        for level in levels:
            if level.kind == KIND_ROOT:
                continue
            started = time.perf_counter()
            try:
                nameservers = await self.lookup_nameservers(level.zone)
            except NotFoundError:
                nameservers = []
            except UpstreamLookupError as exc:
                raise RealDelegationUnavailableError(domain, str(exc)) from exc
            elapsed = int(round((time.perf_counter() - started) * 1000))
            zones.append(
                ZoneCut(
                    zone=level.zone,
                    kind=level.kind,
                    nameservers=tuple(sorted(nameservers)),
                    query_time_ms=elapsed,
                )
            )
            logger.debug(
                "NS %s -> %d nameserver(s) in %d ms", level.zone, len(nameservers), elapsed
            )

        if not zones or not zones[0].delegated:
            raise RealDelegationUnavailableError(domain, "top-level domain not delegated")

        final_address: Optional[str] = None
        try:
            addresses = await self.lookup_records(domain, "A")
            if addresses:
                final_address = addresses[0].data.get("address")
        except NotFoundError:
            final_address = None
        except UpstreamLookupError as exc:
            raise RealDelegationUnavailableError(domain, str(exc)) from exc

        return DelegationChain(
            domain=domain, zones=tuple(zones), final_address=final_address
        )
