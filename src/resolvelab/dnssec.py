from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import dns.dnssec
import dns.name
import dns.rdata
import dns.rdataclass
import dns.rdatatype

from .hierarchy import HierarchyLevel, registered_zone_level, tld_level
from .models import ROLE_RESPONSE, ServerDescriptor, StageEvent, TraceBuffer
from .servers import ROOT_HINTS, server_for_level

"""Simulated DNSSEC chain-of-trust validation.

Brief:
  Produces the seven-step validation sub-sequence (root DNSKEY, root DS,
  TLD DNSKEY, TLD DS, zone DNSKEY, RRSIG, summary). With failure injection the
  chain breaks at the root DS check and the sequence stops there, the way a
  validator halts on the first broken link.

  Key tags and DS digests are computed by dnspython from deterministic
  per-zone DNSKEY rdata; nothing is actually signed.
"""

logger = logging.getLogger(__name__)

# Root KSK-2017 key tag.
ROOT_KEY_TAG = 20326
ALGORITHM = 8  # RSASHA256
FLAGS_KSK = 257
FLAGS_ZSK = 256

SIGNATURE_AGE = timedelta(days=7)
SIGNATURE_VALIDITY_LEFT = timedelta(days=23)

STAGE_ROOT_DNSKEY = "dnssec_root_dnskey"
STAGE_ROOT_DS = "dnssec_root_ds"
STAGE_FAILED = "dnssec_validation_failed"
STAGE_TLD_DNSKEY = "dnssec_tld_dnskey"
STAGE_TLD_DS = "dnssec_tld_ds"
STAGE_ZONE_DNSKEY = "dnssec_zone_dnskey"
STAGE_RRSIG = "dnssec_rrsig_verify"
STAGE_COMPLETE = "dnssec_validation_complete"

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class DnssecReport:
    """Brief: Result of one validation run.

    Inputs:
      - validated: True when the whole chain verified.
      - steps: Number of stage events appended.
      - failed_at: Stage id of the broken link, if any.
    """

    validated: bool
    steps: int
    failed_at: Optional[str] = None


def simulated_dnskey(zone: str, flags: int):
    """Brief: Deterministic DNSKEY rdata for a zone (not a usable key)."""

    seed = f"{zone.lower()}|{flags}".encode("utf-8")
    material = b"".join(
        hashlib.sha256(seed + bytes([i])).digest() for i in range(4)
    )
    text = f"{flags} 3 {ALGORITHM} {base64.b64encode(material).decode('ascii')}"
    return dns.rdata.from_text(dns.rdataclass.IN, dns.rdatatype.DNSKEY, text)


def key_tag(zone: str, flags: int) -> int:
    return int(dns.dnssec.key_id(simulated_dnskey(zone, flags)))


def ds_digest(zone: str) -> str:
    """Brief: SHA-256 DS digest of the zone's simulated KSK, hex encoded."""

    ds = dns.dnssec.make_ds(
        dns.name.from_text(zone), simulated_dnskey(zone, FLAGS_KSK), "SHA256"
    )
    return ds.digest.hex().upper()


class DnssecSimulator:
    """Brief: Appends a DNSSEC validation sub-sequence to a trace.

    Inputs (constructor):
      - sleep: Awaitable sleep taking seconds.
      - now: Optional callable returning an aware UTC datetime (tests).
    """

    def __init__(
        self,
        *,
        sleep: Sleep,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._sleep = sleep
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def _step(
        self,
        trace: TraceBuffer,
        stage_id: str,
        server: ServerDescriptor,
        origin: ServerDescriptor,
        timing_ms: int,
        dnssec: Dict[str, Any],
        narrative: str,
    ) -> None:
        await self._sleep(timing_ms / 1000.0)
        trace.append(
            StageEvent(
                stage_id=stage_id,
                role=ROLE_RESPONSE,
                server=server,
                origin=origin,
                timing_ms=timing_ms,
                payload={"dnssec": dnssec},
                narrative=narrative,
            )
        )

    async def validate(
        self,
        domain: str,
        record_type: str,
        levels: Tuple[HierarchyLevel, ...],
        *,
        validator: ServerDescriptor,
        simulate_failure: bool,
        trace: TraceBuffer,
        ttl: int = 300,
    ) -> DnssecReport:
        """Brief: Run the chain-of-trust sequence for domain/record_type.

        Inputs:
          - domain: Queried name.
          - record_type: Type covered by the RRSIG step.
          - levels: Parsed hierarchy of domain.
          - validator: Actor performing validation (resolver or client).
          - simulate_failure: Break the chain at the root DS check.
          - trace: Buffer receiving the steps.
          - ttl: Original TTL reported on the RRSIG step.

        Outputs:
          - DnssecReport; 3 steps on injected failure, 7 otherwise.
        """

        start = len(trace)
        tld = tld_level(levels)
        zone = registered_zone_level(levels)
        root_server = ROOT_HINTS[0]
        tld_server = server_for_level(tld)
        zone_server = server_for_level(zone)
        algorithm = dns.dnssec.algorithm_to_text(ALGORITHM)
        tld_tag = key_tag(tld.zone, FLAGS_KSK)
        zone_ksk_tag = key_tag(zone.zone, FLAGS_KSK)
        zone_zsk_tag = key_tag(zone.zone, FLAGS_ZSK)

        await self._step(
            trace,
            STAGE_ROOT_DNSKEY,
            root_server,
            validator,
            20,
            {
                "level": "root",
                "recordType": "DNSKEY",
                "keyTag": ROOT_KEY_TAG,
                "algorithm": algorithm,
                "flags": FLAGS_KSK,
                "valid": True,
            },
            "The root DNSKEY is the trust anchor for the whole chain; its key "
            "is pre-configured in every validating resolver.",
        )

        await self._step(
            trace,
            STAGE_ROOT_DS,
            root_server,
            validator,
            25,
            {
                "level": "root",
                "recordType": "DS",
                "owner": tld.zone,
                "keyTag": tld_tag,
                "algorithm": algorithm,
                "digestType": "SHA256",
                "digest": ds_digest(tld.zone),
                "valid": not simulate_failure,
            },
            f"The DS record for .{tld.zone} in the root zone vouches for the "
            f".{tld.zone} key, linking the chain of trust one level down.",
        )

        if simulate_failure:
            await self._step(
                trace,
                STAGE_FAILED,
                root_server,
                validator,
                10,
                {
                    "level": "root",
                    "valid": False,
                    "validated": False,
                    "error": "DS digest mismatch",
                    "securityRisk": "high",
                },
                f"DNSSEC validation failed: the DS digest in the root zone does "
                f"not match the .{tld.zone} DNSKEY. This points to spoofing or a "
                "misconfigured zone; validation stops at this link.",
            )
            logger.warning("DNSSEC validation failed for %s at root DS", domain)
            return DnssecReport(
                validated=False, steps=len(trace) - start, failed_at=STAGE_ROOT_DS
            )

        await self._step(
            trace,
            STAGE_TLD_DNSKEY,
            tld_server,
            validator,
            30,
            {
                "level": "tld",
                "recordType": "DNSKEY",
                "zone": tld.zone,
                "keyTag": tld_tag,
                "algorithm": algorithm,
                "flags": FLAGS_KSK,
                "valid": True,
            },
            f"The .{tld.zone} DNSKEY verifies signatures inside the TLD zone, "
            "including the DS records of delegated zones.",
        )

        await self._step(
            trace,
            STAGE_TLD_DS,
            tld_server,
            validator,
            25,
            {
                "level": "tld",
                "recordType": "DS",
                "owner": zone.zone,
                "keyTag": zone_ksk_tag,
                "algorithm": algorithm,
                "digestType": "SHA256",
                "digest": ds_digest(zone.zone),
                "valid": True,
            },
            f"The DS record for {zone.zone} in the .{tld.zone} zone continues "
            "the chain of trust.",
        )

        await self._step(
            trace,
            STAGE_ZONE_DNSKEY,
            zone_server,
            validator,
            30,
            {
                "level": "authoritative",
                "recordType": "DNSKEY",
                "zone": zone.zone,
                "keyTag": zone_zsk_tag,
                "algorithm": algorithm,
                "flags": FLAGS_ZSK,
                "valid": True,
            },
            f"The {zone.zone} zone-signing key verifies RRSIG signatures on the "
            "zone's records.",
        )

        now = self._now()
        await self._step(
            trace,
            STAGE_RRSIG,
            zone_server,
            validator,
            20,
            {
                "level": "authoritative",
                "recordType": "RRSIG",
                "typeCovered": record_type,
                "algorithm": algorithm,
                "labels": len(levels) - 1,
                "originalTTL": int(ttl),
                "signatureInception": (now - SIGNATURE_AGE).isoformat(),
                "signatureExpiration": (now + SIGNATURE_VALIDITY_LEFT).isoformat(),
                "keyTag": zone_zsk_tag,
                "signerName": zone.zone,
                "valid": True,
                "daysUntilExpiration": SIGNATURE_VALIDITY_LEFT.days,
            },
            f"The RRSIG over the {record_type} record for {domain} proves it was "
            f"signed by the zone owner and not modified; the signature is valid "
            f"for {SIGNATURE_VALIDITY_LEFT.days} more days.",
        )

        await self._step(
            trace,
            STAGE_COMPLETE,
            validator,
            validator,
            10,
            {
                "level": "summary",
                "chainOfTrust": [
                    {"level": "root", "status": "valid", "keyTag": ROOT_KEY_TAG},
                    {"level": "tld", "status": "valid", "keyTag": tld_tag},
                    {
                        "level": "authoritative",
                        "status": "valid",
                        "keyTag": zone_zsk_tag,
                    },
                ],
                "validated": True,
                "message": "Complete DNSSEC chain of trust validated",
            },
            "Every signature in the chain verified: the answer is authentic and "
            "unmodified.",
        )
        return DnssecReport(validated=True, steps=len(trace) - start)
