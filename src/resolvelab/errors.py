from __future__ import annotations

from typing import Optional

"""Error taxonomy for the resolution engine.

Brief:
  Every error raised by the engine derives from ResolveLabError and carries a
  stable ``kind`` string that is reported as ``errorKind`` on failed results.
  Only InvalidDomainError and PacketLossExhaustedError end a resolution; the
  others are absorbed where they are raised and leave a note in the trace.
"""


class ResolveLabError(Exception):
    """Base class for resolution engine errors.

    Inputs:
      - message: Human readable description.

    Outputs:
      - Exception instance exposing ``kind``.
    """

    kind: str = "error"


class InvalidDomainError(ResolveLabError, ValueError):
    """Domain name could not be parsed into a DNS hierarchy."""

    kind = "invalid_domain"

    def __init__(self, domain: str, reason: str) -> None:
        self.domain = domain
        self.reason = reason
        super().__init__(f"Invalid domain name {domain!r}: {reason}")


class PacketLossExhaustedError(ResolveLabError):
    """Every delivery attempt for a simulated hop was lost.

    Inputs:
      - target: Name of the server the packet was addressed to.
      - attempts: Number of attempts made before giving up.
    """

    kind = "packet_loss_exhausted"

    def __init__(self, target: str, attempts: int) -> None:
        self.target = target
        self.attempts = attempts
        super().__init__(
            f"Failed to deliver packet to {target} after {attempts} attempt(s)"
        )


class UpstreamLookupError(ResolveLabError):
    """A real record lookup against an upstream resolver failed."""

    kind = "upstream_lookup"

    def __init__(
        self, domain: str, record_type: str, reason: Optional[str] = None
    ) -> None:
        self.domain = domain
        self.record_type = record_type
        self.reason = reason or "lookup failed"
        super().__init__(f"{record_type} lookup for {domain} failed: {self.reason}")


class NotFoundError(UpstreamLookupError):
    """Upstream answered authoritatively that no such data exists."""

    kind = "not_found"


class RealDelegationUnavailableError(ResolveLabError):
    """Live delegation discovery failed or timed out."""

    kind = "real_delegation_unavailable"

    def __init__(self, domain: str, reason: str) -> None:
        self.domain = domain
        self.reason = reason
        super().__init__(f"Real delegation chain for {domain} unavailable: {reason}")
