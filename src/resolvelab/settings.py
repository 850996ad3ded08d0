from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

QUERY_MODE_SIMULATED = "simulated"
QUERY_MODE_REAL = "real"


class CustomResolver(BaseModel):
    """Brief: Recursive resolver shown in place of the default public resolver.

    Inputs:
      - name: Display name.
      - address: IP address string.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = "Custom DNS"
    address: str


class ResolutionSettings(BaseModel):
    """Brief: Immutable per-call configuration snapshot for a resolution.

    Inputs:
      - cache_enabled: Consult and populate the tiered cache.
      - cache_ttl: TTL (seconds) written to the cache tiers on success.
      - network_latency_ms: Simulated one-way latency per hop.
      - packet_loss: Percent probability (0-100) that a packet is lost on the
        client's first hop.
      - max_retries: Maximum delivery attempts per hop.
      - retry_base_delay_ms: Base delay for exponential backoff between
        attempts (2^(attempt-1) * base).
      - dnssec_enabled: Append the DNSSEC chain-of-trust sub-sequence.
      - simulate_dnssec_failure: Break the chain at the first DS check.
      - custom_resolver: Resolver shown instead of the default.
      - query_mode: 'simulated' walks the parsed hierarchy; 'real' asks the
        live delegation collaborator and falls back to simulated on error.
      - real_delegation_timeout_ms: Local timeout for live discovery.
      - seed: Optional RNG seed making loss draws and processing times
        reproducible for this call.

    Outputs:
      - Frozen settings instance; unknown keys are rejected.

    Example:
      >>> ResolutionSettings(packet_loss=50, max_retries=3, seed=7).max_retries
      3
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    cache_enabled: bool = True
    cache_ttl: int = Field(default=300, ge=0)
    network_latency_ms: int = Field(default=50, ge=0)
    packet_loss: float = Field(default=0.0, ge=0.0, le=100.0)
    max_retries: int = Field(default=3, ge=1)
    retry_base_delay_ms: int = Field(default=1000, ge=0)
    dnssec_enabled: bool = False
    simulate_dnssec_failure: bool = False
    custom_resolver: Optional[CustomResolver] = None
    query_mode: Literal["simulated", "real"] = QUERY_MODE_SIMULATED
    real_delegation_timeout_ms: int = Field(default=5000, ge=1)
    seed: Optional[int] = None

    def snapshot(self) -> dict:
        """Brief: JSON-ready copy of the settings for ResolutionResult."""

        return self.model_dump(mode="json")
