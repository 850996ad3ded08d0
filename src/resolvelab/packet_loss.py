from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import PacketLossExhaustedError
from .models import ROLE_QUERY, ROLE_RESPONSE, ServerDescriptor, StageEvent, TraceBuffer
from .settings import ResolutionSettings

logger = logging.getLogger(__name__)

DELIVERY_CLEAN = "clean"
DELIVERY_RECOVERED = "recovered"

STAGE_PACKET_LOSS = "packet_loss"
STAGE_RETRY_SUCCESS = "packet_retry_success"
STAGE_LOSS_FATAL = "packet_loss_fatal"

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of delivering one packet across a simulated hop.

    Inputs:
      - delivered: Always True; exhaustion raises instead of returning.
      - attempts_used: Attempts made including the successful one.
      - outcome: DELIVERY_CLEAN (first attempt) or DELIVERY_RECOVERED.
    """

    delivered: bool
    attempts_used: int
    outcome: str


def backoff_delay_ms(attempt: int, base_delay_ms: int) -> int:
    """Brief: Exponential backoff delay after a lost attempt.

    Inputs:
      - attempt: 1-based number of the attempt that was lost.
      - base_delay_ms: Delay after the first loss.

    Outputs:
      - int: 2^(attempt-1) * base_delay_ms.

    Example:
      >>> [backoff_delay_ms(n, 1000) for n in (1, 2, 3)]
      [1000, 2000, 4000]
    """

    return (2 ** max(0, int(attempt) - 1)) * max(0, int(base_delay_ms))


class PacketLossSimulator:
    """Bounded-retry delivery with randomized loss and exponential backoff.

    Inputs (constructor):
      - rng: random.Random used for loss draws and loss points; pass a seeded
        instance for reproducible runs.
      - sleep: Awaitable sleep taking seconds (asyncio.sleep by default at the
        orchestrator level; tests pass a no-op).

    Outputs:
      - attempt() appends loss/recovery/fatal events to the caller's trace and
        either returns a DeliveryResult or raises PacketLossExhaustedError.

    Notes:
      - Exactly one of clean success, recovered success, or fatal exhaustion
        happens per call, and no more than settings.max_retries attempts are
        made.
    """

    def __init__(self, *, rng: random.Random, sleep: Sleep) -> None:
        self._rng = rng
        self._sleep = sleep

    def _lost(self, probability_percent: float) -> bool:
        if probability_percent <= 0:
            return False
        return self._rng.random() * 100.0 < probability_percent

    async def attempt(
        self,
        target: ServerDescriptor,
        settings: ResolutionSettings,
        *,
        trace: TraceBuffer,
        origin: Optional[ServerDescriptor] = None,
        query: Optional[Dict[str, Any]] = None,
    ) -> DeliveryResult:
        """Brief: Try to deliver one packet to target within the retry budget.

        Inputs:
          - target: Server the packet is addressed to.
          - settings: Uses packet_loss, max_retries, retry_base_delay_ms and
            network_latency_ms.
          - trace: Buffer receiving loss and recovery events.
          - origin: Sender shown on the events.
          - query: Optional query payload echoed on the events.

        Outputs:
          - DeliveryResult on delivery.

        Raises:
          - PacketLossExhaustedError after max_retries lost attempts; the fatal
            event has already been appended to trace.
        """

        max_attempts = max(1, int(settings.max_retries))
        latency = int(settings.network_latency_ms)
        query_info = dict(query or {})

        for attempt in range(1, max_attempts + 1):
            if not self._lost(settings.packet_loss):
                if attempt == 1:
                    return DeliveryResult(True, 1, DELIVERY_CLEAN)
                trace.append(
                    StageEvent(
                        stage_id=STAGE_RETRY_SUCCESS,
                        role=ROLE_RESPONSE,
                        server=target,
                        origin=origin,
                        timing_ms=latency,
                        payload={
                            "query": query_info,
                            "packetLoss": {
                                "occurred": False,
                                "attempt": attempt,
                                "maxRetries": max_attempts,
                                "retriesNeeded": attempt - 1,
                            },
                        },
                        narrative=(
                            f"After {attempt - 1} failed attempt(s), the packet "
                            f"reached {target.name} using exponential backoff."
                        ),
                    )
                )
                logger.debug(
                    "packet to %s recovered after %d attempt(s)", target.name, attempt
                )
                return DeliveryResult(True, attempt, DELIVERY_RECOVERED)

            # Fraction of the journey completed before the drop; narrative only.
            loss_point = 0.3 + self._rng.random() * 0.4
            has_next = attempt < max_attempts
            delay_ms = (
                backoff_delay_ms(attempt, settings.retry_base_delay_ms)
                if has_next
                else 0
            )
            trace.append(
                StageEvent(
                    stage_id=STAGE_PACKET_LOSS,
                    role=ROLE_QUERY,
                    server=target,
                    origin=origin,
                    timing_ms=int(latency * loss_point),
                    payload={
                        "query": query_info,
                        "packetLoss": {
                            "occurred": True,
                            "lossPoint": round(loss_point, 3),
                            "attempt": attempt,
                            "maxRetries": max_attempts,
                            "backoffMs": delay_ms,
                        },
                    },
                    narrative=(
                        f"Packet to {target.name} was lost at "
                        f"{round(loss_point * 100)}% of the journey (attempt "
                        f"{attempt} of {max_attempts})."
                        + (f" Retrying in {delay_ms} ms." if has_next else "")
                    ),
                )
            )
            logger.debug(
                "packet to %s lost on attempt %d/%d", target.name, attempt, max_attempts
            )
            if has_next and delay_ms:
                await self._sleep(delay_ms / 1000.0)

        trace.append(
            StageEvent(
                stage_id=STAGE_LOSS_FATAL,
                role=ROLE_RESPONSE,
                server=target,
                origin=origin,
                timing_ms=0,
                payload={
                    "query": query_info,
                    "packetLoss": {
                        "occurred": True,
                        "attempt": max_attempts,
                        "maxRetries": max_attempts,
                        "fatal": True,
                    },
                },
                narrative=(
                    f"All {max_attempts} attempt(s) to reach {target.name} were "
                    "lost. A real client would report a resolution timeout."
                ),
            )
        )
        logger.warning(
            "packet loss exhausted %d attempt(s) towards %s", max_attempts, target.name
        )
        raise PacketLossExhaustedError(target.name, max_attempts)
