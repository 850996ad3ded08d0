"""
Brief: Tests for resolvelab.packet_loss bounded-retry delivery.

Inputs:
  - None

Outputs:
  - None
"""

import asyncio
import random

import pytest

from resolvelab.errors import PacketLossExhaustedError
from resolvelab.models import TraceBuffer
from resolvelab.packet_loss import (
    DELIVERY_CLEAN,
    DELIVERY_RECOVERED,
    PacketLossSimulator,
    backoff_delay_ms,
)
from resolvelab.servers import ROOT_HINTS
from resolvelab.settings import ResolutionSettings

TARGET = ROOT_HINTS[0]


class ScriptedRng:
    """Brief: random() returns scripted values in order (0.5 once exhausted)."""

    def __init__(self, values):
        self.values = list(values)
        self.draws = 0

    def random(self):
        self.draws += 1
        return self.values.pop(0) if self.values else 0.5


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def _run(sim, settings, trace):
    return asyncio.run(sim.attempt(TARGET, settings, trace=trace))


def test_backoff_delay_ms_doubles():
    """
    Brief: Backoff is 2^(attempt-1) * base.

    Inputs:
      - None

    Outputs:
      - None
    """
    assert [backoff_delay_ms(n, 1000) for n in (1, 2, 3, 4)] == [1000, 2000, 4000, 8000]
    assert backoff_delay_ms(1, 0) == 0


def test_zero_loss_delivers_clean_without_drawing():
    """
    Brief: packet_loss=0 never consumes the random source and emits nothing.

    Inputs:
      - None

    Outputs:
      - None
    """
    rng = ScriptedRng([])
    trace = TraceBuffer()
    result = _run(PacketLossSimulator(rng=rng, sleep=RecordingSleep()), ResolutionSettings(), trace)
    assert (result.delivered, result.attempts_used, result.outcome) == (True, 1, DELIVERY_CLEAN)
    assert rng.draws == 0
    assert len(trace) == 0


def test_recovered_after_losses_emits_events_and_backs_off():
    """
    Brief: Two losses then success -> two loss events, one recovery event.

    Inputs:
      - None

    Outputs:
      - None: Asserts event order, payloads and backoff sleeps
    """
    # loss draw, loss point, loss draw, loss point, success draw
    rng = ScriptedRng([0.1, 0.5, 0.2, 0.5, 0.9])
    sleep = RecordingSleep()
    trace = TraceBuffer()
    settings = ResolutionSettings(packet_loss=50, max_retries=3, retry_base_delay_ms=1000)
    result = _run(PacketLossSimulator(rng=rng, sleep=sleep), settings, trace)

    assert result.outcome == DELIVERY_RECOVERED
    assert result.attempts_used == 3
    assert trace.stage_ids() == ["packet_loss", "packet_loss", "packet_retry_success"]
    first = trace.events()[0].payload["packetLoss"]
    assert first["attempt"] == 1 and first["backoffMs"] == 1000
    assert trace.events()[-1].payload["packetLoss"]["retriesNeeded"] == 2
    assert sleep.calls == [1.0, 2.0]


def test_full_loss_exhausts_after_max_retries():
    """
    Brief: packet_loss=100 yields N loss events, then a fatal event and an error.

    Inputs:
      - None

    Outputs:
      - None
    """
    sleep = RecordingSleep()
    trace = TraceBuffer()
    settings = ResolutionSettings(packet_loss=100, max_retries=4, retry_base_delay_ms=10)
    with pytest.raises(PacketLossExhaustedError) as info:
        _run(PacketLossSimulator(rng=random.Random(1), sleep=sleep), settings, trace)

    assert info.value.attempts == 4
    assert info.value.kind == "packet_loss_exhausted"
    assert trace.stage_ids() == ["packet_loss"] * 4 + ["packet_loss_fatal"]
    # No backoff after the final attempt.
    assert sleep.calls == [0.01, 0.02, 0.04]
    assert trace.events()[3].payload["packetLoss"]["backoffMs"] == 0


@pytest.mark.parametrize("seed", range(25))
def test_seeded_runs_have_exactly_one_outcome(seed):
    """
    Brief: With 50% loss, each hop ends clean, recovered or fatal, within budget.

    Inputs:
      - seed: random seed

    Outputs:
      - None
    """
    trace = TraceBuffer()
    settings = ResolutionSettings(packet_loss=50, max_retries=3)
    sim = PacketLossSimulator(rng=random.Random(seed), sleep=RecordingSleep())
    try:
        result = _run(sim, settings, trace)
    except PacketLossExhaustedError:
        ids = trace.stage_ids()
        assert ids == ["packet_loss"] * 3 + ["packet_loss_fatal"]
        return
    ids = trace.stage_ids()
    assert ids.count("packet_loss") <= 2
    assert result.attempts_used <= 3
    if result.outcome == DELIVERY_CLEAN:
        assert ids == []
    else:
        assert ids[-1] == "packet_retry_success"
        assert "packet_loss_fatal" not in ids
