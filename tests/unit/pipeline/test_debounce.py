"""Tests for the quiet-window Debouncer (driven by a fake clock)."""

from __future__ import annotations

import pytest

from tracepulse.pipeline.debounce import DebounceState, Debouncer


class Recorder:
    def __init__(self):
        self.batches: list[set[str]] = []

    def __call__(self, paths):
        self.batches.append(set(paths))


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def debouncer(recorder, fake_clock):
    return Debouncer(recorder, quiet_ms=500, clock=fake_clock)


class TestDebouncer:
    def test_idle_tick_does_nothing(self, debouncer, recorder):
        assert debouncer.state is DebounceState.IDLE
        assert debouncer.tick() is False
        assert recorder.batches == []

    def test_fires_after_quiet_window(self, debouncer, recorder, fake_clock):
        debouncer.notify({"/s/a.jsonl"})
        assert debouncer.state is DebounceState.PENDING
        fake_clock.advance(499)
        assert debouncer.tick() is False
        fake_clock.advance(1)
        assert debouncer.tick() is True
        assert recorder.batches == [{"/s/a.jsonl"}]
        assert debouncer.state is DebounceState.IDLE
        assert debouncer.deadline is None

    def test_burst_coalesced(self, debouncer, recorder, fake_clock):
        """Each notify extends the window; one firing carries every path."""
        for name in ("a", "b", "c"):
            debouncer.notify({f"/s/{name}.jsonl"})
            fake_clock.advance(300)
            assert debouncer.tick() is False
        fake_clock.advance(200)
        assert debouncer.tick() is True
        assert recorder.batches == [{"/s/a.jsonl", "/s/b.jsonl", "/s/c.jsonl"}]

    def test_notify_while_firing_rearms(self, fake_clock):
        batches = []
        holder = {}

        def handler(paths):
            batches.append(set(paths))
            if len(batches) == 1:
                holder["debouncer"].notify({"/s/late.jsonl"})

        debouncer = Debouncer(handler, quiet_ms=100, clock=fake_clock)
        holder["debouncer"] = debouncer
        debouncer.notify({"/s/a.jsonl"})
        fake_clock.advance(100)
        assert debouncer.tick() is True
        assert debouncer.state is DebounceState.PENDING

        assert debouncer.tick() is False
        fake_clock.advance(100)
        assert debouncer.tick() is True
        assert batches == [{"/s/a.jsonl"}, {"/s/late.jsonl"}]
        assert debouncer.state is DebounceState.IDLE

    def test_handler_error_returns_to_idle(self, fake_clock):
        def handler(paths):
            raise RuntimeError("ingest exploded")

        debouncer = Debouncer(handler, quiet_ms=10, clock=fake_clock)
        debouncer.notify()
        fake_clock.advance(10)
        assert debouncer.tick() is True
        assert debouncer.state is DebounceState.IDLE

    def test_cancel(self, debouncer, recorder, fake_clock):
        debouncer.notify({"/s/a.jsonl"})
        debouncer.cancel()
        fake_clock.advance(1_000)
        assert debouncer.tick() is False
        assert recorder.batches == []
