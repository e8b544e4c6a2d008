"""Tests for interaction traces and their storage."""

from datetime import datetime, timedelta, timezone

import pytest

from viewer_bot.tracing import TraceContext, TraceStep, TraceStore


class TestTraceStep:
    """Tests for TraceStep dataclass."""

    def test_create_basic_step(self):
        """Test creating a basic trace step."""
        step = TraceStep(
            stage="gate_checked",
            inputs={"cooldown_seconds": 6},
            outputs={"elapsed_seconds": 10.0},
            decision="passed",
        )
        assert step.stage == "gate_checked"
        assert step.timestamp is not None
        assert step.model is None
        assert step.prompt is None
        assert step.token_usage is None

    def test_from_dict(self):
        """Test deserialization from dict."""
        data = {
            "stage": "completion_requested",
            "timestamp": "2026-03-01T20:00:00+00:00",
            "inputs": {"messages": 4},
            "outputs": {"text": "hey chat"},
            "decision": "completed",
            "details": {},
            "model": "claude-haiku-4-5-20251001",
            "prompt": [{"role": "system", "content": "be nice"}],
            "raw_response": "hey chat",
            "token_usage": {"input_tokens": 100, "output_tokens": 5},
        }
        step = TraceStep.from_dict(data)
        assert step.model == "claude-haiku-4-5-20251001"
        assert step.prompt == [{"role": "system", "content": "be nice"}]
        assert step.timestamp == datetime(2026, 3, 1, 20, tzinfo=timezone.utc)


class TestTraceContext:
    """Tests for TraceContext."""

    def test_add_steps(self):
        ctx = TraceContext(broadcaster_id="100", trigger_text="hi", source="twitch")
        ctx.add_step("received", {"text": "hi"}, {}, "accepted")
        ctx.add_llm_step(
            stage="completion_requested",
            inputs={},
            outputs={"text": "hello"},
            decision="completed",
            model="claude-haiku-4-5-20251001",
            prompt=[{"role": "user", "content": "alice: hi"}],
            raw_response="hello",
        )
        assert ctx.stages == ["received", "completion_requested"]
        assert ctx.steps[1].raw_response == "hello"

    def test_to_dict_and_back(self):
        """Test round-trip serialization."""
        ctx = TraceContext(broadcaster_id="100", trigger_text="hi", source="tick")
        ctx.add_step("gate_checked", {"a": 1}, {"b": 2}, "cooldown")
        ctx.outcome = "skipped"
        ctx.final_result = "cooldown"

        restored = TraceContext.from_dict(ctx.to_dict())

        assert restored.id == ctx.id
        assert restored.started_at == ctx.started_at
        assert restored.outcome == "skipped"
        assert restored.final_result == "cooldown"
        assert restored.stages == ["gate_checked"]


def make_trace(minutes: int, broadcaster_id: str = "100", outcome: str = "recorded") -> TraceContext:
    started = datetime(2026, 3, 1, 20, tzinfo=timezone.utc) + timedelta(minutes=minutes)
    return TraceContext(
        broadcaster_id=broadcaster_id,
        trigger_text=f"message {minutes}",
        source="twitch",
        started_at=started,
        outcome=outcome,
    )


class TestTraceStore:
    """Tests for TraceStore."""

    @pytest.fixture
    def store(self) -> TraceStore:
        store = TraceStore(":memory:")
        yield store
        store.close()

    def test_save_and_get(self, store: TraceStore):
        trace = make_trace(0)
        trace.add_step("sent", {}, {"reply": "hi"}, "sent")
        store.save(trace)

        loaded = store.get(trace.id)
        assert loaded is not None
        assert loaded.trigger_text == "message 0"
        assert loaded.stages == ["sent"]

    def test_get_missing(self, store: TraceStore):
        assert store.get("nope") is None

    def test_save_replaces(self, store: TraceStore):
        trace = make_trace(0, outcome="received")
        store.save(trace)
        trace.outcome = "recorded"
        store.save(trace)

        summaries = store.recent()
        assert len(summaries) == 1
        assert summaries[0].outcome == "recorded"

    def test_recent_newest_first_with_filters(self, store: TraceStore):
        store.save(make_trace(0))
        store.save(make_trace(1, outcome="skipped"))
        store.save(make_trace(2, broadcaster_id="200"))

        assert [s.trigger_text for s in store.recent()] == ["message 2", "message 1", "message 0"]
        assert [s.trigger_text for s in store.recent(limit=1)] == ["message 2"]
        assert [s.trigger_text for s in store.recent(broadcaster_id="100")] == ["message 1", "message 0"]
        assert [s.trigger_text for s in store.recent(outcome="skipped")] == ["message 1"]

    def test_prune(self, store: TraceStore):
        for minute in range(5):
            store.save(make_trace(minute))

        assert store.prune(keep_last=2) == 3
        assert [s.trigger_text for s in store.recent()] == ["message 4", "message 3"]

    def test_prune_below_limit(self, store: TraceStore):
        store.save(make_trace(0))
        assert store.prune(keep_last=10) == 0
