"""Trace context and step data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from viewer_bot.models import utcnow


@dataclass
class TraceStep:
    """One state reached by an interaction cycle."""

    stage: str
    inputs: dict[str, Any]
    outputs: dict[str, Any]
    decision: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    # Completion-specific fields (None for other stages)
    model: str | None = None
    prompt: list[dict[str, str]] | None = None
    raw_response: str | None = None
    token_usage: dict[str, int] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "stage": self.stage,
            "timestamp": self.timestamp.isoformat(),
            "inputs": self.inputs,
            "outputs": self.outputs,
            "decision": self.decision,
            "details": self.details,
            "model": self.model,
            "prompt": self.prompt,
            "raw_response": self.raw_response,
            "token_usage": self.token_usage,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TraceStep":
        """Deserialize from dictionary."""
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        elif timestamp is None:
            timestamp = utcnow()

        return cls(
            stage=data["stage"],
            timestamp=timestamp,
            inputs=data.get("inputs", {}),
            outputs=data.get("outputs", {}),
            decision=data.get("decision", ""),
            details=data.get("details", {}),
            model=data.get("model"),
            prompt=data.get("prompt"),
            raw_response=data.get("raw_response"),
            token_usage=data.get("token_usage"),
        )


@dataclass
class TraceContext:
    """Accumulates the steps of one interaction cycle."""

    broadcaster_id: str
    trigger_text: str
    source: str  # "twitch" | "transcript" | "tick"
    id: str = field(default_factory=lambda: str(uuid4()))
    started_at: datetime = field(default_factory=utcnow)
    steps: list[TraceStep] = field(default_factory=list)
    outcome: str = "received"
    final_result: str | None = None

    def add_step(
        self,
        stage: str,
        inputs: dict[str, Any],
        outputs: dict[str, Any],
        decision: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Add a non-LLM step to the trace."""
        self.steps.append(
            TraceStep(
                stage=stage,
                inputs=inputs,
                outputs=outputs,
                decision=decision,
                details=details or {},
            )
        )

    def add_llm_step(
        self,
        stage: str,
        inputs: dict[str, Any],
        outputs: dict[str, Any],
        decision: str,
        model: str,
        prompt: list[dict[str, str]],
        raw_response: str,
        token_usage: dict[str, int] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Add a completion step to the trace."""
        self.steps.append(
            TraceStep(
                stage=stage,
                inputs=inputs,
                outputs=outputs,
                decision=decision,
                details=details or {},
                model=model,
                prompt=prompt,
                raw_response=raw_response,
                token_usage=token_usage,
            )
        )

    @property
    def stages(self) -> list[str]:
        return [step.stage for step in self.steps]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "started_at": self.started_at.isoformat(),
            "broadcaster_id": self.broadcaster_id,
            "trigger_text": self.trigger_text,
            "source": self.source,
            "steps": [step.to_dict() for step in self.steps],
            "outcome": self.outcome,
            "final_result": self.final_result,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TraceContext":
        """Deserialize from dictionary."""
        started_at = data.get("started_at")
        if isinstance(started_at, str):
            started_at = datetime.fromisoformat(started_at)
        elif started_at is None:
            started_at = utcnow()

        ctx = cls(
            id=data["id"],
            started_at=started_at,
            broadcaster_id=data["broadcaster_id"],
            trigger_text=data.get("trigger_text", ""),
            source=data.get("source", ""),
            outcome=data.get("outcome", ""),
            final_result=data.get("final_result"),
        )
        ctx.steps = [TraceStep.from_dict(s) for s in data.get("steps", [])]
        return ctx
