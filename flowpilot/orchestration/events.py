from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    EXECUTION_START = "execution_start"
    STEP_BEGIN = "step_begin"
    STEP_RAW_RESULT = "step_raw_result"
    SUMMARY_CHUNK = "summary_chunk"
    STEP_COMPLETE = "step_complete"
    STEP_ERROR = "step_error"
    TASK_OBSERVATION_COMPLETE = "task_observation_complete"
    WORKFLOW_ADAPTED = "workflow_adapted"
    GENERATING_SUMMARY = "generating_summary"
    WORKFLOW_COMPLETE = "workflow_complete"
    TASK_COMPLETE = "task_complete"
    FINAL_RESULT = "final_result"
    TASK_CANCELLED = "task_cancelled"
    ERROR = "error"
    TASK_EXECUTION_COMPLETE = "task_execution_complete"


class EngineEvent(BaseModel):
    event: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    emitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def as_message(self) -> dict[str, Any]:
        return {"event": self.event, "data": self.data}


def make_event(event: EventType, **data: Any) -> EngineEvent:
    return EngineEvent(event=event.value, data=data)


__all__ = ["EngineEvent", "EventType", "make_event"]
