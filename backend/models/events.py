import json
import time
from enum import Enum
from typing import Any, Dict
from pydantic import BaseModel, Field

class EventType(str, Enum):
    status = "status"
    file_complete = "file_complete"
    complete = "complete"
    error = "error"
    warning = "warning"

class ProgressEvent(BaseModel):
    event: EventType
    message: str
    progress: int                    # 0–100
    session_id: str | None = None
    job_id: str | None = None
    code: str | None = None          # distinguishes e.g. "timeout" from "job_failed"
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))

    def to_sse(self) -> str:
        payload = {"event": self.event.value, **self.model_dump(mode="json", exclude={"event", "data"}, exclude_none=True), **self.data}
        return f"data: {json.dumps(payload)}\n\n"
