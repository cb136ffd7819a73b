from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Union
import json


class EventType(str, Enum):
    # Admission
    JOB_QUEUED = "job.queued"
    JOB_REJECTED = "job.rejected"

    # Execution
    JOB_STARTED = "job.started"
    JOB_COMPLETED = "job.completed"

    # Leaderboard
    RANKING_UPDATED = "ranking.updated"


def _utc_timestamp() -> str:
    return datetime.utcnow().isoformat() + "Z"


def parse_event_type(value: str) -> Union[EventType, str]:
    """Known types become EventType; anything else is kept as the raw string."""
    try:
        return EventType(value)
    except ValueError:
        return value


@dataclass(frozen=True)
class Event:
    """A job lifecycle notification about one participant."""
    type: Union[EventType, str]
    participant_key: str
    data: dict = field(default_factory=dict)
    timestamp: str = field(default_factory=_utc_timestamp)

    @property
    def type_name(self) -> str:
        return self.type.value if isinstance(self.type, EventType) else self.type

    @property
    def participant_channel(self) -> str:
        return f"participant:{self.participant_key}:events"

    def to_dict(self) -> dict:
        return {
            "type": self.type_name,
            "participant_key": self.participant_key,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        extra = {"timestamp": data["timestamp"]} if data.get("timestamp") else {}
        return cls(
            type=parse_event_type(data["type"]),
            participant_key=data["participant_key"],
            data=data.get("data") or {},
            **extra
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls.from_dict(json.loads(json_str))


def job_queued_event(participant_key: str, endpoint: str, project_id: str) -> Event:
    return Event(
        type=EventType.JOB_QUEUED,
        participant_key=participant_key,
        data={
            "endpoint": endpoint,
            "project_id": project_id
        }
    )


def job_started_event(participant_key: str, from_state: str, to_state: str) -> Event:
    return Event(
        type=EventType.JOB_STARTED,
        participant_key=participant_key,
        data={
            "from_state": from_state,
            "to_state": to_state
        }
    )


def job_completed_event(participant_key: str, state: str, result: dict) -> Event:
    return Event(
        type=EventType.JOB_COMPLETED,
        participant_key=participant_key,
        data={
            "state": state,
            "result": result
        }
    )


def job_rejected_event(participant_key: str, reason: str) -> Event:
    return Event(
        type=EventType.JOB_REJECTED,
        participant_key=participant_key,
        data={"reason": reason}
    )


def ranking_updated_event(participant_key: str, display_name: str, score: int) -> Event:
    return Event(
        type=EventType.RANKING_UPDATED,
        participant_key=participant_key,
        data={
            "display_name": display_name,
            "score": score
        }
    )
