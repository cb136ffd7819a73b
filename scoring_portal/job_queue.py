import ipaddress
import queue
import socket
import threading
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
from urllib.parse import urlparse

from shared.state_machine import JobStateMachine, JobState
from .user_directory import UserDirectory

logger = logging.getLogger(__name__)

INVALID_ENDPOINT = "invalid endpoint"
INVALID_USERKEY = "invalid userkey"
ALREADY_IN_QUEUE = "already in the queue"
QUEUE_FULL = "queue is full"


class AdmissionError(Exception):
    """Raised synchronously to the submitter; the job never enters the queue."""

    def __init__(self, reason: str, participant_key: str = None):
        self.reason = reason
        self.participant_key = participant_key
        super().__init__(reason)


@dataclass(frozen=True)
class ScoringJob:
    participant_key: str
    endpoint: str
    project_id: str
    submitted_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            'participant_key': self.participant_key,
            'endpoint': self.endpoint,
            'project_id': self.project_id,
            'submitted_at': self.submitted_at.isoformat(),
        }


def _is_local_host(hostname: str) -> bool:
    hostname = hostname.lower().rstrip('.')
    if hostname == 'localhost' or hostname.endswith('.localhost'):
        return True
    address = _parse_address(hostname)
    if address is None:
        return False
    if address.version == 6 and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return address.is_loopback or address.is_unspecified


def _parse_address(hostname: str):
    try:
        return ipaddress.ip_address(hostname)
    except ValueError:
        pass
    # Shorthand IPv4 forms the resolver also accepts: 127.1, 2130706433, 0x7f000001
    try:
        return ipaddress.IPv4Address(socket.inet_aton(hostname))
    except OSError:
        return None


def is_valid_endpoint(endpoint: str) -> bool:
    """Absolute http(s) URL that does not point at the local machine."""
    if not endpoint:
        return False
    try:
        parsed = urlparse(endpoint)
        hostname = parsed.hostname
    except ValueError:
        return False
    if parsed.scheme not in ('http', 'https') or not hostname:
        return False
    return not _is_local_host(hostname)


class JobQueue:
    """
    Bounded FIFO of pending scoring jobs plus the in-flight marker set.

    The marker for a participant is set before its job is pushed and is
    cleared only by the worker that processed the job, so a participant
    never has more than one job queued or running.
    """

    def __init__(self, directory: UserDirectory, capacity: int = 0):
        self.directory = directory
        self.capacity = capacity if capacity > 0 else max(len(directory), 1)
        self._queue: "queue.Queue[ScoringJob]" = queue.Queue(maxsize=self.capacity)
        self._lock = threading.Lock()
        self._in_flight: Dict[str, tuple] = {}

    def submit(self, participant_key: str, endpoint: str, project_id: str) -> ScoringJob:
        """Admit a job or raise AdmissionError."""
        if not is_valid_endpoint(endpoint):
            raise AdmissionError(INVALID_ENDPOINT, participant_key)

        if participant_key not in self.directory:
            raise AdmissionError(INVALID_USERKEY, participant_key)

        job = ScoringJob(
            participant_key=participant_key,
            endpoint=endpoint,
            project_id=project_id or '',
        )

        with self._lock:
            if participant_key in self._in_flight:
                raise AdmissionError(ALREADY_IN_QUEUE, participant_key)

            self._in_flight[participant_key] = (job, JobStateMachine())
            try:
                self._queue.put_nowait(job)
            except queue.Full:
                del self._in_flight[participant_key]
                raise AdmissionError(QUEUE_FULL, participant_key)

        logger.info(f"Queued job for {participant_key} ({endpoint})")
        return job

    def dequeue(self, timeout: Optional[float] = None) -> ScoringJob:
        """Block until a job is available. Raises queue.Empty on timeout."""
        return self._queue.get(timeout=timeout)

    def release(self, participant_key: str) -> bool:
        """Clear the in-flight marker so the participant may submit again."""
        with self._lock:
            entry = self._in_flight.pop(participant_key, None)
        if entry is None:
            return False
        if not entry[1].is_terminal:
            logger.warning(f"Released job for {participant_key} in state {entry[1].state.value}")
        return True

    def transition(self, participant_key: str, action: str) -> JobState:
        with self._lock:
            entry = self._in_flight.get(participant_key)
            if entry is None:
                raise KeyError(f"No job in flight for {participant_key}")
            return entry[1].transition(action)

    def state_of(self, participant_key: str) -> Optional[JobState]:
        with self._lock:
            entry = self._in_flight.get(participant_key)
            return entry[1].state if entry else None

    def in_flight(self) -> List[dict]:
        """Queued and running jobs, oldest submission first."""
        with self._lock:
            entries = list(self._in_flight.values())

        entries.sort(key=lambda e: e[0].submitted_at)
        return [
            {
                'display_name': self.directory.display_name(job.participant_key),
                'state': sm.state.value,
                'started_at': job.submitted_at.isoformat(),
            }
            for job, sm in entries
        ]

    def __len__(self) -> int:
        return self._queue.qsize()
