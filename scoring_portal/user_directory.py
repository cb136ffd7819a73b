import json
import logging
from dataclasses import dataclass
from typing import Dict, Iterable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Participant:
    key: str
    display_name: str
    team: str = ''
    region: str = ''
    sub_region: str = ''
    role: str = ''


class UserDirectory:
    """
    Read-only mapping of participant key to participant.

    Loaded once at startup from a JSON blob of the form
    ``{"users": [{"key": ..., "display_name": ..., "team": ...}, ...]}``.
    """

    def __init__(self, participants: Iterable[Participant] = ()):
        self._participants: Dict[str, Participant] = {}
        for p in participants:
            if p.key in self._participants:
                raise ValueError(f"Duplicate participant key: {p.key}")
            self._participants[p.key] = p

    @classmethod
    def from_dicts(cls, rows: Iterable[dict]) -> "UserDirectory":
        participants = []
        for row in rows:
            participants.append(Participant(
                key=row['key'],
                display_name=row['display_name'],
                team=row.get('team', ''),
                region=row.get('region', ''),
                sub_region=row.get('sub_region', ''),
                role=row.get('role', ''),
            ))
        return cls(participants)

    @classmethod
    def load(cls, filename: str) -> "UserDirectory":
        with open(filename, 'r', encoding='utf-8') as f:
            blob = json.load(f)
        directory = cls.from_dicts(blob.get('users', []))
        logger.info(f"Loaded {len(directory)} participants from {filename}")
        return directory

    def __len__(self) -> int:
        return len(self._participants)

    def __contains__(self, key: str) -> bool:
        return key in self._participants

    def display_name(self, key: str) -> str:
        participant = self._participants.get(key)
        return participant.display_name if participant else ''
