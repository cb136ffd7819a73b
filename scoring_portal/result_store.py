import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .models import db, JobHistory, Ranking

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "Success"

RANKING_POLICIES = ('latest', 'best')


class PersistenceError(Exception):
    pass


@dataclass(frozen=True)
class JobResult:
    participant_key: str
    display_name: str
    functional_score: int = 0
    functional_status: str = STATUS_SUCCESS
    availability_tier: int = 0
    availability_status: str = STATUS_SUCCESS
    executed_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def total_score(self) -> int:
        return self.functional_score * int(self.availability_tier)

    @property
    def has_errors(self) -> bool:
        return (self.functional_status != STATUS_SUCCESS
                or self.availability_status != STATUS_SUCCESS)

    def to_dict(self) -> dict:
        return {
            'participant_key': self.participant_key,
            'display_name': self.display_name,
            'functional_score': self.functional_score,
            'functional_status': self.functional_status,
            'availability_tier': int(self.availability_tier),
            'availability_status': self.availability_status,
            'total_score': self.total_score,
            'executed_at': self.executed_at.isoformat(),
        }


class ResultStore:
    """
    Appends job history rows and keeps one ranking row per participant.

    Must be used inside an application context.
    """

    def __init__(self, ranking_policy: str = 'latest'):
        if ranking_policy not in RANKING_POLICIES:
            raise ValueError(f"Unknown ranking policy: {ranking_policy}")
        self.ranking_policy = ranking_policy

    def save(self, result: JobResult) -> int:
        """
        Insert the history row and upsert the ranking in one transaction.

        Returns the participant's ranking score after the update.
        """
        try:
            row = JobHistory(
                userkey=result.participant_key,
                display_name=result.display_name,
                bench_score=result.functional_score,
                bench_result_msg=result.functional_status,
                platform_rate=int(result.availability_tier),
                platform_result_msg=result.availability_status,
                total_score=result.total_score,
                executed_at=result.executed_at,
            )
            db.session.add(row)
            ranking = self._upsert_ranking(result)
            db.session.commit()
            return ranking.score
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceError(f"failed to write the result of {result.participant_key}: {e}") from e

    def _upsert_ranking(self, result: JobResult) -> Ranking:
        ranking = Ranking.query.filter_by(display_name=result.display_name).first()
        if ranking is None:
            ranking = Ranking(
                display_name=result.display_name,
                score=result.total_score,
                executed_at=result.executed_at,
            )
            db.session.add(ranking)
            return ranking

        if self.ranking_policy == 'best' and result.total_score < ranking.score:
            return ranking

        ranking.score = result.total_score
        ranking.executed_at = result.executed_at
        return ranking

    def history(self, participant_key: Optional[str] = None, limit: int = 50) -> List[JobHistory]:
        query = JobHistory.query
        if participant_key:
            query = query.filter_by(userkey=participant_key)
        return query.order_by(JobHistory.executed_at.desc(), JobHistory.id.desc()).limit(limit).all()

    def rankings(self) -> List[Ranking]:
        return Ranking.query.order_by(Ranking.score.desc(), Ranking.executed_at.asc()).all()
