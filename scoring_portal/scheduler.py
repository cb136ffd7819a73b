"""
Bounded worker pool for scoring jobs.

Each accepted submission spawns one worker thread. A worker holds one unit
of a bounded semaphore while it dequeues and processes a job, so at most
`limit` jobs run at once regardless of how many were submitted.
"""
import os
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import List, Mapping, Optional, Tuple

from shared.events import (
    job_queued_event, job_rejected_event, job_started_event, job_completed_event, ranking_updated_event
)
from shared.pubsub import EventPublisher, publish_if_enabled
from .availability_rater import AvailabilityRater, RatingError, Tier
from .benchmarker import Benchmarker, BenchmarkError
from .job_queue import AdmissionError, JobQueue, ScoringJob
from .result_store import JobResult, PersistenceError, ResultStore, STATUS_SUCCESS

logger = logging.getLogger(__name__)

SHUTTING_DOWN = "scoring is shutting down"
MAX_WORKERS_CEILING = 10


def worker_limit(ceiling: int) -> int:
    ceiling = max(1, min(ceiling, MAX_WORKERS_CEILING))
    return max(1, min(os.cpu_count() or 1, ceiling))


def combine_benchmarks(outcomes: List[Tuple[int, str]]) -> Tuple[int, str]:
    """
    Sum the scores of concurrent benchmark loops.

    The status is a success if any loop succeeded, otherwise the first failure.
    """
    score = sum(s for s, _ in outcomes)
    statuses = [status for _, status in outcomes]
    if STATUS_SUCCESS in statuses:
        return score, STATUS_SUCCESS
    return score, statuses[0]


class Scheduler:
    def __init__(
        self,
        queue: JobQueue,
        benchmarker: Benchmarker,
        rater: AvailabilityRater,
        store: ResultStore,
        required_labels: Mapping[str, str],
        app=None,
        publisher: Optional[EventPublisher] = None,
        benchmark_timeout: float = 60,
        max_workers: int = 2,
        benchmarkers_per_job: int = 4
    ):
        self.queue = queue
        self.benchmarker = benchmarker
        self.rater = rater
        self.store = store
        self.required_labels = dict(required_labels)
        self.app = app
        self.publisher = publisher
        self.benchmark_timeout = benchmark_timeout
        self.benchmarkers_per_job = max(benchmarkers_per_job, 1)
        self.limit = worker_limit(max_workers)

        self._sem = threading.BoundedSemaphore(self.limit)
        self._threads: List[threading.Thread] = []
        self._threads_lock = threading.Lock()
        self._accepting = True

    # ==================== Admission ====================

    def submit(self, participant_key: str, endpoint: str, project_id: str) -> ScoringJob:
        """Admit a job and spawn its worker. Raises AdmissionError."""
        if not self._accepting:
            publish_if_enabled(self.publisher, job_rejected_event(participant_key, SHUTTING_DOWN))
            raise AdmissionError(SHUTTING_DOWN, participant_key)

        try:
            job = self.queue.submit(participant_key, endpoint, project_id)
        except AdmissionError as e:
            publish_if_enabled(self.publisher, job_rejected_event(participant_key, e.reason))
            raise

        publish_if_enabled(self.publisher, job_queued_event(participant_key, endpoint, project_id))
        self._spawn_worker()
        return job

    def _spawn_worker(self):
        thread = threading.Thread(target=self.run_worker, name="scoring-worker", daemon=True)
        with self._threads_lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()

    def shutdown(self, timeout: Optional[float] = None):
        """Stop admitting jobs and wait for running workers."""
        self._accepting = False
        self.join(timeout)

    def join(self, timeout: Optional[float] = None):
        with self._threads_lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)

    # ==================== Worker ====================

    def run_worker(self):
        with self._sem:
            job = self.queue.dequeue()
            try:
                self.process(job)
            except Exception:
                logger.exception(f"Job for {job.participant_key} abandoned")
            finally:
                self.queue.release(job.participant_key)

    def process(self, job: ScoringJob) -> JobResult:
        key = job.participant_key
        old_state = self.queue.state_of(key)
        new_state = self.queue.transition(key, 'start')
        publish_if_enabled(self.publisher, job_started_event(key, old_state.value, new_state.value))

        self._reset_target(job.endpoint)

        # Rater and benchmark loops run side by side under one deadline
        with ThreadPoolExecutor(
            max_workers=1 + self.benchmarkers_per_job, thread_name_prefix=f"job-{key}"
        ) as executor:
            rating = executor.submit(self._rate, job.project_id)
            loops = [
                executor.submit(self._benchmark, job.endpoint)
                for _ in range(self.benchmarkers_per_job)
            ]
            functional_score, functional_status = combine_benchmarks([f.result() for f in loops])
            availability_tier, availability_status = rating.result()

        result = JobResult(
            participant_key=key,
            display_name=self.queue.directory.display_name(key),
            functional_score=functional_score,
            functional_status=functional_status,
            availability_tier=int(availability_tier),
            availability_status=availability_status,
        )

        ranking_score = self._save(result)
        if ranking_score is not None:
            publish_if_enabled(
                self.publisher,
                ranking_updated_event(key, result.display_name, ranking_score)
            )

        action = 'complete_with_errors' if result.has_errors else 'complete'
        state = self.queue.transition(key, action)
        publish_if_enabled(self.publisher, job_completed_event(key, state.value, result.to_dict()))

        logger.info(
            f"Userkey: {key} - BenchmarkScore: {result.functional_score}, "
            f"PlatformRate: {result.availability_tier}, Total: {result.total_score}"
        )
        return result

    def _reset_target(self, endpoint: str):
        try:
            self.benchmarker.reset(endpoint)
        except BenchmarkError as e:
            logger.warning(f"Reset of {endpoint} failed, scoring anyway: {e}")

    def _benchmark(self, endpoint: str) -> Tuple[int, str]:
        try:
            return self.benchmarker.run(endpoint, self.benchmark_timeout), STATUS_SUCCESS
        except BenchmarkError as e:
            return 0, str(e)
        except Exception as e:
            logger.exception(f"Benchmark of {endpoint} crashed")
            return 0, f"benchmark failed: {e}"

    def _rate(self, project_id: str) -> Tuple[Tier, str]:
        try:
            return self.rater.rate(project_id, self.required_labels), STATUS_SUCCESS
        except RatingError as e:
            return Tier.NONE, str(e)
        except Exception as e:
            logger.exception(f"Rating of project {project_id} crashed")
            return Tier.NONE, f"rating failed: {e}"

    def _save(self, result: JobResult) -> Optional[int]:
        """Persist the result; returns the ranking score, or None if storage failed."""
        try:
            if self.app is not None:
                with self.app.app_context():
                    return self.store.save(result)
            return self.store.save(result)
        except PersistenceError as e:
            logger.error(f"Failed to store result {result.to_dict()}: {e}")
            return None
