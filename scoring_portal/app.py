import os
import logging

import redis
import requests
from flask import Flask, request, jsonify
from sqlalchemy.exc import SQLAlchemyError

from shared.pubsub import EventPublisher
from .config import config
from .models import db
from .user_directory import UserDirectory
from .product_catalog import ProductCatalog
from .job_queue import (
    JobQueue, AdmissionError,
    INVALID_ENDPOINT, INVALID_USERKEY, ALREADY_IN_QUEUE, QUEUE_FULL
)
from .benchmarker import Benchmarker
from .availability_rater import AvailabilityRater
from .inventory import AssetInventory
from .result_store import ResultStore
from .scheduler import Scheduler, SHUTTING_DOWN

logger = logging.getLogger(__name__)

ADMISSION_STATUS_CODES = {
    INVALID_ENDPOINT: 400,
    INVALID_USERKEY: 400,
    ALREADY_IN_QUEUE: 406,
    QUEUE_FULL: 503,
    SHUTTING_DOWN: 503,
}


def create_app(config_name: str = None, inventory=None, http_session: requests.Session = None,
               **overrides) -> Flask:
    """Application factory for the scoring portal."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)

    # Create tables
    with app.app_context():
        db.create_all()

    app.redis = None
    publisher = None
    if app.config.get('REDIS_URL'):
        publisher = EventPublisher.from_url(app.config['REDIS_URL'])
        app.redis = publisher.redis

    # Initialize services
    directory = UserDirectory.load(app.config['USERS_DATA_FILENAME'])
    catalog = ProductCatalog.load(app.config['IMAGE_HASHES_DATA_FILENAME'])

    job_queue = JobQueue(directory, capacity=app.config['QUEUE_CAPACITY'])
    benchmarker = Benchmarker(
        catalog,
        session=http_session,
        request_timeout=app.config['REQUEST_TIMEOUT_SECOND'],
        max_quantity=app.config['MAX_PRODUCT_QUANTITY']
    )
    rater = AvailabilityRater(
        inventory or AssetInventory(timeout=app.config['INVENTORY_TIMEOUT_SECOND'])
    )
    store = ResultStore(ranking_policy=app.config['RANKING_POLICY'])

    scheduler = Scheduler(
        job_queue,
        benchmarker,
        rater,
        store,
        required_labels=app.config['REQUIRED_ROLE_LABELS'],
        app=app,
        publisher=publisher,
        benchmark_timeout=app.config['BENCHMARK_TIMEOUT_SECOND'],
        max_workers=app.config['MAX_WORKERS'],
        benchmarkers_per_job=app.config['BENCHMARKERS_PER_JOB']
    )

    # Store services on app for access in routes
    app.directory = directory
    app.job_queue = job_queue
    app.result_store = store
    app.scheduler = scheduler
    app.publisher = publisher

    logger.info(f"Scoring portal ready: {scheduler.limit} workers, queue capacity {job_queue.capacity}")

    register_api_routes(app)

    return app


def register_api_routes(app: Flask):
    """Register API routes."""

    # ==================== Intake ====================

    @app.route('/benchmark', methods=['POST'])
    def api_submit_benchmark():
        """Accept a scoring request for a participant."""
        data = request.get_json(silent=True) or request.form

        userkey = (data.get('userkey') or '').strip()
        endpoint = (data.get('endpoint') or '').strip()
        project_id = (data.get('project_id') or '').strip()

        try:
            job = app.scheduler.submit(userkey, endpoint, project_id)
        except AdmissionError as e:
            return jsonify({'message': e.reason}), ADMISSION_STATUS_CODES.get(e.reason, 400)

        return jsonify({
            'message': 'accepted',
            'endpoint': job.endpoint,
            'userkey': job.participant_key,
            'submitted_at': job.submitted_at.isoformat()
        }), 202

    # ==================== Queue ====================

    @app.route('/api/v1/jobs', methods=['GET'])
    def api_list_jobs():
        """Jobs currently queued or running."""
        jobs = app.job_queue.in_flight()
        return jsonify({
            'jobs': jobs,
            'count': len(jobs),
            'workers': app.scheduler.limit
        })

    # ==================== Results ====================

    @app.route('/api/v1/results', methods=['GET'])
    def api_list_results():
        """Job history, newest first."""
        userkey = request.args.get('userkey')
        limit = request.args.get('limit', 50, type=int)

        rows = app.result_store.history(participant_key=userkey, limit=limit)
        return jsonify({
            'results': [r.to_dict() for r in rows],
            'count': len(rows),
            'limit': limit
        })

    @app.route('/api/v1/rankings', methods=['GET'])
    def api_list_rankings():
        """Leaderboard with one entry per participant."""
        rows = app.result_store.rankings()
        rankings = []
        for i, r in enumerate(rows):
            entry = r.to_dict()
            entry['rank'] = i + 1
            rankings.append(entry)

        return jsonify({
            'rankings': rankings,
            'policy': app.result_store.ranking_policy
        })

    # ==================== Events ====================

    @app.route('/api/v1/events', methods=['GET'])
    def api_recent_events():
        """Recent job lifecycle events, newest first."""
        count = request.args.get('count', 50, type=int)
        if app.publisher is None:
            return jsonify({'events': [], 'count': 0})

        try:
            events = app.publisher.get_recent_events(count)
        except redis.RedisError as e:
            logger.warning(f"Failed to read event log: {e}")
            return jsonify({'error': 'event log unavailable'}), 503

        return jsonify({
            'events': [e.to_dict() for e in events],
            'count': len(events)
        })

    # ==================== Health Check ====================

    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        if app.redis is None:
            redis_status = 'disabled'
        else:
            try:
                app.redis.ping()
                redis_status = 'connected'
            except redis.RedisError:
                redis_status = 'disconnected'

        try:
            db.session.execute(db.text('SELECT 1'))
            db_ok = True
        except SQLAlchemyError:
            db_ok = False

        healthy = db_ok and redis_status != 'disconnected'
        code = 200 if healthy else 503

        return jsonify({
            'status': 'healthy' if healthy else 'unhealthy',
            'redis': redis_status,
            'database': 'connected' if db_ok else 'disconnected',
            'queued': len(app.job_queue)
        }), code
