#!/usr/bin/env python3
"""
Entry point for the Contest Scoring Portal.

Usage:
    python run.py                    # Run the scoring portal

Environment Variables:
    FLASK_ENV: development or production (default: development)
    PORT: Port to run on (default: 8080)
    USERS_DATA_FILENAME: Participant directory (default: users.json)
    IMAGE_HASHES_DATA_FILENAME: Known-good image hashes (default: image_hashes.json)
    SHUTDOWN_TIMEOUT_SECOND: How long to wait for running jobs on exit (default: 90)
    GOOGLE_APPLICATION_CREDENTIALS: Service account used for Cloud Asset Inventory
"""
import atexit
import os
import logging
import signal
import sys

logger = logging.getLogger(__name__)


def install_shutdown_hooks(app):
    """Drain the scheduler when the process exits or receives SIGTERM."""
    atexit.register(app.scheduler.shutdown, app.config['SHUTDOWN_TIMEOUT_SECOND'])

    def handle_sigterm(signum, frame):
        logger.info("SIGTERM received, waiting for running jobs")
        sys.exit(0)

    signal.signal(signal.SIGTERM, handle_sigterm)


def run_portal():
    """Run the scoring portal."""
    from scoring_portal.app import create_app

    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    app = create_app()
    install_shutdown_hooks(app)
    port = int(os.getenv('PORT', 8080))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'

    print(f"Starting Scoring Portal on port {port}...")
    # One scheduler per process, so no reloader
    app.run(host='0.0.0.0', port=port, debug=debug, use_reloader=False, threaded=True)


if __name__ == '__main__':
    run_portal()
