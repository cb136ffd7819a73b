"""
Unit tests for the portal entry point.
"""
import signal

import pytest

import run


class TestShutdownHooks:
    """Tests for install_shutdown_hooks."""

    def test_scheduler_drained_at_exit(self, app, mocker):
        register = mocker.patch('run.atexit.register')
        mocker.patch('run.signal.signal')

        run.install_shutdown_hooks(app)

        register.assert_called_once_with(app.scheduler.shutdown, app.config['SHUTDOWN_TIMEOUT_SECOND'])

    def test_sigterm_exits_cleanly(self, app, mocker):
        mocker.patch('run.atexit.register')
        install = mocker.patch('run.signal.signal')

        run.install_shutdown_hooks(app)

        signum, handler = install.call_args.args
        assert signum == signal.SIGTERM
        with pytest.raises(SystemExit) as exc_info:
            handler(signal.SIGTERM, None)
        assert exc_info.value.code == 0

    def test_atexit_hook_stops_admission(self, app, mocker):
        register = mocker.patch('run.atexit.register')
        mocker.patch('run.signal.signal')

        run.install_shutdown_hooks(app)
        hook, timeout = register.call_args.args
        hook(timeout)

        assert not app.scheduler._accepting


class TestRunPortal:
    """Tests for run_portal."""

    def test_hooks_installed_before_serving(self, mocker, monkeypatch):
        monkeypatch.setenv('PORT', '9090')
        app = mocker.MagicMock()
        mocker.patch('scoring_portal.app.create_app', return_value=app)
        mocker.patch('run.logging.basicConfig')
        install = mocker.patch('run.install_shutdown_hooks')

        run.run_portal()

        install.assert_called_once_with(app)
        app.run.assert_called_once()
        assert app.run.call_args.kwargs['port'] == 9090
        assert app.run.call_args.kwargs['use_reloader'] is False
