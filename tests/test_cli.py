"""End-to-end tests of the gocrash command with a directory-backed storage."""

import json
import logging
import shlex
import signal
import sys

import pytest
from click.testing import CliRunner

from gocrash import cli as cli_module
from gocrash.cli import cli, install_stop_handlers, restore_signal_handlers


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path, storage):
    for name in ("GOCRASH_ZFS", "GOCRASH_PRIVILEGE", "GOCRASH_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GOCRASH_TEST_DIR", "work")
    monkeypatch.setattr(cli_module, "build_storage", lambda config: storage)

    # the CLI configures root logging on the runner's temporary stderr
    handlers = list(logging.root.handlers)
    yield
    logging.root.handlers[:] = handlers


def use_test_script(monkeypatch, code):
    monkeypatch.setenv("GOCRASH_TEST_COMMAND", shlex.join([sys.executable, "-c", code]))


def invoke(*args):
    return CliRunner().invoke(cli, list(args))


class TestUsage:

    def test_bad_snapshot_is_config_error(self):
        result = invoke("tank/go")
        assert result.exit_code == 2
        assert "missing '@'" in result.output

    def test_zero_concurrency_rejected(self):
        result = invoke("--concurrency", "0", "tank/go@base")
        assert result.exit_code == 2

    def test_zero_stop_after_rejected(self):
        result = invoke("--stop-after", "0", "tank/go@base")
        assert result.exit_code == 2


class TestRun:

    def test_success(self, monkeypatch, storage):
        use_test_script(monkeypatch, "print('ok')")

        result = invoke("--concurrency", "2", "--stop-after", "2", "tank/go@base")

        assert result.exit_code == 0, result.output
        assert "using snapshot:  tank/go@base" in result.output
        assert "stop:            after all threads do 2 runs" in result.output
        assert "thread 0: 2 tries, result = ok" in result.output
        assert "thread 1: 2 tries, result = ok" in result.output
        assert len(storage.cloned) == 4
        assert sorted(storage.destroyed) == sorted(storage.cloned)

    def test_keep_success(self, monkeypatch, storage):
        use_test_script(monkeypatch, "print('ok')")

        result = invoke("--concurrency", "1", "--stop-after", "1", "--keep-success", "tank/go@base")

        assert result.exit_code == 0, result.output
        assert "save results:    for all runs" in result.output
        assert storage.destroyed == []

    def test_failure_exits_nonzero(self, monkeypatch):
        use_test_script(monkeypatch, "import os, sys; sys.exit(1 if os.environ['GOCRASH_ATTEMPT'] == '1' else 0)")

        result = invoke("--concurrency", "1", "tank/go@base")

        assert result.exit_code == 1
        assert "thread 0: 1 tries, result = attempt 1: command failed" in result.output
        assert "gocrash: test failed" in result.output

    def test_working_area_failure(self, monkeypatch, storage):
        use_test_script(monkeypatch, "print('ok')")
        storage.fail_create = True

        result = invoke("tank/go@base")

        assert result.exit_code == 1
        assert "gocrash: creating working area" in result.output
        assert storage.cloned == []

    def test_run_file(self, monkeypatch, tmp_path, storage):
        code = "import os; print(os.environ['GOTRACEBACK'])"
        run_file = tmp_path / "run.json"
        run_file.write_text(json.dumps({
            "test_command": [sys.executable, "-c", code],
            "env": {"GOTRACEBACK": "crash"},
        }))

        result = invoke("--keep-success", "--stop-after", "1", "--concurrency", "1", "--config", str(run_file), "tank/go@base")

        assert result.exit_code == 0, result.output
        (name,) = storage.cloned
        assert (storage.mountpoint(name) / "test_run_stdout").read_text() == "crash\n"

    def test_signal_handlers_restored(self, monkeypatch):
        use_test_script(monkeypatch, "print('ok')")
        before = signal.getsignal(signal.SIGINT)

        invoke("--stop-after", "1", "tank/go@base")

        assert signal.getsignal(signal.SIGINT) is before

    def test_worker_system_exit_fails_the_run(self, monkeypatch, storage):
        use_test_script(monkeypatch, "print('ok')")
        real_clone = storage.clone

        def exiting_clone(snapshot, name):
            if "/thread-1-" in name:
                raise SystemExit(0)
            real_clone(snapshot, name)

        storage.clone = exiting_clone

        result = invoke("--concurrency", "2", "--stop-after", "1", "tank/go@base")

        assert result.exit_code == 1
        assert "thread 0: " in result.output
        assert "thread 1 panicked: SystemExit(0)" in result.output
        assert "gocrash: test failed" in result.output


class TestStopHandlers:
    """The first SIGINT/SIGTERM stops workers after their current attempt."""

    def test_first_sigint_sets_stop_second_interrupts(self, make_session):
        session = make_session()
        before = signal.getsignal(signal.SIGINT)
        previous = install_stop_handlers(session)
        try:
            signal.getsignal(signal.SIGINT)(signal.SIGINT, None)

            assert session.stop.is_set()
            assert signal.getsignal(signal.SIGINT) is signal.default_int_handler
            with pytest.raises(KeyboardInterrupt):
                signal.getsignal(signal.SIGINT)(signal.SIGINT, None)
        finally:
            restore_signal_handlers(previous)
        assert signal.getsignal(signal.SIGINT) is before

    def test_sigterm_sets_stop(self, make_session):
        session = make_session()
        previous = install_stop_handlers(session)
        try:
            signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
        finally:
            restore_signal_handlers(previous)
        assert session.stop.is_set()

    def test_sigterm_during_run_lets_attempt_finish(self, monkeypatch, storage):
        # the attempt signals gocrash, then keeps running for a while
        use_test_script(monkeypatch, "\n".join([
            "import os, signal, time",
            "os.kill(os.getppid(), signal.SIGTERM)",
            "time.sleep(0.5)",
            "print('finished')",
        ]))

        result = invoke("--concurrency", "1", "--stop-after", "5", "--keep-success", "tank/go@base")

        assert result.exit_code == 0, result.output
        assert "thread 0: 1 tries, result = ok" in result.output
        (name,) = storage.cloned
        assert (storage.mountpoint(name) / "test_run_stdout").read_text() == "finished\n"
