"""Body of one worker thread: clone, run the test suite, repeat."""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import click

from gocrash.constants import (
    DEFAULT_TEST_COMMAND,
    DEFAULT_TEST_DIR,
    STDERR_SINK,
    STDOUT_SINK,
)
from gocrash.lifecycle import AttemptVolume, LifecycleError, LifecycleManager
from gocrash.process import CommandError, run_command
from gocrash.session import Session, WorkerResult

logger = logging.getLogger(__name__)


class WorkerCrashed(Exception):
    """A worker thread died on an unexpected exception."""

    def __init__(self, worker: int, cause: BaseException, ntries: Optional[int] = None):
        super().__init__(f"thread {worker} panicked: {cause!r}")
        self.worker = worker
        self.cause = cause
        # attempts completed before the crash (None if unknown)
        self.ntries = ntries


@dataclass(frozen=True)
class TestCommand:
    """The test suite invocation run inside every attempt volume."""

    __test__ = False  # not a pytest test class

    argv: List[str] = field(default_factory=lambda: list(DEFAULT_TEST_COMMAND))
    # working directory, relative to the volume mountpoint
    workdir: str = DEFAULT_TEST_DIR
    # extra environment variables on top of the inherited environment
    env: Dict[str, str] = field(default_factory=dict)

    def environment(self, volume: AttemptVolume) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(self.env)
        env.update({
            "GOCRASH_WORKER": str(volume.worker),
            "GOCRASH_ATTEMPT": str(volume.attempt),
            "GOCRASH_VOLUME": volume.name,
            "GOCRASH_MOUNTPOINT": str(volume.mountpoint),
        })
        return env


def run_attempt(test: TestCommand, volume: AttemptVolume) -> None:
    """
    Run the test suite once inside `volume`.

    stdout and stderr go to fresh sink files at the volume mountpoint.

    Raises:
        LifecycleError: If a sink cannot be created (including when it already exists)
        CommandError: If the test suite cannot be started or fails
    """
    stdout_path = volume.mountpoint / STDOUT_SINK
    stderr_path = volume.mountpoint / STDERR_SINK
    click.echo(
        f"{datetime.now(timezone.utc)}: thread {volume.worker}: "
        f"attempt {volume.attempt}: start (see {stdout_path})"
    )

    try:
        stdout_file = open(stdout_path, "xb")
    except OSError as e:
        raise LifecycleError(f"creating {stdout_path}: {e}") from e
    with stdout_file:
        try:
            stderr_file = open(stderr_path, "xb")
        except OSError as e:
            raise LifecycleError(f"creating {stderr_path}: {e}") from e
        with stderr_file:
            run_command(
                test.argv,
                cwd=volume.mountpoint / test.workdir,
                env=test.environment(volume),
                stdout=stdout_file,
                stderr=stderr_file,
            )


def run_worker(
    session: Session,
    lifecycle: LifecycleManager,
    test: TestCommand,
    worker: int,
) -> WorkerResult:
    """
    Run attempts until the stop signal is raised, the attempt limit is
    reached, or an attempt fails.

    A failed attempt raises the stop signal for every worker and ends this
    one. Unexpected exceptions, SystemExit included, raise the stop signal
    too and reach the coordinator as WorkerCrashed.
    """
    ntries = 0
    attempt = 0
    try:
        while not session.stop.is_set():
            with lifecycle.attempt_volume(
                session.source_snapshot,
                worker,
                attempt,
                keep_success=session.keep_success,
            ) as volume:
                run_attempt(test, volume)
                # Counted before release: a failed destroy doesn't undo the test result
                ntries += 1
            attempt += 1

            if session.stop_after is not None and ntries >= session.stop_after:
                break
    except (CommandError, LifecycleError, OSError) as e:
        session.stop.set()
        logger.info("thread %d: attempt %d failed, stopping all threads", worker, attempt)
        return WorkerResult(worker=worker, ntries=ntries, error=e, failed_attempt=attempt)
    except KeyboardInterrupt:
        session.stop.set()
        raise
    except BaseException as e:
        session.stop.set()
        raise WorkerCrashed(worker, e, ntries=ntries) from e

    return WorkerResult(worker=worker, ntries=ntries)
