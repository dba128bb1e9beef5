"""Top-level orchestration of a gocrash session.

Workflow: create working area -> start N workers -> join in index order -> aggregate
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List

import click

from gocrash.constants import EXIT_FAILED, EXIT_OK
from gocrash.lifecycle import LifecycleManager
from gocrash.observe import format_worker_result
from gocrash.session import Session, WorkerResult
from gocrash.worker import TestCommand, WorkerCrashed, run_worker

logger = logging.getLogger(__name__)


@dataclass
class SessionOutcome:
    """Aggregated results of every worker, in worker index order."""
    results: List[WorkerResult]

    @property
    def failures(self) -> List[WorkerResult]:
        return [r for r in self.results if not r.ok]

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def exit_code(self) -> int:
        return EXIT_OK if self.ok else EXIT_FAILED


def _join(future, worker: int) -> WorkerResult:
    try:
        return future.result()
    except KeyboardInterrupt:
        raise
    except BaseException as e:
        logger.error("thread %d terminated abnormally", worker, exc_info=e)
        crash = e if isinstance(e, WorkerCrashed) else WorkerCrashed(worker, e)
        return WorkerResult(
            worker=worker,
            ntries=crash.ntries,
            error=crash,
            crashed=True,
        )


def run_session(
    session: Session,
    lifecycle: LifecycleManager,
    test: TestCommand,
) -> SessionOutcome:
    """
    Run the whole session to completion.

    Args:
        session: Parameters and stop signal
        lifecycle: Volume manager bound to session.working_area
        test: Test suite to run in every attempt

    Returns:
        SessionOutcome with exactly session.concurrency results

    Raises:
        LifecycleError: If the working area cannot be created (no worker starts)
    """
    lifecycle.create_working_area()
    click.echo(f'created zfs dataset "{session.working_area}"')

    results = []
    with ThreadPoolExecutor(
        max_workers=session.concurrency,
        thread_name_prefix="gocrash-worker",
    ) as executor:
        futures = [
            executor.submit(run_worker, session, lifecycle, test, worker)
            for worker in range(session.concurrency)
        ]

        # Wait for each thread to finish and print the results
        for worker, future in enumerate(futures):
            result = _join(future, worker)
            click.echo(format_worker_result(result))
            results.append(result)

    return SessionOutcome(results=results)
