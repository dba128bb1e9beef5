"""Human-readable output for a gocrash session.

Parameter summary before the run, one result line per worker after it.
"""

from typing import List, Optional

import click

from gocrash.session import Session, WorkerResult


def describe_save_policy(keep_success: bool) -> str:
    return "for all runs" if keep_success else "for failed runs only"


def describe_stop_policy(stop_after: Optional[int]) -> str:
    if stop_after is None:
        return "after any run fails"
    plural = "" if stop_after == 1 else "s"
    return f"after all threads do {stop_after} run{plural}"


def summary_lines(session: Session) -> List[str]:
    """Parameter summary, one setting per line."""
    return [
        f"using snapshot:  {session.source_snapshot}",
        f"working dataset: {session.working_area}",
        f"concurrency:     {session.concurrency}",
        f"save results:    {describe_save_policy(session.keep_success)}",
        f"stop:            {describe_stop_policy(session.stop_after)}",
    ]


def print_summary(session: Session) -> None:
    for line in summary_lines(session):
        click.echo(line)
    click.echo()


def format_worker_result(result: WorkerResult) -> str:
    """
    One-line result for a worker.

    Crashed workers get their own shape, with the try count when it is known.
    """
    if result.crashed:
        if result.ntries is None:
            return str(result.error)
        return f"{result.error} (after {result.ntries} tries)"
    if result.ok:
        outcome = "ok"
    else:
        outcome = f"attempt {result.failed_attempt}: {result.error}"
    return f"thread {result.worker}: {result.ntries} tries, result = {outcome}"
