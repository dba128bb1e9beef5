"""CLI entrypoint for gocrash."""

import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv

from gocrash.config import Config, ConfigError, load_config
from gocrash.constants import DEFAULT_CONCURRENCY, EXIT_CONFIG, EXIT_FAILED
from gocrash.coordinator import run_session
from gocrash.lifecycle import LifecycleError, LifecycleManager
from gocrash.observe import print_summary
from gocrash.session import Session, new_session
from gocrash.storage import Storage, ZfsStorage
from gocrash.worker import TestCommand

# Load .env file on CLI startup
load_dotenv()

logger = logging.getLogger("gocrash")


def _configure_logging(config: Config, verbose: int) -> None:
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.getLevelName(config.log_level)
        if not isinstance(level, int):
            raise ConfigError(f"Unknown log level: {config.log_level}")
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def build_storage(config: Config) -> Storage:
    return ZfsStorage(zfs=config.zfs_command, privilege=config.privilege_command)


def install_stop_handlers(session: Session) -> dict:
    """Turn the first SIGINT/SIGTERM into a cooperative stop.

    Running test commands are not interrupted by us; workers stop after their
    current attempt. A second SIGINT gets the default behaviour.

    Returns:
        The previous handlers, for restore_signal_handlers()
    """

    def _handle(signum, frame):
        logger.warning("received signal %d, stopping after current attempts", signum)
        session.stop.set()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    previous = {
        signal.SIGINT: signal.signal(signal.SIGINT, _handle),
        signal.SIGTERM: signal.signal(signal.SIGTERM, _handle),
    }
    return previous


def restore_signal_handlers(previous: dict) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def _fail(message: str, code: int) -> None:
    click.echo(f"gocrash: {message}", err=True)
    raise SystemExit(code)


@click.command()
@click.version_option(package_name="gocrash")
@click.argument("snapshot")
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=DEFAULT_CONCURRENCY,
    show_default=True,
    help="How many concurrent threads run the test suite.",
)
@click.option(
    "--stop-after",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after each thread does this many runs (default: run until failure).",
)
@click.option(
    "--keep-success",
    is_flag=True,
    default=False,
    help="Keep datasets (and output) from successful test runs.",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Run file (.yaml/.json) with test_command, test_dir, env, privilege, zfs.",
)
@click.option("-v", "--verbose", count=True, help="More logging (-v info, -vv debug).")
def cli(
    snapshot: str,
    concurrency: int,
    stop_after: Optional[int],
    keep_success: bool,
    config_file: Optional[Path],
    verbose: int,
):
    """Run the test suite in a loop until it fails.

    SNAPSHOT is the ZFS snapshot ("pool/dataset@name") of a dataset containing
    the tree to test. Every run gets its own clone of it.
    """
    try:
        config = load_config(config_file)
        _configure_logging(config, verbose)
        session = new_session(
            snapshot,
            concurrency=concurrency,
            stop_after=stop_after,
            keep_success=keep_success,
        )
    except ConfigError as e:
        _fail(str(e), EXIT_CONFIG)

    print_summary(session)

    lifecycle = LifecycleManager(build_storage(config), session.working_area)
    test = TestCommand(
        argv=config.test_command,
        workdir=config.test_dir,
        env=config.test_env,
    )

    previous_handlers = install_stop_handlers(session)
    try:
        outcome = run_session(session, lifecycle, test)
    except LifecycleError as e:
        _fail(str(e), EXIT_FAILED)
    finally:
        restore_signal_handlers(previous_handlers)

    if not outcome.ok:
        _fail("test failed", outcome.exit_code)


if __name__ == "__main__":
    cli()
