"""Session state shared by the coordinator and its workers."""

import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from gocrash.config import ConfigError
from gocrash.lifecycle import parse_snapshot, working_area_name


class StopSignal:
    """One-way broadcast flag telling workers not to start new attempts.

    Once set it stays set; it cannot be cleared.
    """

    def __init__(self):
        self._event = threading.Event()

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class Session:
    """Immutable parameters of one run, plus its stop signal."""

    # snapshot cloned for every attempt ("pool/dataset@snap")
    source_snapshot: str
    # dataset containing the snapshot; the working area is created under it
    dataset: str
    concurrency: int
    # attempts per worker (None: until something fails)
    stop_after: Optional[int]
    # keep volumes of successful attempts
    keep_success: bool
    # session-unique parent dataset of all attempt volumes
    working_area: str
    stop: StopSignal = field(default_factory=StopSignal, compare=False)


@dataclass
class WorkerResult:
    """Final state of one worker."""

    worker: int
    # attempts whose test command succeeded
    ntries: Optional[int] = 0
    # terminal error (None when the worker stopped normally)
    error: Optional[BaseException] = None
    # attempt number that produced `error`
    failed_attempt: Optional[int] = None
    # the worker died on an unexpected fault rather than a classified failure
    crashed: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def new_session(
    source_snapshot: str,
    concurrency: int,
    stop_after: Optional[int] = None,
    keep_success: bool = False,
    timestamp_ms: Optional[int] = None,
) -> Session:
    """
    Build a Session with a working area name unique to this moment.

    Raises:
        ConfigError: If the snapshot name is malformed or the counts are invalid
    """
    dataset, _ = parse_snapshot(source_snapshot)
    if concurrency < 1:
        raise ConfigError(f"concurrency must be at least 1 (got {concurrency})")
    if stop_after is not None and stop_after < 1:
        raise ConfigError(f"stop-after must be at least 1 (got {stop_after})")

    if timestamp_ms is None:
        timestamp_ms = time.time_ns() // 1_000_000

    return Session(
        source_snapshot=source_snapshot,
        dataset=dataset,
        concurrency=concurrency,
        stop_after=stop_after,
        keep_success=keep_success,
        working_area=working_area_name(dataset, timestamp_ms),
    )
