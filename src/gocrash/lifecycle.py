"""Creation, naming and disposal of the per-attempt clone volumes.

Layout for one session:

    <dataset>@<snap>                                source snapshot
    <dataset>/gocrash-<millis>                      working area
    <dataset>/gocrash-<millis>/thread-<w>-run-<n>   one clone per attempt

Attempt volumes are named from (worker, attempt) so concurrent workers never
need to coordinate to pick a name.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Generator, Set, Tuple

from gocrash.config import ConfigError
from gocrash.constants import WORKING_AREA_PREFIX
from gocrash.process import CommandError
from gocrash.storage import Storage

logger = logging.getLogger(__name__)


class LifecycleError(Exception):
    """Raised when a volume cannot be created, resolved or destroyed."""
    pass


@dataclass(frozen=True)
class AttemptVolume:
    """A cloned volume owned by exactly one attempt."""
    name: str
    mountpoint: Path
    worker: int
    attempt: int


def parse_snapshot(snapshot: str) -> Tuple[str, str]:
    """Split "dataset@name" into its dataset and snapshot parts."""
    dataset, sep, name = snapshot.partition("@")
    if not sep:
        raise ConfigError("bad syntax for snapshot name (missing '@')")
    if not dataset or not name:
        raise ConfigError(f"bad syntax for snapshot name: {snapshot!r}")
    return dataset, name


def working_area_name(dataset: str, timestamp_ms: int) -> str:
    return f"{dataset}/{WORKING_AREA_PREFIX}-{timestamp_ms}"


def attempt_volume_name(working_area: str, worker: int, attempt: int) -> str:
    return f"{working_area}/thread-{worker}-run-{attempt}"


class LifecycleManager:
    """Owns the working area and every attempt volume created under it.

    Safe to share between worker threads: the only shared state is the set of
    names handed out so far, which is guarded by a lock.
    """

    def __init__(self, storage: Storage, working_area: str):
        self.storage = storage
        self.working_area = working_area
        self._lock = threading.Lock()
        self._allocated: Set[str] = set()
        self._working_area_created = False

    def create_working_area(self) -> None:
        """
        Create the session's top-level dataset.

        Must be called once, before any worker starts.

        Raises:
            LifecycleError: If it was already created or storage refuses
        """
        if self._working_area_created:
            raise LifecycleError(f"working area {self.working_area} already created")
        try:
            self.storage.create_dataset(self.working_area)
        except CommandError as e:
            raise LifecycleError(f"creating working area {self.working_area}: {e}") from e
        self._working_area_created = True
        logger.info("created working area %s", self.working_area)

    def _claim(self, name: str) -> None:
        with self._lock:
            if name in self._allocated:
                raise LifecycleError(f"volume {name} was already allocated in this session")
            self._allocated.add(name)

    def allocate_attempt_volume(
        self,
        source_snapshot: str,
        worker: int,
        attempt: int,
    ) -> AttemptVolume:
        """
        Clone the source snapshot into a fresh volume for one attempt.

        Args:
            source_snapshot: Snapshot to clone
            worker: Index of the worker making the attempt
            attempt: Worker-local attempt sequence number

        Returns:
            The new volume and where it is mounted

        Raises:
            LifecycleError: If the name was already used, or clone/mountpoint fails
        """
        name = attempt_volume_name(self.working_area, worker, attempt)
        self._claim(name)

        try:
            self.storage.clone(source_snapshot, name)
        except CommandError as e:
            raise LifecycleError(f"cloning {source_snapshot} to {name}: {e}") from e

        try:
            mountpoint = self.storage.mountpoint(name)
        except CommandError as e:
            raise LifecycleError(f"resolving mountpoint of {name}: {e}") from e

        logger.debug("allocated %s at %s", name, mountpoint)
        return AttemptVolume(name=name, mountpoint=mountpoint, worker=worker, attempt=attempt)

    def release_attempt_volume(self, volume: AttemptVolume, should_destroy: bool) -> None:
        """
        Destroy the volume, or leave it in place for inspection.

        Raises:
            LifecycleError: If destroying fails
        """
        if not should_destroy:
            logger.info("keeping %s", volume.name)
            return
        try:
            self.storage.destroy(volume.name)
        except CommandError as e:
            raise LifecycleError(f"destroying {volume.name}: {e}") from e
        logger.debug("destroyed %s", volume.name)

    @contextmanager
    def attempt_volume(
        self,
        source_snapshot: str,
        worker: int,
        attempt: int,
        keep_success: bool,
    ) -> Generator[AttemptVolume, None, None]:
        """
        Scoped allocation of an attempt volume.

        On normal exit the volume is destroyed unless `keep_success` is set.
        If the body raises, the volume is always kept as evidence and the
        exception propagates unchanged.
        """
        volume = self.allocate_attempt_volume(source_snapshot, worker, attempt)
        try:
            yield volume
        except BaseException:
            logger.warning(
                "thread %d: attempt %d failed, keeping %s (%s)",
                worker, attempt, volume.name, volume.mountpoint,
            )
            raise
        self.release_attempt_volume(volume, should_destroy=not keep_success)
