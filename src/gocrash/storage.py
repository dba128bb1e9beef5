"""Copy-on-write storage backends.

The runner only needs four primitives from the storage subsystem: create an
empty dataset, clone a snapshot, find where a dataset is mounted, destroy a
dataset. ZFS provides all of them through its CLI.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from gocrash.constants import DEFAULT_PRIVILEGE_COMMAND, DEFAULT_ZFS_COMMAND
from gocrash.process import run_command


class Storage(ABC):
    """Abstract interface for snapshot/clone storage."""

    @abstractmethod
    def create_dataset(self, name: str) -> None:
        """Create a new, empty dataset called `name`."""
        pass

    @abstractmethod
    def clone(self, snapshot: str, name: str) -> None:
        """
        Create a writable clone of `snapshot` called `name`.

        Must fail if `name` already exists.
        """
        pass

    @abstractmethod
    def mountpoint(self, name: str) -> Path:
        """Return the filesystem path where dataset `name` is mounted."""
        pass

    @abstractmethod
    def destroy(self, name: str) -> None:
        """Irreversibly remove dataset `name` and its data."""
        pass


class ZfsStorage(Storage):
    """ZFS storage driven through the `zfs` command.

    Mutating operations run under a privilege wrapper (`pfexec` on illumos);
    pass an empty wrapper when already running with the needed privileges.
    """

    def __init__(
        self,
        zfs: str = DEFAULT_ZFS_COMMAND,
        privilege: Optional[Sequence[str]] = None,
        run: Callable[..., str] = run_command,
    ):
        self.zfs = zfs
        self.privilege = list(DEFAULT_PRIVILEGE_COMMAND if privilege is None else privilege)
        self._run = run

    def _privileged(self, *args: str) -> List[str]:
        return [*self.privilege, self.zfs, *args]

    def create_dataset(self, name: str) -> None:
        self._run(self._privileged("create", name))

    def clone(self, snapshot: str, name: str) -> None:
        self._run(self._privileged("clone", snapshot, name))

    def mountpoint(self, name: str) -> Path:
        output = self._run([self.zfs, "list", "-H", "-omountpoint", name])
        return Path(output.strip())

    def destroy(self, name: str) -> None:
        self._run(self._privileged("destroy", name))
