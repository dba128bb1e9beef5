"""Shared fixtures: a directory-backed stand-in for ZFS."""

import shutil
import sys
import threading
from pathlib import Path

import pytest

from gocrash.lifecycle import LifecycleManager
from gocrash.process import CommandFailed
from gocrash.session import new_session
from gocrash.storage import Storage
from gocrash.worker import TestCommand


SNAPSHOT = "tank/go@base"
TIMESTAMP_MS = 1700000000000


class DirectoryStorage(Storage):
    """Datasets are directories under `root`; clones are full copies."""

    def __init__(self, root: Path, snapshots: dict):
        self.root = root
        self.snapshots = snapshots
        self.created = []
        self.cloned = []
        self.destroyed = []
        self.fail_create = False
        self.fail_destroy = False
        self._lock = threading.Lock()

    def _path(self, name: str) -> Path:
        return self.root / name

    def _fail(self, op: str, name: str, why: str):
        raise CommandFailed(f"zfs {op} {name}", exit_code=1, signal=None, stderr=why)

    def create_dataset(self, name):
        if self.fail_create:
            self._fail("create", name, "permission denied")
        path = self._path(name)
        if path.exists():
            self._fail("create", name, "dataset already exists")
        path.mkdir(parents=True)
        with self._lock:
            self.created.append(name)

    def clone(self, snapshot, name):
        if snapshot not in self.snapshots:
            self._fail("clone", name, f"could not find snapshot {snapshot}")
        path = self._path(name)
        if path.exists():
            self._fail("clone", name, "dataset already exists")
        shutil.copytree(self.snapshots[snapshot], path)
        with self._lock:
            self.cloned.append(name)

    def mountpoint(self, name):
        return self._path(name)

    def destroy(self, name):
        if self.fail_destroy:
            self._fail("destroy", name, "dataset is busy")
        shutil.rmtree(self._path(name))
        with self._lock:
            self.destroyed.append(name)


@pytest.fixture
def source_tree(tmp_path):
    tree = tmp_path / "snapshot"
    (tree / "work").mkdir(parents=True)
    (tree / "work" / "marker.txt").write_text("pristine\n")
    return tree


@pytest.fixture
def storage(tmp_path, source_tree):
    return DirectoryStorage(tmp_path / "pool", {SNAPSHOT: source_tree})


@pytest.fixture
def make_session():
    def _make(concurrency=1, stop_after=None, keep_success=False):
        return new_session(
            SNAPSHOT,
            concurrency=concurrency,
            stop_after=stop_after,
            keep_success=keep_success,
            timestamp_ms=TIMESTAMP_MS,
        )
    return _make


@pytest.fixture
def make_lifecycle(storage):
    def _make(session, create=True):
        lifecycle = LifecycleManager(storage, session.working_area)
        if create:
            lifecycle.create_working_area()
        return lifecycle
    return _make


def _python_test(code: str) -> TestCommand:
    """A test command running `code` with the current interpreter in work/."""
    return TestCommand(argv=[sys.executable, "-c", code], workdir="work")


# Fails with exit code 1 on one (worker, attempt); prints which attempt it is
FAIL_ON_SCRIPT = """
import os, sys
worker = int(os.environ["GOCRASH_WORKER"])
attempt = int(os.environ["GOCRASH_ATTEMPT"])
print("worker", worker, "attempt", attempt)
if (worker, attempt) == ({worker}, {attempt}):
    print("simulated failure", file=sys.stderr)
    sys.exit(1)
"""


def _fail_on(worker: int, attempt: int) -> TestCommand:
    return _python_test(FAIL_ON_SCRIPT.format(worker=worker, attempt=attempt))


@pytest.fixture
def python_test():
    return _python_test


@pytest.fixture
def fail_on():
    return _fail_on
