# coding=utf-8
"""
Per-sample marker locks.

A lock is the file <lock_dir>/<sample>.lock. It is created with an exclusive
create (O_CREAT | O_EXCL through filelock.SoftFileLock), so two runners racing
on the same sample cannot both succeed, and it is deleted on release. The lock
is advisory: it only excludes runners that go through this module.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from filelock import SoftFileLock, Timeout


class SampleLocked(Exception):
    """Another runner already holds the lock for this sample."""


class SampleLock:
    """
    Non-blocking, create-if-absent lock for one sample.

    Usage:
        with SampleLock(lock_dir, sample):
            ...   # lock file exists here, removed on exit

    Raises SampleLocked if the marker already exists, OSError if it cannot be
    created for another reason (e.g. read-only lock directory).
    """

    def __init__(self, lock_dir: str | Path, sample: str):
        self.sample = sample
        self.path = Path(lock_dir) / f"{sample}.lock"
        self._lock: Optional[SoftFileLock] = None

    def exists(self) -> bool:
        return self.path.exists()

    def acquire(self) -> None:
        os.makedirs(self.path.parent, exist_ok=True)
        lock = SoftFileLock(str(self.path), timeout=0)
        try:
            lock.acquire()
        except Timeout as e:
            raise SampleLocked(f"{self.sample} is locked: {self.path}") from e
        self._lock = lock

    def release(self) -> None:
        if self._lock is not None:
            self._lock.release()
            self._lock = None

    def __enter__(self) -> "SampleLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
