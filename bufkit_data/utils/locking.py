"""
Reader/writer lock guarding an archive within one process.

Readers share the lock; a writer holds it exclusively and may re-enter it
(including taking the read side) from the same thread.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Generator


class ReadWriteLock:
    """Shared/exclusive lock with a re-entrant writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer: int | None = None
        self._depth = 0

    @property
    def write_locked(self) -> bool:
        """True while some thread holds the write side."""
        with self._cond:
            return self._writer is not None

    @contextmanager
    def read(self) -> Generator[None, None, None]:
        """Hold the shared side."""
        me = threading.get_ident()
        with self._cond:
            nested = self._writer == me
            if nested:
                self._depth += 1
            else:
                while self._writer is not None:
                    self._cond.wait()
                self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                if nested:
                    self._depth -= 1
                else:
                    self._readers -= 1
                    if self._readers == 0:
                        self._cond.notify_all()

    @contextmanager
    def write(self) -> Generator[None, None, None]:
        """Hold the exclusive side."""
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._depth += 1
            else:
                while self._writer is not None or self._readers > 0:
                    self._cond.wait()
                self._writer = me
                self._depth = 1
        try:
            yield
        finally:
            with self._cond:
                self._depth -= 1
                if self._depth == 0:
                    self._writer = None
                    self._cond.notify_all()
