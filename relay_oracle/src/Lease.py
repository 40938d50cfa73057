"""Lease: heartbeat lease giving one relayer instance the right to submit.

An instance renews the lease every cycle. A standby can only take it over
once the holder's lease has expired, i.e. the holder missed heartbeats for
longer than the TTL. Every change of holder increments a fencing token so a
stale primary that wakes up can tell it has been replaced.

``MemoryLease`` coordinates instances in one process (tests, embedded use);
``FileLease`` coordinates processes sharing a filesystem through an
exclusive ``flock`` on a sidecar lock file.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class LeaseState:
    """Current lease holder.

    :ivar holder: Instance id holding the lease, or None.
    :ivar expires_at: Wall-clock time the lease lapses.
    :ivar token: Fencing token, bumped on every change of holder.
    """

    holder: str | None = None
    expires_at: float = 0.0
    token: int = 0


class Lease(ABC):
    """Lease backend with acquire/renew/release semantics.

    :ivar ttl: Seconds a heartbeat keeps the lease.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.time) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock = clock

    @abstractmethod
    @contextmanager
    def _guard(self) -> Iterator[LeaseState]:
        """Yield the state under exclusive access and persist changes."""
        pass

    def try_acquire(self, holder: str) -> int | None:
        """Acquire or renew the lease for ``holder``.

        :param holder: Instance id.
        :returns: Fencing token if ``holder`` now holds the lease, else None.
        """
        now = self._clock()
        with self._guard() as state:
            if state.holder == holder:
                state.expires_at = now + self.ttl
                return state.token
            if state.holder is None or now >= state.expires_at:
                previous = state.holder
                state.holder = holder
                state.expires_at = now + self.ttl
                state.token += 1
                if previous is not None:
                    logger.warning(
                        f"Lease taken over by {holder} from unresponsive {previous} "
                        f"(token {state.token})"
                    )
                else:
                    logger.info(f"Lease acquired by {holder} (token {state.token})")
                return state.token
            return None

    def release(self, holder: str) -> None:
        """Give up the lease if ``holder`` has it."""
        with self._guard() as state:
            if state.holder == holder:
                state.holder = None
                state.expires_at = 0.0
                logger.info(f"Lease released by {holder}")

    def holds(self, holder: str, token: int | None) -> bool:
        """True if ``holder`` still has an unexpired lease under ``token``.

        Unlike :meth:`try_acquire` this never renews or takes the lease.
        """
        if token is None:
            return False
        state = self.current()
        return state.holder == holder and state.token == token and self._clock() < state.expires_at

    def current(self) -> LeaseState:
        """Snapshot of the lease state."""
        with self._guard() as state:
            return LeaseState(**asdict(state))


class MemoryLease(Lease):
    """Lease shared between objects in one process."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.time) -> None:
        super().__init__(ttl, clock)
        self._state = LeaseState()
        self._lock = threading.Lock()

    @contextmanager
    def _guard(self) -> Iterator[LeaseState]:
        with self._lock:
            yield self._state


class FileLease(Lease):
    """Lease stored as JSON next to a ``.lock`` file.

    :ivar path: JSON state file.
    """

    def __init__(
        self,
        path: str | os.PathLike,
        ttl: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(ttl, clock)
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock_path = self.path.with_suffix(self.path.suffix + ".lock")

    def _read(self) -> LeaseState:
        if not self.path.exists():
            return LeaseState()
        try:
            with open(self.path, "r") as file:
                return LeaseState(**json.load(file))
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Lease file {self.path} unreadable ({e}), treating as free")
            return LeaseState()

    def _write(self, state: LeaseState) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as file:
            json.dump(asdict(state), file)
            file.flush()
            os.fsync(file.fileno())
        os.replace(tmp_path, self.path)

    @contextmanager
    def _guard(self) -> Iterator[LeaseState]:
        with open(self._lock_path, "a") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                state = self._read()
                before = asdict(state)
                yield state
                if asdict(state) != before:
                    self._write(state)
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
