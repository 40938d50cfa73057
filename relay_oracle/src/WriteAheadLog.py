"""WriteAheadLog: durable record of batches applied to the price store.

Each batch is logged as a ``begin`` entry carrying the full batch, followed by
``commit`` once every write has been applied or ``abort`` if it was rolled
back. The file is JSON lines; every append is flushed and fsynced before the
caller proceeds.

On restart :meth:`committed_batches` yields only batches with a ``commit``
marker. A ``begin`` without a marker means the process died mid-batch; that
batch never reported success to the relayer and is discarded. An ``abort``
that follows a ``commit`` cancels it.

A torn final line (a crash mid-append) is dropped when the file is opened, so
later appends always start on a fresh line. :meth:`compact` replaces the whole
history with one checkpoint and bounds both the file and the in-memory copy.

.. code-block:: python

    >>> wal = WriteAheadLog("/var/lib/oracle/wal.jsonl")
    >>> batch_id = wal.begin([(asset_id, record)])
    >>> wal.commit(batch_id)
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Iterator, Sequence
from pathlib import Path

from .errors import InvalidInput
from .PriceRecord import PriceRecord

logger = logging.getLogger(__name__)

BatchEntries = list[tuple[bytes, PriceRecord]]


def _dump(entry: dict) -> str:
    return json.dumps(entry, separators=(",", ":")) + "\n"


class WriteAheadLog:
    """Append-only batch log, on disk or in memory.

    :ivar path: Log file path, or None for an in-memory log.
    """

    def __init__(self, path: str | os.PathLike | None = None) -> None:
        """Open (or create) the log.

        :param path: File path. None keeps the log in memory only.
        """
        self.path = Path(path) if path is not None else None
        self._lines: list[dict] = []
        self._lock = threading.Lock()
        self._next_batch_id = 1

        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.path.exists():
                self._lines, clean = self._read_file()
                if not clean:
                    self._rewrite(self._lines)
                    logger.warning(f"WAL {self.path}: rewritten after an interrupted append")

        for entry in self._lines:
            if "batch" in entry:
                self._next_batch_id = max(self._next_batch_id, int(entry["batch"]) + 1)

    def _read_file(self) -> tuple[list[dict], bool]:
        assert self.path is not None
        with open(self.path, "r") as file:
            text = file.read()

        entries = []
        clean = text == "" or text.endswith("\n")
        for line_no, line in enumerate(text.splitlines(), start=1):
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                # A torn final line is the expected shape of a crash mid-append.
                logger.warning(f"WAL {self.path}: skipping unreadable line {line_no}")
                clean = False
        return entries, clean

    def _rewrite(self, entries: list[dict]) -> None:
        assert self.path is not None
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as file:
            for entry in entries:
                file.write(_dump(entry))
            file.flush()
            os.fsync(file.fileno())
        os.replace(tmp_path, self.path)

    def _append(self, entry: dict) -> None:
        with self._lock:
            if self.path is not None:
                with open(self.path, "a") as file:
                    file.write(_dump(entry))
                    file.flush()
                    os.fsync(file.fileno())
            self._lines.append(entry)

    def begin(self, entries: Sequence[tuple[bytes, PriceRecord]]) -> int:
        """Log a staged batch before it is applied.

        :param entries: Ordered (asset_id, record) pairs.
        :returns: Batch id to pass to :meth:`commit` or :meth:`abort`.
        """
        with self._lock:
            batch_id = self._next_batch_id
            self._next_batch_id += 1
        self._append(
            {
                "op": "begin",
                "batch": batch_id,
                "entries": [
                    {"asset_id": asset_id.hex(), "record": record.to_dict()}
                    for asset_id, record in entries
                ],
            }
        )
        return batch_id

    def commit(self, batch_id: int) -> None:
        """Mark a batch as fully applied."""
        self._append({"op": "commit", "batch": batch_id})

    def abort(self, batch_id: int) -> None:
        """Mark a batch as rolled back."""
        self._append({"op": "abort", "batch": batch_id})

    def committed_batches(self) -> Iterator[tuple[int, BatchEntries]]:
        """Yield committed batches in commit order.

        :returns: Iterator of (batch_id, entries).
        :raises InvalidInput: If the log holds an unknown op or a committed
            batch holds a malformed entry.
        """
        with self._lock:
            lines = list(self._lines)

        pending: dict[int, list[dict]] = {}
        committed: dict[int, list[dict]] = {}
        for entry in lines:
            op = entry.get("op")
            batch_id = entry.get("batch")
            if op == "begin":
                pending[batch_id] = entry.get("entries", [])
            elif op == "commit":
                if batch_id in pending:
                    committed[batch_id] = pending.pop(batch_id)
            elif op == "abort":
                pending.pop(batch_id, None)
                committed.pop(batch_id, None)
            else:
                raise InvalidInput(f"Unknown WAL op {op!r}")

        for batch_id in pending:
            logger.warning(f"WAL: discarding uncommitted batch {batch_id}")

        for batch_id, items in committed.items():
            yield batch_id, [
                (bytes.fromhex(item["asset_id"]), PriceRecord.from_dict(item["record"]))
                for item in items
            ]

    def compact(self, records: dict[bytes, PriceRecord]) -> None:
        """Replace the log with one committed checkpoint of ``records``.

        :param records: Full current table, e.g. from ``PriceStore.snapshot()``.
        """
        with self._lock:
            batch_id = self._next_batch_id
            self._next_batch_id += 1
            checkpoint = [
                {
                    "op": "begin",
                    "batch": batch_id,
                    "entries": [
                        {"asset_id": asset_id.hex(), "record": record.to_dict()}
                        for asset_id, record in records.items()
                    ],
                },
                {"op": "commit", "batch": batch_id},
            ]
            if self.path is not None:
                self._rewrite(checkpoint)
            self._lines = checkpoint
        logger.info(f"WAL compacted to {len(records)} records")

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)
