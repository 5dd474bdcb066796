"""Progress reporting utilities."""

import queue
import sys
import threading
from collections import namedtuple
from typing import Iterator
from tqdm import tqdm


Update = namedtuple('Update', ['total', 'complete'])


class ProgressChannel:
    """Single-producer/single-consumer feed of transfer updates.

    The producer calls ``send`` while blobs move and ``close`` once it is
    done. Closing is idempotent: only the first call enqueues the end
    marker, later calls return False. Updates sent after close are dropped.
    """

    _END = object()

    def __init__(self):
        self._queue = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, update: Update):
        with self._lock:
            if self._closed:
                return
            self._queue.put(update)

    def close(self) -> bool:
        """Signal completion; returns False if already closed."""
        with self._lock:
            if self._closed:
                return False
            self._closed = True
            self._queue.put(self._END)
            return True

    def __iter__(self) -> Iterator[Update]:
        while True:
            item = self._queue.get()
            if item is self._END:
                return
            yield item


class TransferProgress:
    """Byte-level progress bar fed from a ProgressChannel."""

    def __init__(self, description: str = "Transferring", disable: bool = False):
        self.description = description
        self.disable = disable
        self.progress_bar = None
        self.last_update = None

    def start(self):
        """Start progress reporting."""
        self.progress_bar = tqdm(
            total=None,
            desc=self.description,
            unit='B',
            unit_scale=True,
            unit_divisor=1024,
            file=sys.stderr,
            disable=self.disable
        )

    def update(self, update: Update):
        """Apply one cumulative update to the bar."""
        self.last_update = update
        if not self.progress_bar:
            return
        if update.total > 0 and self.progress_bar.total != update.total:
            self.progress_bar.total = update.total
        delta = update.complete - self.progress_bar.n
        if delta:
            self.progress_bar.update(delta)
        else:
            self.progress_bar.refresh()

    def consume(self, channel: ProgressChannel):
        """Drain the channel until the producer closes it."""
        for update in channel:
            self.update(update)

    def finish(self):
        """Finish progress reporting."""
        if self.progress_bar:
            self.progress_bar.close()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.finish()


class ProgressReporter:
    """Progress reporting for per-item operations."""

    def __init__(self, total: int, description: str = "Processing", unit: str = "items",
                 disable: bool = False):
        self.total = total
        self.description = description
        self.unit = unit
        self.disable = disable
        self.progress_bar = None
        self.processed = 0
        self.errors = 0

    def start(self):
        """Start progress reporting."""
        self.progress_bar = tqdm(
            total=self.total,
            desc=self.description,
            unit=self.unit,
            file=sys.stderr,
            disable=self.disable
        )

    def update(self, success: bool):
        """Update progress with one item result."""
        if success:
            self.processed += 1
        else:
            self.errors += 1

        if self.progress_bar:
            self.progress_bar.set_postfix({
                'processed': self.processed,
                'errors': self.errors
            })
            self.progress_bar.update(1)

    def finish(self):
        """Finish progress reporting."""
        if self.progress_bar:
            self.progress_bar.close()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.finish()
