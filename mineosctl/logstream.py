"""
Cancellable console log subscriptions.

A subscription reads one server's log stream on a daemon thread and hands
entries to the consumer through a queue. Each subscription carries a
generation number; consumers compare it against the subscription they
currently hold to drop entries from streams they have already replaced.
"""

import queue
import threading
from typing import Iterator, Optional

from .client import ApiError, LogEntry, LogSource
from .config import ConfigError
from .credentials import CredentialStoreError
from .retry import ApiSession
from .utils import get_logger


POLL_INTERVAL = 0.2

_END = object()


class _Failure:
    def __init__(self, error: Exception):
        self.error = error


class LogSubscription:
    """One open console stream for one server and source."""

    def __init__(
        self,
        generation: int,
        server: str,
        source: LogSource,
        session: ApiSession,
        poll_interval: float = POLL_INTERVAL
    ):
        self.generation = generation
        self.server = server
        self.source = source
        self.session = session
        self.poll_interval = poll_interval
        self.logger = get_logger()

        self._queue: "queue.Queue" = queue.Queue()
        self._cancelled = threading.Event()
        self._finished = False
        self._lock = threading.Lock()
        self._stream = None
        self._thread = threading.Thread(
            target=self._read,
            name=f"mineos-logs-{server}-{generation}",
            daemon=True
        )

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def start(self) -> "LogSubscription":
        self._thread.start()
        return self

    def _read(self) -> None:
        stream = None
        try:
            client, stream = self.session.with_retry(
                lambda c: (c, c.open_console_stream(self.server, self.source))
            )
            with self._lock:
                if self.cancelled:
                    return
                self._stream = stream

            for entry in client.iter_console_logs(stream, self.source):
                if self.cancelled:
                    return
                self._queue.put(entry)
        except (ApiError, CredentialStoreError, ConfigError) as e:
            if not self.cancelled:
                self._queue.put(_Failure(e))
        finally:
            with self._lock:
                self._stream = None
            self._close(stream)
            self._queue.put(_END)

    def _close(self, stream) -> None:
        if stream is None:
            return
        try:
            stream.close()
        except (OSError, ValueError) as e:
            self.logger.debug(f"Closing log stream for {self.server}: {e}")

    def cancel(self) -> None:
        """
        Stop delivering entries. Idempotent and never blocks.

        The connection is interrupted, not closed; the reader thread notices,
        closes it and exits. Anything it produces meanwhile is discarded.
        """
        if self.cancelled:
            return
        self._cancelled.set()
        with self._lock:
            if self._stream is not None:
                self._stream.interrupt()
        self.logger.debug(f"Cancelled log stream {self.generation} for {self.server}")

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the reader thread; True once it has exited."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def next_entry(self) -> Optional[LogEntry]:
        """
        Block until the next entry arrives.

        Returns:
            The next entry, or None once the stream has ended or been cancelled

        Raises:
            ApiError: If the stream failed (raised once; later calls return None)
        """
        while True:
            if self.cancelled or self._finished:
                return None
            try:
                item = self._queue.get(timeout=self.poll_interval)
            except queue.Empty:
                continue

            if self.cancelled:
                return None
            if item is _END:
                self._finished = True
                return None
            if isinstance(item, _Failure):
                self._finished = True
                error = item.error
                if isinstance(error, ApiError):
                    raise error
                raise ApiError(str(error)) from error
            return item

    def __iter__(self) -> Iterator[LogEntry]:
        while True:
            entry = self.next_entry()
            if entry is None:
                return
            yield entry


class LogStreamer:
    """Opens log subscriptions with increasing generation numbers."""

    def __init__(self, session: ApiSession, poll_interval: float = POLL_INTERVAL):
        self.session = session
        self.poll_interval = poll_interval
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    def open(self, server: str, source: LogSource = LogSource.COMBINED) -> LogSubscription:
        """
        Start streaming logs for a server.

        Raises:
            ApiError: If no server name is given
        """
        if not (server or "").strip():
            raise ApiError("server name is required")
        with self._lock:
            self._generation += 1
            generation = self._generation
        subscription = LogSubscription(
            generation, server, source, self.session, poll_interval=self.poll_interval
        )
        return subscription.start()
