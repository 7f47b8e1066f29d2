"""State shared between a streaming audio file, its controller and its fetcher."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass

from .range_set import Range, RangeSet

# Minimum size of a block requested from the server in one request.
MINIMUM_DOWNLOAD_SIZE = 1024 * 16
# Amount of data requested when a file is first opened.
INITIAL_DOWNLOAD_SIZE = 1024 * 16
# Ping time (seconds) assumed before one has been measured.
INITIAL_PING_TIME_ESTIMATE = 0.5
# Measured ping times (seconds) are capped at this value.
MAXIMUM_ASSUMED_PING_TIME = 1.5
# Seconds of data that must be present before playback starts.
READ_AHEAD_BEFORE_PLAYBACK = 1.0
READ_AHEAD_BEFORE_PLAYBACK_ROUNDTRIPS = 2.0
# Seconds of data requested ahead of the read position during playback.
READ_AHEAD_DURING_PLAYBACK = 5.0
READ_AHEAD_DURING_PLAYBACK_ROUNDTRIPS = 10.0
PREFETCH_THRESHOLD_FACTOR = 4.0
FAST_PREFETCH_THRESHOLD_FACTOR = 1.5
MAX_PREFETCH_REQUESTS = 4
# Seconds to wait for download status updates.
DOWNLOAD_TIMEOUT = 1.0


class DownloadStrategy(enum.Enum):
    RANDOM_ACCESS = "random_access"
    STREAMING = "streaming"


class CommandKind(enum.Enum):
    FETCH = "fetch"
    RANDOM_ACCESS_MODE = "random_access_mode"
    STREAM_MODE = "stream_mode"
    CLOSE = "close"


@dataclass(frozen=True)
class StreamLoaderCommand:
    """A command for the stream loader; ``range_`` is set for fetches."""

    kind: CommandKind
    range_: Range | None = None


class AudioFileShared:
    """Download bookkeeping for one file.

    ``requested``, ``downloaded``, ``download_strategy`` and
    ``number_of_open_requests`` are guarded by ``cond``.
    """

    def __init__(self, file_id: bytes, file_size: int, stream_data_rate: int) -> None:
        self.file_id = file_id
        self.file_size = file_size
        self.stream_data_rate = stream_data_rate
        self.cond = threading.Condition(threading.RLock())
        self.requested = RangeSet()
        self.downloaded = RangeSet()
        # Random access until told otherwise.
        self.download_strategy = DownloadStrategy.RANDOM_ACCESS
        self.number_of_open_requests = 0
        self.ping_time_ms = 0
        self.read_position = 0

    def ping_time_seconds(self) -> float:
        return self.ping_time_ms / 1000.0

    def wait_for_change(self, timeout: float | None = DOWNLOAD_TIMEOUT) -> bool:
        """Wait until notified or until ``timeout`` passes; True if notified."""
        with self.cond:
            return self.cond.wait(timeout)

    def notify_all(self) -> None:
        with self.cond:
            self.cond.notify_all()