"""Background fetching of file ranges over a session's data channels.

The session object is expected to provide:

* ``channel()`` returning a manager with ``allocate() -> (channel_id, channel)``
  and ``get_download_rate_estimate() -> int`` (bytes per second);
* ``send_packet(command, payload)``;
* ``spawn(function, *args)`` which runs ``function(*args)`` in the background.

Channels have ``split() -> (headers, data)``, where ``data`` is an iterable of
byte chunks that may raise if the channel fails.
"""

from __future__ import annotations

import logging
import queue
import struct
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Iterable

from .range_set import Range, RangeSet
from .shared import (
    FAST_PREFETCH_THRESHOLD_FACTOR,
    MAX_PREFETCH_REQUESTS,
    MAXIMUM_ASSUMED_PING_TIME,
    MINIMUM_DOWNLOAD_SIZE,
    PREFETCH_THRESHOLD_FACTOR,
    AudioFileShared,
    CommandKind,
    DownloadStrategy,
    StreamLoaderCommand,
)

log = logging.getLogger(__name__)

STREAM_CHUNK_COMMAND = 0x8

_REQUEST_HEADER = struct.Struct(">HBBHIII")
_REQUEST_TRAILER = struct.Struct(">II")


@dataclass(frozen=True)
class ResponseTime:
    """Time in seconds between sending a request and the first data arriving."""

    duration: float


@dataclass(frozen=True)
class PartialFileData:
    """A chunk of file data received at ``offset``."""

    offset: int
    data: bytes


def build_range_request(channel_id: int, file_id: bytes, offset: int, length: int) -> bytes:
    """Build the payload requesting ``length`` bytes of a file starting at ``offset``."""
    if offset % 4 != 0:
        raise ValueError("Range request start positions must be aligned by 4 bytes.")
    if length % 4 != 0:
        raise ValueError("Range request range lengths must be aligned by 4 bytes.")
    start = offset // 4
    end = (offset + length) // 4
    return (
        _REQUEST_HEADER.pack(channel_id, 0, 1, 0x0000, 0x00000000, 0x00009C40, 0x00020000)
        + bytes(file_id)
        + _REQUEST_TRAILER.pack(start, end)
    )


def request_range(session: Any, file_id: bytes, offset: int, length: int) -> Any:
    """Allocate a channel, send a range request on it and return the channel."""
    if offset % 4 != 0 or length % 4 != 0:
        # Validate before a channel is allocated.
        build_range_request(0, file_id, offset, length)
    channel_id, channel = session.channel().allocate()
    session.send_packet(
        STREAM_CHUNK_COMMAND, build_range_request(channel_id, file_id, offset, length)
    )
    return channel


def receive_data(
    shared: AudioFileShared,
    file_data_queue: queue.Queue,
    data_chunks: Iterable[bytes],
    initial_data_offset: int,
    initial_request_length: int,
    request_sent_time: float,
) -> None:
    """Forward received chunks of one request to ``file_data_queue``.

    ``request_sent_time`` is a ``time.monotonic()`` value. Whatever part of the
    request does not arrive is removed from the set of requested ranges.
    """
    data_offset = initial_data_offset
    request_length = initial_request_length

    with shared.cond:
        old_number_of_requests = shared.number_of_open_requests
        shared.number_of_open_requests += 1

    measure_ping_time = old_number_of_requests == 0
    failed = False

    try:
        for chunk in data_chunks:
            if measure_ping_time:
                duration = min(time.monotonic() - request_sent_time, MAXIMUM_ASSUMED_PING_TIME)
                file_data_queue.put(ResponseTime(duration))
                measure_ping_time = False
            data = bytes(chunk)
            file_data_queue.put(PartialFileData(data_offset, data))
            data_offset += len(data)
            if request_length < len(data):
                log.warning(
                    "Data receiver for range %d (+%d) received more data from server than requested.",
                    initial_data_offset,
                    initial_request_length,
                )
                request_length = 0
            else:
                request_length -= len(data)
            if request_length == 0:
                break
    except Exception:  # a failing channel must not kill the receiver's bookkeeping
        failed = True

    with shared.cond:
        if request_length > 0:
            shared.requested.subtract_range(Range(data_offset, request_length))
            shared.cond.notify_all()
        shared.number_of_open_requests -= 1

    if failed:
        log.warning(
            "Error from channel for data receiver for range %d (+%d).",
            initial_data_offset,
            initial_request_length,
        )
    elif request_length > 0:
        log.warning(
            "Data receiver for range %d (+%d) received less data from server than requested.",
            initial_data_offset,
            initial_request_length,
        )


class AudioFileFetch:
    """Writes received data to the output file and decides what to request next."""

    def __init__(
        self,
        session: Any,
        shared: AudioFileShared,
        output: BinaryIO,
        file_data_queue: queue.Queue,
        on_complete: Callable[[BinaryIO], Any],
    ) -> None:
        self.session = session
        self.shared = shared
        self.output: BinaryIO | None = output
        self.file_data_queue = file_data_queue
        self.on_complete: Callable[[BinaryIO], Any] | None = on_complete
        self.network_response_times: deque[float] = deque(maxlen=3)

    def get_download_strategy(self) -> DownloadStrategy:
        with self.shared.cond:
            return self.shared.download_strategy

    def download_range(self, offset: int, length: int) -> None:
        """Request ``[offset, offset + length)``, widened and aligned, minus what is known."""
        file_size = self.shared.file_size
        length = max(length, MINIMUM_DOWNLOAD_SIZE)

        if offset >= file_size or length == 0:
            return
        if offset + length > file_size:
            length = file_size - offset
        if offset % 4 != 0:
            length += offset % 4
            offset -= offset % 4
        if length % 4 != 0:
            length += 4 - length % 4

        ranges_to_request = RangeSet([Range(offset, length)])

        with self.shared.cond:
            ranges_to_request.subtract_range_set(self.shared.downloaded)
            ranges_to_request.subtract_range_set(self.shared.requested)

            for range_ in ranges_to_request:
                channel = request_range(
                    self.session, self.shared.file_id, range_.start, range_.length
                )
                _headers, data = channel.split()
                self.shared.requested.add_range(range_)
                self.session.spawn(
                    receive_data,
                    self.shared,
                    self.file_data_queue,
                    data,
                    range_.start,
                    range_.length,
                    time.monotonic(),
                )

    def _missing_data(self) -> RangeSet:
        missing = RangeSet([Range(0, self.shared.file_size)])
        with self.shared.cond:
            missing.subtract_range_set(self.shared.downloaded)
            missing.subtract_range_set(self.shared.requested)
        return missing

    def pre_fetch_more_data(self, num_bytes: int, max_requests_to_send: int) -> None:
        """Request up to ``num_bytes`` of missing data, preferring data after the read position."""
        bytes_to_go = num_bytes
        requests_to_go = max_requests_to_send

        while bytes_to_go > 0 and requests_to_go > 0:
            missing_data = self._missing_data()
            read_position = self.shared.read_position
            tail_end = RangeSet(
                [Range(read_position, self.shared.file_size - read_position)]
            ).intersection(missing_data)

            if not tail_end.is_empty():
                range_ = tail_end[0]
            elif not missing_data.is_empty():
                range_ = missing_data[0]
            else:
                return

            length = min(range_.length, bytes_to_go)
            self.download_range(range_.start, length)
            requests_to_go -= 1
            bytes_to_go -= length

    def handle_file_data(self, data: ResponseTime | PartialFileData) -> bool:
        """Process received data; return True once the whole file is present."""
        if isinstance(data, ResponseTime):
            self.network_response_times.append(data.duration)
            times = list(self.network_response_times)
            if len(times) == 1:
                ping_time = times[0]
            elif len(times) == 2:
                ping_time = (times[0] + times[1]) / 2
            else:
                ping_time = sorted(times)[1]
            self.shared.ping_time_ms = int(ping_time * 1000)
            return False

        if self.output is None:
            raise RuntimeError("file data received after the download finished")
        self.output.seek(data.offset)
        self.output.write(data.data)

        with self.shared.cond:
            self.shared.downloaded.add_range(Range(data.offset, len(data.data)))
            self.shared.cond.notify_all()
            full = self.shared.downloaded.contained_length_from_value(0) >= self.shared.file_size

        if full:
            self.finish()
            return True
        return False

    def handle_stream_loader_command(self, command: StreamLoaderCommand) -> bool:
        """Carry out a loader command; return True when loading should stop."""
        if command.kind is CommandKind.FETCH:
            if command.range_ is None:
                raise ValueError("fetch command without a range")
            self.download_range(command.range_.start, command.range_.length)
        elif command.kind is CommandKind.RANDOM_ACCESS_MODE:
            with self.shared.cond:
                self.shared.download_strategy = DownloadStrategy.RANDOM_ACCESS
        elif command.kind is CommandKind.STREAM_MODE:
            with self.shared.cond:
                self.shared.download_strategy = DownloadStrategy.STREAMING
        elif command.kind is CommandKind.CLOSE:
            return True
        return False

    def finish(self) -> None:
        """Rewind the completed output and hand it to the completion callback."""
        output, self.output = self.output, None
        on_complete, self.on_complete = self.on_complete, None
        if output is None or on_complete is None:
            raise RuntimeError("download already finished")
        output.seek(0)
        on_complete(output)

    def prefetch_if_streaming(self) -> None:
        """In streaming mode, keep enough data pending to cover the ping time."""
        if self.get_download_strategy() is not DownloadStrategy.STREAMING:
            return
        with self.shared.cond:
            number_of_open_requests = self.shared.number_of_open_requests
            if number_of_open_requests >= MAX_PREFETCH_REQUESTS:
                return
            bytes_pending = len(self.shared.requested.minus(self.shared.downloaded))
        max_requests_to_send = MAX_PREFETCH_REQUESTS - number_of_open_requests

        ping_time_seconds = self.shared.ping_time_seconds()
        download_rate = self.session.channel().get_download_rate_estimate()
        desired_pending_bytes = max(
            int(PREFETCH_THRESHOLD_FACTOR * ping_time_seconds * self.shared.stream_data_rate),
            int(FAST_PREFETCH_THRESHOLD_FACTOR * ping_time_seconds * download_rate),
        )
        if bytes_pending < desired_pending_bytes:
            self.pre_fetch_more_data(desired_pending_bytes - bytes_pending, max_requests_to_send)


def audio_file_fetch(
    session: Any,
    shared: AudioFileShared,
    initial_data: Iterable[bytes],
    initial_request_sent_time: float,
    initial_data_length: int,
    output: BinaryIO,
    commands: queue.Queue,
    on_complete: Callable[[BinaryIO], Any],
) -> None:
    """Run the fetch loop until the file is complete, closed, or ``None`` is queued.

    ``commands`` carries :class:`StreamLoaderCommand` items; receivers also
    deliver their data through it.
    """
    with shared.cond:
        shared.requested.add_range(Range(0, initial_data_length))

    session.spawn(
        receive_data,
        shared,
        commands,
        initial_data,
        0,
        initial_data_length,
        initial_request_sent_time,
    )

    fetch = AudioFileFetch(session, shared, output, commands, on_complete)

    while True:
        item = commands.get()
        if item is None:
            break
        if isinstance(item, StreamLoaderCommand):
            stop = fetch.handle_stream_loader_command(item)
        else:
            stop = fetch.handle_file_data(item)
        if stop:
            break
        fetch.prefetch_if_streaming()