"""Audio files that are either read from a cache or streamed while they download."""

from __future__ import annotations

import io
import logging
import os
import queue
import struct
import tempfile
import time
from typing import Any, BinaryIO, Callable, Iterable

from .range_set import Range, RangeSet
from .receive import audio_file_fetch, request_range
from .shared import (
    DOWNLOAD_TIMEOUT,
    INITIAL_DOWNLOAD_SIZE,
    INITIAL_PING_TIME_ESTIMATE,
    READ_AHEAD_DURING_PLAYBACK,
    READ_AHEAD_DURING_PLAYBACK_ROUNDTRIPS,
    AudioFileShared,
    CommandKind,
    DownloadStrategy,
    StreamLoaderCommand,
)

log = logging.getLogger(__name__)

FILE_SIZE_HEADER_ID = 0x3


def _stream_size(file: BinaryIO) -> int:
    try:
        return os.fstat(file.fileno()).st_size
    except (AttributeError, OSError, io.UnsupportedOperation):
        position = file.tell()
        end = file.seek(0, io.SEEK_END)
        file.seek(position)
        return end


class StreamLoaderController:
    """Controls the download of a streaming file; inert for cached files."""

    def __init__(
        self,
        commands: queue.Queue | None,
        shared: AudioFileShared | None,
        file_size: int,
    ) -> None:
        self._commands = commands
        self._shared = shared
        self._file_size = file_size

    def __len__(self) -> int:
        return self._file_size

    def is_empty(self) -> bool:
        return self._file_size == 0

    def range_available(self, range_: Range) -> bool:
        shared = self._shared
        if shared is not None:
            with shared.cond:
                return range_.length <= shared.downloaded.contained_length_from_value(
                    range_.start
                )
        return range_.length <= len(self) - range_.start

    def range_to_end_available(self) -> bool:
        if self._shared is None:
            return True
        read_position = self._shared.read_position
        return self.range_available(Range(read_position, len(self) - read_position))

    def ping_time(self) -> float:
        """Current ping time estimate in seconds."""
        if self._shared is None:
            return 0.0
        return self._shared.ping_time_seconds()

    def _send(self, command: StreamLoaderCommand) -> None:
        if self._commands is not None:
            self._commands.put(command)

    def fetch(self, range_: Range) -> None:
        """Ask the loader to fetch a range of the file."""
        self._send(StreamLoaderCommand(CommandKind.FETCH, range_))

    def fetch_blocking(self, range_: Range) -> None:
        """Fetch a range of the file and wait until it has been downloaded."""
        if range_.start >= len(self):
            range_ = Range(range_.start, 0)
        elif range_.end() > len(self):
            range_ = Range(range_.start, len(self) - range_.start)

        self.fetch(range_)

        shared = self._shared
        if shared is None:
            return
        with shared.cond:
            while range_.length > shared.downloaded.contained_length_from_value(range_.start):
                shared.cond.wait(DOWNLOAD_TIMEOUT)
                known = shared.downloaded.union(shared.requested)
                if range_.length > known.contained_length_from_value(range_.start):
                    # Neither downloaded nor pending, e.g. after a network error.
                    self.fetch(range_)

    def fetch_next(self, length: int) -> None:
        if self._shared is not None:
            self.fetch(Range(self._shared.read_position, length))

    def fetch_next_blocking(self, length: int) -> None:
        if self._shared is not None:
            self.fetch_blocking(Range(self._shared.read_position, length))

    def set_random_access_mode(self) -> None:
        self._send(StreamLoaderCommand(CommandKind.RANDOM_ACCESS_MODE))

    def set_stream_mode(self) -> None:
        self._send(StreamLoaderCommand(CommandKind.STREAM_MODE))

    def close(self) -> None:
        """Stop loading data for this file."""
        self._send(StreamLoaderCommand(CommandKind.CLOSE))


class AudioFileStreaming:
    """A file being downloaded; reads block until the data they need has arrived."""

    def __init__(
        self, read_file: BinaryIO, commands: queue.Queue, shared: AudioFileShared
    ) -> None:
        self.read_file = read_file
        self.commands = commands
        self.shared = shared
        self.position = 0
        self._temp_path: str | None = None

    def _length_to_request(self, length: int, offset: int) -> int:
        with self.shared.cond:
            strategy = self.shared.download_strategy
        if strategy is DownloadStrategy.RANDOM_ACCESS:
            return length
        rate = self.shared.stream_data_rate
        wanted = length + max(
            int(READ_AHEAD_DURING_PLAYBACK * rate),
            int(READ_AHEAD_DURING_PLAYBACK_ROUNDTRIPS * self.shared.ping_time_seconds() * rate),
        )
        return min(wanted, self.shared.file_size - offset)

    def read(self, size: int | None = -1) -> bytes:
        """Read up to ``size`` bytes at the current position, waiting for the download."""
        offset = self.position
        file_size = self.shared.file_size
        if offset >= file_size:
            return b""

        remaining = file_size - offset
        length = remaining if size is None or size < 0 else min(size, remaining)
        length_to_request = self._length_to_request(length, offset)

        ranges_to_request = RangeSet([Range(offset, length_to_request)])
        shared = self.shared
        with shared.cond:
            ranges_to_request.subtract_range_set(shared.downloaded)
            ranges_to_request.subtract_range_set(shared.requested)
            for range_ in ranges_to_request:
                self.commands.put(StreamLoaderCommand(CommandKind.FETCH, range_))

            if length == 0:
                return b""

            message_printed = False
            while offset not in shared.downloaded:
                if shared.download_strategy is DownloadStrategy.STREAMING and not message_printed:
                    log.debug(
                        "Stream waiting for download of file position %d. "
                        "Downloaded ranges: %s. Pending ranges: %s",
                        offset,
                        shared.downloaded,
                        shared.requested.minus(shared.downloaded),
                    )
                    message_printed = True
                shared.cond.wait(DOWNLOAD_TIMEOUT)
            available_length = shared.downloaded.contained_length_from_value(offset)

        self.position = self.read_file.seek(offset)
        data = self.read_file.read(min(length, available_length))

        if message_printed:
            log.debug(
                "Read at position %d completed. %d bytes returned, %d bytes were requested.",
                offset,
                len(data),
                length,
            )

        self.position += len(data)
        shared.read_position = self.position
        return data

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        self.position = self.read_file.seek(offset, whence)
        self.shared.read_position = self.position
        return self.position

    def tell(self) -> int:
        return self.position

    def close(self) -> None:
        """Close the file and stop its loader."""
        self.commands.put(None)
        self.read_file.close()
        if self._temp_path is not None:
            try:
                os.unlink(self._temp_path)
            except OSError:
                pass
            self._temp_path = None


def open_streaming(
    session: Any,
    initial_data: Iterable[bytes],
    initial_data_length: int,
    initial_request_sent_time: float,
    headers: Iterable[tuple[int, bytes]],
    file_id: bytes,
    on_complete: Callable[[BinaryIO], Any],
    streaming_data_rate: int,
) -> AudioFileStreaming:
    """Wait for the file size header, then start loading the file in the background."""
    for header_id, data in headers:
        if header_id == FILE_SIZE_HEADER_ID:
            (words,) = struct.unpack(">I", bytes(data[:4]))
            size = words * 4
            break
    else:
        raise EOFError("channel closed before the file size header arrived")

    shared = AudioFileShared(file_id, size, streaming_data_rate)

    fd, path = tempfile.mkstemp(prefix="audiostream-")
    write_file = os.fdopen(fd, "w+b", buffering=0)
    write_file.truncate(size)
    write_file.seek(0)
    read_file = open(path, "rb")

    commands: queue.Queue = queue.Queue()
    session.spawn(
        audio_file_fetch,
        session,
        shared,
        initial_data,
        initial_request_sent_time,
        initial_data_length,
        write_file,
        commands,
        on_complete,
    )

    streaming = AudioFileStreaming(read_file, commands, shared)
    streaming._temp_path = path
    return streaming


class AudioFile:
    """An audio file read either from the cache or from a download in progress."""

    def __init__(
        self,
        cached: BinaryIO | None = None,
        streaming: AudioFileStreaming | None = None,
    ) -> None:
        if (cached is None) == (streaming is None):
            raise ValueError("exactly one of cached and streaming must be given")
        self._cached = cached
        self._streaming = streaming

    @property
    def _file(self) -> Any:
        return self._cached if self._cached is not None else self._streaming

    def get_stream_loader_controller(self) -> StreamLoaderController:
        if self._streaming is not None:
            return StreamLoaderController(
                self._streaming.commands,
                self._streaming.shared,
                self._streaming.shared.file_size,
            )
        return StreamLoaderController(None, None, _stream_size(self._cached))

    def is_cached(self) -> bool:
        return self._cached is not None

    def read(self, size: int | None = -1) -> bytes:
        return self._file.read(size)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._file.seek(offset, whence)

    def tell(self) -> int:
        return self._file.tell()

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> AudioFile:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def initial_download_length(bytes_per_second: int, play_from_beginning: bool) -> int:
    """Number of bytes requested when a file is opened, aligned to 4 bytes."""
    length = INITIAL_DOWNLOAD_SIZE
    if play_from_beginning:
        length += max(
            int(READ_AHEAD_DURING_PLAYBACK * bytes_per_second),
            int(
                INITIAL_PING_TIME_ESTIMATE
                * READ_AHEAD_DURING_PLAYBACK_ROUNDTRIPS
                * bytes_per_second
            ),
        )
    if length % 4 != 0:
        length += 4 - length % 4
    return length


def open_audio_file(
    session: Any, file_id: bytes, bytes_per_second: int, play_from_beginning: bool
) -> AudioFile:
    """Open a file from the session's cache, or start streaming it.

    ``session.cache()`` returns ``None`` or an object with ``file(file_id)``
    (an open binary file or ``None``) and ``save_file(file_id, file)``.
    """
    cache = session.cache()
    if cache is not None:
        cached = cache.file(file_id)
        if cached is not None:
            log.debug("File %s already in cache", bytes(file_id).hex())
            return AudioFile(cached=cached)

    log.debug("Downloading file %s", bytes(file_id).hex())

    initial_length = initial_download_length(bytes_per_second, play_from_beginning)
    headers, data = request_range(session, file_id, 0, initial_length).split()

    def on_complete(file: BinaryIO) -> None:
        try:
            if cache is not None:
                log.debug("File %s complete, saving to cache", bytes(file_id).hex())
                cache.save_file(file_id, file)
            else:
                log.debug("File %s complete", bytes(file_id).hex())
        finally:
            file.close()

    streaming = open_streaming(
        session,
        data,
        initial_length,
        time.monotonic(),
        headers,
        file_id,
        on_complete,
        bytes_per_second,
    )
    return AudioFile(streaming=streaming)