import dataclasses
import threading

import pytest

from audiostream.range_set import Range
from audiostream.shared import (
    AudioFileShared,
    CommandKind,
    DownloadStrategy,
    StreamLoaderCommand,
)

FILE_ID = b"\x01" * 20


def test_initial_state():
    shared = AudioFileShared(FILE_ID, 4096, 20000)
    assert shared.file_id == FILE_ID
    assert shared.file_size == 4096
    assert shared.stream_data_rate == 20000
    assert shared.download_strategy is DownloadStrategy.RANDOM_ACCESS
    assert shared.requested.is_empty()
    assert shared.downloaded.is_empty()
    assert shared.number_of_open_requests == 0
    assert shared.read_position == 0


def test_ping_time_seconds():
    shared = AudioFileShared(FILE_ID, 100, 1)
    assert shared.ping_time_seconds() == 0.0
    shared.ping_time_ms = 250
    assert shared.ping_time_seconds() == pytest.approx(0.25)


def test_wait_times_out_without_notification():
    shared = AudioFileShared(FILE_ID, 100, 1)
    assert shared.wait_for_change(0.01) is False


def test_notify_wakes_waiter():
    shared = AudioFileShared(FILE_ID, 100, 1)
    notifier = threading.Thread(target=shared.notify_all)
    with shared.cond:
        # The notifier can only take the lock once this thread is waiting.
        notifier.start()
        woken = shared.wait_for_change(5.0)
    notifier.join(5.0)
    assert woken is True


def test_fetch_command_carries_range():
    command = StreamLoaderCommand(CommandKind.FETCH, Range(8, 16))
    assert command.kind is CommandKind.FETCH
    assert command.range_ == Range(8, 16)
    assert StreamLoaderCommand(CommandKind.CLOSE).range_ is None


def test_command_is_immutable():
    command = StreamLoaderCommand(CommandKind.STREAM_MODE)
    with pytest.raises(dataclasses.FrozenInstanceError):
        command.kind = CommandKind.CLOSE
    assert command.kind is CommandKind.STREAM_MODE