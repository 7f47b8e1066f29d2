# audiostream

Building blocks for reading audio files that are downloaded in byte ranges
while they are being read.

- `audiostream.range_set`: `Range` is a half-open interval
  `[start, start + length)`. `RangeSet` is a sorted set of such intervals in
  which overlapping or touching ranges are merged. It supports `add_range`,
  `subtract_range`, `union`, `minus` and `intersection`. `len()` gives the
  number of positions covered, `in` tests a single position, and
  `contained_length_from_value` reports how many positions are covered
  without a gap from a given offset.
- `audiostream.decrypt`: `AudioDecrypt` is an `io.RawIOBase` that wraps a
  binary reader and decrypts what is read from it with AES-128 in CTR mode,
  using a fixed initialisation vector. Seeking seeks the underlying reader
  and moves the keystream to the new position.
- `audiostream.shared`: `AudioFileShared` holds the state that a streaming
  file, its controller and its fetcher share: the requested and downloaded
  range sets, the `DownloadStrategy`, the number of open requests, the ping
  estimate and the read position, all guarded by one condition variable. It
  also defines the `StreamLoaderCommand` type and the tuning constants
  (minimum request size, read-ahead times, prefetch factors, timeouts).
- `audiostream.receive`: `build_range_request` builds the payload for a
  4-byte-aligned range request, `request_range` sends one on a newly
  allocated channel, `receive_data` forwards received chunks, and
  `audio_file_fetch` runs the fetch loop. In streaming mode the loop keeps
  enough data pending to cover the measured ping time, preferring data after
  the read position.
- `audiostream.fetch`: `AudioFile` is either cached or streaming and can be
  read, seeked and closed (and used in a `with` block).
  `StreamLoaderController` asks for ranges, can block until they have
  arrived, and switches between random-access and streaming download.
  `open_audio_file` opens a file from a cache or starts streaming it.

## Installation

```
pip install .
```

Install with the test extra to run the tests:

```
pip install ".[test]"
pytest
```

## Range sets

```python
from audiostream.range_set import Range, RangeSet

downloaded = RangeSet()
downloaded.add_range(Range(0, 100))
downloaded.add_range(Range(100, 50))   # touching ranges are merged
print(downloaded)                      # ([0, 149])

wanted = RangeSet([Range(120, 60)])
print(wanted.minus(downloaded))        # ([150, 179])
print(downloaded.contained_length_from_value(20))  # 130
print(len(downloaded), 149 in downloaded)          # 150 True
```

## Decryption

`AudioDecrypt(key, reader)` takes the 16-byte audio key of the file and any
binary reader; any other key length raises `ValueError`.

```python
from audiostream.decrypt import AudioDecrypt

def read_decrypted(path, audio_key, offset, size):
    with open(path, "rb") as raw:
        stream = AudioDecrypt(audio_key, raw)
        stream.seek(offset)
        return stream.read(size)
```

## Streaming files

`open_audio_file(session, file_id, bytes_per_second, play_from_beginning)`
returns an `AudioFile`. If `session.cache()` returns a cache whose
`file(file_id)` has the file, that file is used directly. Otherwise a first
range is requested (its size comes from `initial_download_length`), the call
waits for the file size header, and a fetch loop is started through
`session.spawn`. Reads on the returned file block until the bytes they need
have arrived. When the whole file is present it is passed to the cache's
`save_file(file_id, file)`.

```python
audio_file = open_audio_file(session, file_id, 40_000, play_from_beginning=True)
controller = audio_file.get_stream_loader_controller()
controller.set_stream_mode()
controller.fetch_next_blocking(64 * 1024)
with audio_file:
    header = audio_file.read(4096)
```

`StreamLoaderController.ping_time()` returns the current estimate in seconds.
For a cached file the controller reports every range as available and its
commands do nothing.

## What the package does not do

The package contains no network connection, login or cache storage of its
own. The `session` passed to `open_audio_file` must supply them:

- `session.channel()` returning an object with `allocate()`, which returns a
  `(channel_id, channel)` pair, and `get_download_rate_estimate()` in bytes
  per second; each channel's `split()` returns `(headers, data)`, where
  `headers` yields `(header_id, bytes)` pairs and `data` yields byte chunks;
- `session.send_packet(command, payload)`;
- `session.spawn(function, *args)`, which runs `function(*args)` in the
  background, for example on a thread;
- `session.cache()`, returning `None` or an object with `file(file_id)` and
  `save_file(file_id, file)`.