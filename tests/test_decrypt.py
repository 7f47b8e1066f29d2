import io

import pytest

from audiostream.decrypt import AUDIO_AESIV, AudioDecrypt

AUDIO_KEY = b"placeholder".ljust(16, b"-")
PLAINTEXT = bytes(range(256)) * 3 + b"tail of the stream"


def _encrypt(data):
    # CTR mode is symmetric: applying the keystream twice restores the input.
    return AudioDecrypt(AUDIO_KEY, io.BytesIO(data)).read()


def test_iv_matches_protocol():
    assert AUDIO_AESIV.hex() == "72e067fbddcbcf77ebe8bc643f630d93"


def test_round_trip():
    ciphertext = _encrypt(PLAINTEXT)
    assert len(ciphertext) == len(PLAINTEXT)
    assert ciphertext != PLAINTEXT
    assert AudioDecrypt(AUDIO_KEY, io.BytesIO(ciphertext)).read() == PLAINTEXT


def test_chunked_reads_match_whole_read():
    ciphertext = _encrypt(PLAINTEXT)
    stream = AudioDecrypt(AUDIO_KEY, io.BytesIO(ciphertext))
    pieces = []
    while True:
        piece = stream.read(7)
        if not piece:
            break
        pieces.append(piece)
    assert b"".join(pieces) == PLAINTEXT


@pytest.mark.parametrize("offset", [0, 1, 15, 16, 17, 37, 500])
def test_seek_restarts_keystream(offset):
    ciphertext = _encrypt(PLAINTEXT)
    stream = AudioDecrypt(AUDIO_KEY, io.BytesIO(ciphertext))
    stream.read(100)
    assert stream.seek(offset) == offset
    assert stream.read() == PLAINTEXT[offset:]


def test_seek_from_end():
    ciphertext = _encrypt(PLAINTEXT)
    stream = AudioDecrypt(AUDIO_KEY, io.BytesIO(ciphertext))
    position = stream.seek(-10, io.SEEK_END)
    assert position == len(PLAINTEXT) - 10
    assert stream.read() == PLAINTEXT[-10:]


def test_tell_tracks_reads():
    ciphertext = _encrypt(PLAINTEXT)
    stream = AudioDecrypt(AUDIO_KEY, io.BytesIO(ciphertext))
    stream.read(33)
    assert stream.tell() == 33
    stream.read()
    assert stream.tell() == len(PLAINTEXT)


def test_readinto_matches_read():
    ciphertext = _encrypt(PLAINTEXT)
    stream = AudioDecrypt(AUDIO_KEY, io.BytesIO(ciphertext))
    buffer = bytearray(50)
    count = stream.readinto(buffer)
    assert count == 50
    assert bytes(buffer) == PLAINTEXT[:50]


def test_buffered_wrapper_reads_plaintext():
    ciphertext = _encrypt(PLAINTEXT)
    stream = io.BufferedReader(AudioDecrypt(AUDIO_KEY, io.BytesIO(ciphertext)))
    assert stream.read() == PLAINTEXT


def test_seekable_follows_reader():
    stream = AudioDecrypt(AUDIO_KEY, io.BytesIO(b""))
    assert stream.seekable() is True
    assert stream.readable() is True
    assert stream.read() == b""


def test_wrong_key_length():
    with pytest.raises(ValueError):
        AudioDecrypt(b"secret", io.BytesIO(b""))