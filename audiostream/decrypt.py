"""Transparent AES-128-CTR decryption of an audio stream."""

from __future__ import annotations

import io
from typing import BinaryIO

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

AUDIO_AESIV = bytes.fromhex("72e067fbddcbcf77ebe8bc643f630d93")

_BLOCK_SIZE = 16
_COUNTER_MODULUS = 1 << 128


class AudioDecrypt(io.RawIOBase):
    """Wraps a binary reader and decrypts everything read from it."""

    def __init__(self, key: bytes, reader: BinaryIO) -> None:
        super().__init__()
        key = bytes(key)
        if len(key) != 16:
            raise ValueError(f"audio key must be 16 bytes, got {len(key)}")
        self._key = key
        self._reader = reader
        self._position = 0
        self._decryptor = self._keystream_at(0)

    def _keystream_at(self, position: int):
        block, skip = divmod(position, _BLOCK_SIZE)
        counter = (int.from_bytes(AUDIO_AESIV, "big") + block) % _COUNTER_MODULUS
        decryptor = Cipher(
            algorithms.AES(self._key), modes.CTR(counter.to_bytes(16, "big"))
        ).decryptor()
        if skip:
            decryptor.update(bytes(skip))
        return decryptor

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        seekable = getattr(self._reader, "seekable", None)
        return bool(seekable()) if seekable is not None else False

    def read(self, size: int | None = -1) -> bytes:
        data = self._reader.read(-1 if size is None else size)
        if not data:
            return b""
        plain = self._decryptor.update(data)
        self._position += len(plain)
        return plain

    def readinto(self, buffer) -> int:
        view = memoryview(buffer).cast("B")
        data = self.read(len(view))
        view[: len(data)] = data
        return len(data)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        new_position = self._reader.seek(offset, whence)
        self._position = new_position
        self._decryptor = self._keystream_at(new_position)
        return new_position

    def tell(self) -> int:
        return self._position