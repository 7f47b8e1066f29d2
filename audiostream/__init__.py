"""Range sets, AES-CTR decryption and range-based streaming download of audio files."""

__version__ = "0.1.0"
__all__ = ["decrypt", "fetch", "range_set", "receive", "shared"]