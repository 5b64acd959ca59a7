"""Ciphers used by NCM containers.

- AES-128-ECB with PKCS7 padding wraps the master key and the metadata.
- A 256-byte permutation ("key box") seeded by the master key produces
  the keystream XORed over the audio payload.
"""
import numpy as np
from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad

from decoders.errors import InvalidLengthError, InvalidPaddingError


BOX_SIZE = 256


def xor_bytes(data: bytes, value: int) -> bytes:
    """XOR every byte of ``data`` with a single constant byte."""
    return np.bitwise_xor(np.frombuffer(data, dtype=np.uint8), np.uint8(value)).tobytes()


def ecb_decrypt(key: bytes, ciphertext: bytes) -> bytes:
    """Decrypt AES-128-ECB ciphertext and strip its PKCS7 padding."""
    if len(ciphertext) % AES.block_size:
        raise InvalidLengthError(
            f"ciphertext length {len(ciphertext)} is not a multiple of {AES.block_size}"
        )
    if not ciphertext:
        raise InvalidPaddingError("empty ciphertext has no padding block")
    plaintext = AES.new(key, AES.MODE_ECB).decrypt(ciphertext)
    try:
        return unpad(plaintext, AES.block_size, style="pkcs7")
    except ValueError as e:
        raise InvalidPaddingError(str(e)) from e


class KeyBox:
    """Immutable 256-entry permutation used to decrypt the audio stream.

    The keystream byte for absolute offset ``i`` only depends on
    ``i % 256``, so one period is computed up front and tiled over
    whatever range is requested.
    """

    __slots__ = ("table", "_period")

    def __init__(self, table: bytes):
        if len(table) != BOX_SIZE:
            raise ValueError(f"key box must have {BOX_SIZE} entries, got {len(table)}")
        self.table = bytes(table)
        self._period = self._build_period(self.table)

    @classmethod
    def from_master_key(cls, master_key: bytes) -> "KeyBox":
        """Scramble the identity table with the master key."""
        if not master_key:
            raise InvalidLengthError("master key is empty")

        key_length = len(master_key)
        box = bytearray(range(BOX_SIZE))
        last_byte = 0
        key_offset = 0
        for i in range(BOX_SIZE):
            swap = box[i]
            c = (swap + last_byte + master_key[key_offset]) & 0xFF
            key_offset += 1
            if key_offset >= key_length:
                key_offset = 0
            box[i] = box[c]
            box[c] = swap
            last_byte = c
        return cls(box)

    @staticmethod
    def _build_period(table: bytes) -> np.ndarray:
        # Entry k is the keystream byte for every offset i with i % 256 == k.
        box = np.frombuffer(table, dtype=np.uint8).astype(np.intp)
        j = (np.arange(BOX_SIZE, dtype=np.intp) + 1) & 0xFF
        return box[(box[j] + box[(box[j] + j) & 0xFF]) & 0xFF].astype(np.uint8)

    def keystream(self, offset: int, length: int) -> np.ndarray:
        """Keystream bytes for ``length`` bytes starting at absolute ``offset``."""
        if offset < 0 or length < 0:
            raise ValueError("offset and length must be non-negative")
        start = offset % BOX_SIZE
        repeats = (start + length) // BOX_SIZE + 1
        return np.tile(self._period, repeats)[start:start + length]

    def decrypt(self, data: bytes, offset: int = 0) -> bytes:
        """XOR ``data`` with the keystream; ``offset`` is its position in the audio stream."""
        payload = np.frombuffer(data, dtype=np.uint8)
        return np.bitwise_xor(payload, self.keystream(offset, len(payload))).tobytes()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyBox):
            return NotImplemented
        return self.table == other.table

    def __hash__(self) -> int:
        return hash(self.table)

    def __repr__(self) -> str:
        return f"KeyBox({self.table[:8].hex()}...)"
