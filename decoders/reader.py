"""Forward-only reader over an NCM container stream."""
import struct
from typing import BinaryIO, Iterator

from decoders.errors import BadMagicError, TruncatedError


MAGIC = b"CTENFDAM"
MAGIC_SIZE = len(MAGIC)


class ContainerReader:
    """Checked sequential access to the fields of a container.

    Every read either returns exactly the requested number of bytes or
    raises ``TruncatedError``. The stream is never seeked, so pipes and
    other non-seekable file objects work as well as regular files.
    """

    def __init__(self, fp: BinaryIO):
        self.fp = fp
        self.offset = 0

    @classmethod
    def open(cls, fp: BinaryIO) -> "ContainerReader":
        """Validate the magic header and return a reader positioned after it."""
        reader = cls(fp)
        header = reader._read_up_to(MAGIC_SIZE)
        if header != MAGIC:
            raise BadMagicError(f"invalid header {header!r}, expected {MAGIC!r}")
        reader.offset = MAGIC_SIZE
        return reader

    def _read_up_to(self, size: int) -> bytes:
        # Raw streams may return fewer bytes than asked for before EOF.
        parts = []
        remaining = size
        while remaining > 0:
            part = self.fp.read(remaining)
            if not part:
                break
            parts.append(part)
            remaining -= len(part)
        return b"".join(parts)

    def read_exact(self, size: int) -> bytes:
        if size < 0:
            raise ValueError(f"negative read size {size}")
        data = self._read_up_to(size)
        if len(data) != size:
            raise TruncatedError(size, len(data))
        self.offset += size
        return data

    def skip(self, size: int) -> None:
        self.read_exact(size)

    def read_u32_le(self) -> int:
        return struct.unpack("<I", self.read_exact(4))[0]

    def iter_chunks(self, chunk_size: int) -> Iterator[bytes]:
        """Yield the rest of the stream in chunks of at most ``chunk_size`` bytes."""
        if chunk_size <= 0:
            raise ValueError(f"chunk size must be positive, got {chunk_size}")
        while True:
            chunk = self.fp.read(chunk_size)
            if not chunk:
                break
            self.offset += len(chunk)
            yield chunk
