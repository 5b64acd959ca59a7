"""NCM (NetEase Cloud Music) container decoder.

An NCM file wraps an audio stream (MP3 or FLAC) together with its cover
image and a JSON metadata record:

- Key section: XOR 0x64, AES-ECB with the core key, 17-byte label.
- Metadata section: XOR 0x63, 22-byte label, base64, AES-ECB with the
  meta key, 6-byte label, JSON.
- Cover image: stored verbatim.
- Audio: XORed with a keystream derived from the master key.

Sections are laid out back to back and are read strictly in order.
"""
import base64
import binascii
import io
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO

import orjson

from decoders.cipher import KeyBox, ecb_decrypt, xor_bytes
from decoders.errors import InvalidLengthError, InvalidMetadataError, NCMError
from decoders.reader import ContainerReader
from utils.keys import core_key, meta_key


KEY_XOR = 0x64
META_XOR = 0x63
KEY_LABEL_SIZE = 17       # b"neteasecloudmusic"
META_LABEL_SIZE = 22      # b"163 key(Don't modify):"
META_PREFIX_SIZE = 6      # b"music:"
RESERVED_AFTER_MAGIC = 2
RESERVED_AFTER_CRC = 5
CHUNK_SIZE = 0x8000


@dataclass(frozen=True)
class NCMMetadata:
    """Parsed metadata record.

    ``raw`` holds the JSON object as stored in the container. An empty
    record is falsy.
    """

    raw: dict[str, Any] = field(default_factory=dict)

    # Equality compares the record; a dict cannot be hashed.
    __hash__ = None

    def __bool__(self) -> bool:
        return bool(self.raw)

    def get(self, key: str, default: Any = None) -> Any:
        return self.raw.get(key, default)

    @property
    def format(self) -> str | None:
        value = self.raw.get("format")
        return str(value).lower() if value else None

    @property
    def title(self) -> str | None:
        return self.raw.get("musicName")

    @property
    def album(self) -> str | None:
        return self.raw.get("album")

    @property
    def artists(self) -> list[str]:
        # Stored as [[name, id], ...]
        names = []
        for entry in self.raw.get("artist") or []:
            if isinstance(entry, (list, tuple)) and entry:
                names.append(str(entry[0]))
            elif isinstance(entry, str):
                names.append(entry)
        return names

    @property
    def bitrate(self) -> int | None:
        return self.raw.get("bitrate")

    @property
    def duration(self) -> int | None:
        return self.raw.get("duration")


@dataclass(frozen=True)
class DecodedNCM:
    key_box: KeyBox
    metadata: NCMMetadata
    image: bytes
    audio: bytes

    __hash__ = None


@contextmanager
def _stage(name: str):
    """Tag errors raised inside the block with the decode stage."""
    try:
        yield
    except NCMError as e:
        if e.stage is None:
            e.stage = name
        raise


def read_master_key(reader: ContainerReader) -> bytes:
    """Read and unwrap the key section, returning the raw master key."""
    reader.skip(RESERVED_AFTER_MAGIC)
    key_length = reader.read_u32_le()
    key_data = xor_bytes(reader.read_exact(key_length), KEY_XOR)
    plaintext = ecb_decrypt(core_key(), key_data)
    if len(plaintext) <= KEY_LABEL_SIZE:
        raise InvalidLengthError(
            f"key section plaintext is {len(plaintext)} bytes, no master key after the {KEY_LABEL_SIZE}-byte label"
        )
    return plaintext[KEY_LABEL_SIZE:]


def read_key_box(reader: ContainerReader) -> KeyBox:
    return KeyBox.from_master_key(read_master_key(reader))


def parse_metadata(blob: bytes) -> NCMMetadata:
    """Decode the body of the metadata section.

    An empty section yields an empty record.
    """
    if not blob:
        return NCMMetadata()

    data = xor_bytes(blob, META_XOR)[META_LABEL_SIZE:]
    try:
        data = base64.b64decode(data, validate=True)
    except binascii.Error as e:
        raise InvalidMetadataError(f"invalid base64 body: {e}") from e

    data = ecb_decrypt(meta_key(), data)[META_PREFIX_SIZE:]
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidMetadataError(f"metadata is not valid UTF-8: {e}") from e
    try:
        record = orjson.loads(text)
    except orjson.JSONDecodeError as e:
        raise InvalidMetadataError(f"metadata is not valid JSON: {e}") from e

    if not isinstance(record, dict):
        raise InvalidMetadataError(f"metadata must be a JSON object, got {type(record).__name__}")
    return NCMMetadata(record)


def read_metadata(reader: ContainerReader) -> NCMMetadata:
    meta_length = reader.read_u32_le()
    return parse_metadata(reader.read_exact(meta_length))


def read_image(reader: ContainerReader) -> bytes:
    """Read the cover image; a zero length gives an empty buffer."""
    reader.read_u32_le()  # CRC32, not verified
    reader.skip(RESERVED_AFTER_CRC)
    image_length = reader.read_u32_le()
    return reader.read_exact(image_length)


def decrypt_audio(reader: ContainerReader, key_box: KeyBox, chunk_size: int = CHUNK_SIZE) -> bytes:
    """Decrypt the remainder of the stream."""
    audio = bytearray()
    for chunk in reader.iter_chunks(chunk_size):
        audio += key_box.decrypt(chunk, offset=len(audio))
    return bytes(audio)


def _decode_stream(fp: BinaryIO, chunk_size: int) -> DecodedNCM:
    with _stage("header"):
        reader = ContainerReader.open(fp)
    with _stage("key"):
        key_box = read_key_box(reader)
    with _stage("metadata"):
        metadata = read_metadata(reader)
    with _stage("image"):
        image = read_image(reader)
    with _stage("audio"):
        audio = decrypt_audio(reader, key_box, chunk_size)
    return DecodedNCM(key_box=key_box, metadata=metadata, image=image, audio=audio)


def decode(source: BinaryIO | bytes | bytearray | memoryview | str | Path, chunk_size: int = CHUNK_SIZE) -> DecodedNCM:
    """Decode a whole NCM container.

    Args:
        source: Open binary file object, raw container bytes, or a path
        chunk_size: Audio read size; does not affect the output

    Returns:
        DecodedNCM with the key box, metadata record, cover image and audio

    Raises:
        NCMError: On the first structural or cryptographic problem
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        return _decode_stream(io.BytesIO(source), chunk_size)
    if isinstance(source, (str, Path)):
        with open(source, "rb") as fp:
            return _decode_stream(fp, chunk_size)
    return _decode_stream(source, chunk_size)


class NCM:
    """NCM container on disk.

    Args:
        file_path: Path to the .ncm file
    """

    def __init__(self, file_path: str | Path):
        self.file_path = Path(file_path)

    def decode(self, chunk_size: int = CHUNK_SIZE) -> DecodedNCM:
        with open(self.file_path, "rb") as fp:
            return _decode_stream(fp, chunk_size)
