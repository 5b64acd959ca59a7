import re
from pathlib import Path

from decoders.ncm import DecodedNCM


PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
FLAC_SIGNATURE = b"fLaC"
FORMAT_PATTERN = re.compile(r"[a-z0-9]+")


def find_containers(input_path: str | Path, extension: str = "ncm") -> list[Path]:
    """Return ``input_path`` if it is a matching file, or every match below it if a directory."""
    if isinstance(input_path, str):
        input_path = Path(input_path)
    suffix = f".{extension}".lower()

    if input_path.is_file():
        return [input_path] if input_path.suffix.lower() == suffix else []

    if input_path.is_dir():
        return sorted(
            path for path in input_path.rglob("*")
            if path.is_file() and path.suffix.lower() == suffix
        )

    raise FileNotFoundError(f"{input_path} is not a valid file or directory")


def sniff_audio_format(audio: bytes) -> str:
    return "flac" if audio.startswith(FLAC_SIGNATURE) else "mp3"


def sniff_image_extension(image: bytes) -> str:
    return "png" if image.startswith(PNG_SIGNATURE) else "jpg"


def audio_format(decoded: DecodedNCM) -> str:
    """Format named by the metadata record, or sniffed from the audio.

    The record's value becomes a file extension, so anything that is not
    plain lowercase alphanumerics is ignored.
    """
    fmt = decoded.metadata.format
    if fmt and FORMAT_PATTERN.fullmatch(fmt):
        return fmt
    return sniff_audio_format(decoded.audio)


def write_outputs(
    source: Path,
    decoded: DecodedNCM,
    output_path: Path,
    cover: bool = True,
    base_dir: Path | None = None,
) -> dict[str, Path]:
    """Write the audio and cover image next to each other.

    Files are named after the source stem. When ``base_dir`` is given the
    source's directory relative to it is recreated under ``output_path``,
    so containers sharing a stem in different folders do not collide.
    No cover file is written for an empty image.
    """
    if base_dir is not None:
        output_path = output_path.joinpath(source.parent.relative_to(base_dir))
    output_path.mkdir(parents=True, exist_ok=True)
    written = {}

    audio_file = output_path.joinpath(f"{source.stem}.{audio_format(decoded)}")
    audio_file.write_bytes(decoded.audio)
    written["audio"] = audio_file

    if cover and decoded.image:
        image_file = output_path.joinpath(f"{source.stem}.{sniff_image_extension(decoded.image)}")
        image_file.write_bytes(decoded.image)
        written["image"] = image_file

    return written
