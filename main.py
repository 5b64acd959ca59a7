"""ncmdecode - NCM container decoder.

A tool for recovering the audio, cover image and metadata from NetEase
Cloud Music .ncm files.
"""
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Annotated

import orjson
import typer
from tqdm import tqdm

from decoders.errors import NCMError
from decoders.ncm import NCM
from utils.files import audio_format, find_containers, write_outputs


DEFAULT_WORKERS = 4

app = typer.Typer(help="NCM container decoder")


def collect_files(input_path: str) -> list[Path]:
    try:
        files = find_containers(input_path)
    except FileNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    if not files:
        typer.echo(f"No .ncm files found in {input_path}", err=True)
        raise typer.Exit(1)
    return files


def dump_file(ncm_file: Path, output_path: Path, cover: bool, base_dir: Path) -> dict[str, Path]:
    decoded = NCM(ncm_file).decode()
    return write_outputs(ncm_file, decoded, output_path, cover=cover, base_dir=base_dir)


@app.command("list")
def list_files(
    input_path: Annotated[
        str, typer.Argument(help="NCM file or directory to search recursively.")
    ],
) -> None:
    """List NCM files."""
    for ncm_file in collect_files(input_path):
        typer.echo(str(ncm_file))


@app.command()
def dump(
    input_path: Annotated[
        str, typer.Argument(help="NCM file or directory containing NCM files.")
    ],
    output: Annotated[
        str, typer.Option("--output", "-o", envvar="NCM_OUTPUT", help="Output directory.")
    ] = "output",
    workers: Annotated[
        int, typer.Option("--workers", "-w", envvar="NCM_WORKERS", min=1, help="Number of files decoded in parallel.")
    ] = DEFAULT_WORKERS,
    no_cover: Annotated[
        bool, typer.Option("--no-cover", help="Do not write the embedded cover image.")
    ] = False,
) -> None:
    """Decrypt NCM file(s) into audio and cover image files."""
    ncm_files = collect_files(input_path)
    typer.echo(f"Found {len(ncm_files)} NCM file(s).")
    output_path = Path(output)
    output_path.mkdir(parents=True, exist_ok=True)
    # Mirror the input tree so equal stems in different folders stay apart.
    base_dir = Path(input_path) if Path(input_path).is_dir() else Path(input_path).parent

    failed = 0
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            executor.submit(dump_file, ncm_file, output_path, not no_cover, base_dir): ncm_file
            for ncm_file in ncm_files
        }
        with tqdm(total=len(futures), unit=" files", desc="Decrypting") as pbar:
            for future in as_completed(futures):
                ncm_file = futures[future]
                try:
                    written = future.result()
                except (ValueError, OSError) as e:
                    failed += 1
                    tqdm.write(f"Error processing {ncm_file.relative_to(base_dir)}: {e}", file=sys.stderr)
                else:
                    tqdm.write(f"Decrypted {ncm_file.relative_to(base_dir)} -> {written['audio']}")
                pbar.update(1)

    typer.echo(f"Done: {len(ncm_files) - failed} succeeded, {failed} failed.")
    if failed:
        raise typer.Exit(1)


@app.command()
def info(
    input_path: Annotated[str, typer.Argument(help="NCM file.")],
) -> None:
    """Print the metadata record of an NCM file."""
    try:
        decoded = NCM(input_path).decode()
    except (NCMError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    typer.echo(orjson.dumps(decoded.metadata.raw, option=orjson.OPT_INDENT_2).decode("utf-8"))
    typer.echo(f"Cover image: {len(decoded.image)} bytes")
    typer.echo(f"Audio: {len(decoded.audio)} bytes ({audio_format(decoded)})")


if __name__ == "__main__":
    app()
