import os
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

import orjson
from typer.testing import CliRunner

from main import app
from utils.files import find_containers, sniff_audio_format, sniff_image_extension

from ncm_factory import SAMPLE_METADATA, build_container


PNG_IMAGE = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24
JPEG_IMAGE = b"\xff\xd8\xff\xe0" + b"\x00" * 24


class FilesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = TemporaryDirectory()
        self.tmp_path = Path(self.tmpdir.name)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_find_containers_recursive(self) -> None:
        (self.tmp_path / "a" / "b").mkdir(parents=True)
        for name in ("one.ncm", "a/two.NCM", "a/b/three.ncm", "a/notes.txt"):
            (self.tmp_path / name).write_bytes(b"")
        found = find_containers(self.tmp_path)
        self.assertEqual(
            sorted(p.name for p in found),
            ["one.ncm", "three.ncm", "two.NCM"],
        )

    def test_find_containers_single_file(self) -> None:
        path = self.tmp_path / "song.ncm"
        path.write_bytes(b"")
        self.assertEqual(find_containers(str(path)), [path])
        other = self.tmp_path / "song.mp3"
        other.write_bytes(b"")
        self.assertEqual(find_containers(other), [])

    def test_find_containers_missing(self) -> None:
        with self.assertRaises(FileNotFoundError):
            find_containers(self.tmp_path / "missing")

    def test_sniffing(self) -> None:
        self.assertEqual(sniff_audio_format(b"fLaC\x00\x00"), "flac")
        self.assertEqual(sniff_audio_format(b"ID3\x04"), "mp3")
        self.assertEqual(sniff_audio_format(b""), "mp3")
        self.assertEqual(sniff_image_extension(PNG_IMAGE), "png")
        self.assertEqual(sniff_image_extension(JPEG_IMAGE), "jpg")


class CommandTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = TemporaryDirectory()
        self.tmp_path = Path(self.tmpdir.name)
        self.input_path = self.tmp_path / "input"
        self.input_path.mkdir()
        self.output_path = self.tmp_path / "output"
        self.runner = CliRunner()

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def _write(self, name: str, **kwargs) -> Path:
        path = self.input_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(build_container(**kwargs))
        return path

    def test_dump_writes_audio_and_cover(self) -> None:
        audio = b"fLaC" + os.urandom(1000)
        self._write("song.ncm", metadata=SAMPLE_METADATA, image=PNG_IMAGE, audio=audio)

        result = self.runner.invoke(app, ["dump", str(self.input_path), "-o", str(self.output_path)])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual((self.output_path / "song.flac").read_bytes(), audio)
        self.assertEqual((self.output_path / "song.png").read_bytes(), PNG_IMAGE)

    def test_dump_sniffs_format_without_metadata(self) -> None:
        audio = b"ID3" + os.urandom(200)
        self._write("nested/plain.ncm", metadata=None, image=JPEG_IMAGE, audio=audio)

        result = self.runner.invoke(app, ["dump", str(self.input_path), "-o", str(self.output_path), "-w", "1"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual((self.output_path / "nested" / "plain.mp3").read_bytes(), audio)
        self.assertEqual((self.output_path / "nested" / "plain.jpg").read_bytes(), JPEG_IMAGE)

    def test_dump_keeps_same_stems_apart(self) -> None:
        self._write("a/song.ncm", metadata={"format": "mp3"}, audio=b"AAAA")
        self._write("b/song.ncm", metadata={"format": "mp3"}, audio=b"BBBB")

        result = self.runner.invoke(app, ["dump", str(self.input_path), "-o", str(self.output_path)])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual((self.output_path / "a" / "song.mp3").read_bytes(), b"AAAA")
        self.assertEqual((self.output_path / "b" / "song.mp3").read_bytes(), b"BBBB")

    def test_dump_single_file_writes_into_output_root(self) -> None:
        path = self._write("deep/dir/song.ncm", metadata={"format": "mp3"}, audio=b"abc")

        result = self.runner.invoke(app, ["dump", str(path), "-o", str(self.output_path)])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual((self.output_path / "song.mp3").read_bytes(), b"abc")

    def test_dump_ignores_unsafe_format(self) -> None:
        for name, fmt in (("nul", "mp3\x00"), ("traversal", "../x"), ("dotted", "mp3.exe")):
            self._write(f"{name}.ncm", metadata={"format": fmt}, audio=b"fLaC" + name.encode())
        self._write("good.ncm", metadata={"format": "mp3"}, audio=b"good")

        result = self.runner.invoke(
            app, ["dump", str(self.input_path), "-o", str(self.output_path), "-w", "1"]
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Done: 4 succeeded, 0 failed.", result.output)
        self.assertEqual((self.output_path / "nul.flac").read_bytes(), b"fLaCnul")
        self.assertEqual((self.output_path / "traversal.flac").read_bytes(), b"fLaCtraversal")
        self.assertEqual((self.output_path / "dotted.flac").read_bytes(), b"fLaCdotted")
        self.assertEqual((self.output_path / "good.mp3").read_bytes(), b"good")
        self.assertFalse((self.tmp_path / "x").exists())

    def test_dump_no_cover(self) -> None:
        self._write("song.ncm", metadata=SAMPLE_METADATA, image=PNG_IMAGE, audio=b"fLaC")

        result = self.runner.invoke(
            app, ["dump", str(self.input_path), "-o", str(self.output_path), "--no-cover"]
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertTrue((self.output_path / "song.flac").exists())
        self.assertFalse((self.output_path / "song.png").exists())

    def test_dump_empty_image_writes_no_cover(self) -> None:
        self._write("song.ncm", metadata={"format": "mp3"}, image=b"", audio=b"abc")

        result = self.runner.invoke(app, ["dump", str(self.input_path), "-o", str(self.output_path)])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual([p.name for p in self.output_path.iterdir()], ["song.mp3"])

    def test_dump_continues_after_failure(self) -> None:
        self._write("good.ncm", metadata=SAMPLE_METADATA, audio=b"fLaC1234")
        (self.input_path / "bad.ncm").write_bytes(b"NOTANNCMFILE")

        result = self.runner.invoke(app, ["dump", str(self.input_path), "-o", str(self.output_path)])
        self.assertEqual(result.exit_code, 1)
        self.assertTrue((self.output_path / "good.flac").exists())
        self.assertFalse((self.output_path / "bad.mp3").exists())

    def test_dump_without_containers(self) -> None:
        result = self.runner.invoke(app, ["dump", str(self.input_path), "-o", str(self.output_path)])
        self.assertEqual(result.exit_code, 1)

    def test_list(self) -> None:
        first = self._write("a.ncm")
        second = self._write("sub/b.ncm")

        result = self.runner.invoke(app, ["list", str(self.input_path)])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(result.stdout.splitlines(), [str(first), str(second)])

    def test_list_missing_path(self) -> None:
        result = self.runner.invoke(app, ["list", str(self.tmp_path / "missing")])
        self.assertEqual(result.exit_code, 1)

    def test_info(self) -> None:
        path = self._write("song.ncm", metadata=SAMPLE_METADATA, image=PNG_IMAGE, audio=b"fLaC")

        result = self.runner.invoke(app, ["info", str(path)])
        self.assertEqual(result.exit_code, 0, result.output)
        record_text = result.stdout.split("Cover image:")[0]
        self.assertEqual(orjson.loads(record_text), SAMPLE_METADATA)
        self.assertIn(f"Cover image: {len(PNG_IMAGE)} bytes", result.stdout)
        self.assertIn("Audio: 4 bytes (flac)", result.stdout)

    def test_info_bad_file(self) -> None:
        path = self.input_path / "bad.ncm"
        path.write_bytes(b"CTENFDAM")

        result = self.runner.invoke(app, ["info", str(path)])
        self.assertEqual(result.exit_code, 1)


if __name__ == "__main__":
    unittest.main()
