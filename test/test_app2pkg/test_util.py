import logging
import os
import tempfile
import unittest
from pathlib import Path

import pytest

from app2pkg.errors import StagingError, ToolError
from app2pkg.util import ToolRunner, copy_path, first_plist, fresh_dir, remove_path, xml_escape


class TestToolRunner(unittest.TestCase):
    def setUp(self):
        self.runner = ToolRunner(logging.getLogger("test.util"))

    def test_merges_stdout_and_stderr(self):
        result = self.runner.run(["sh", "-c", "echo out; echo err 1>&2"])
        self.assertTrue(result.ok)
        self.assertIn("out", result.output)
        self.assertIn("err", result.output)

    def test_reports_exit_status(self):
        result = self.runner.run(["sh", "-c", "exit 3"])
        self.assertFalse(result.ok)
        self.assertEqual(result.returncode, 3)

    def test_check_raises_with_details(self):
        with self.assertRaises(ToolError) as ctx:
            self.runner.check(["sh", "-c", "echo boom; exit 2"])
        self.assertEqual(ctx.exception.returncode, 2)
        self.assertIn("boom", ctx.exception.output)
        self.assertEqual(ctx.exception.cmd[0], "sh")

    def test_missing_executable(self):
        with self.assertRaises(ToolError):
            self.runner.run(["/nonexistent/app2pkg-tool"])

    def test_command_is_logged(self):
        with self.assertLogs("test.util", level="INFO") as logs:
            self.runner.run(["echo", "hi"])
        self.assertTrue(any("+ echo hi" in line for line in logs.output))


@pytest.mark.asyncio
async def test_run_async():
    runner = ToolRunner()
    result = await runner.run_async(["sh", "-c", "echo async; exit 0"])
    assert result.ok
    assert result.output.strip() == "async"


@pytest.mark.asyncio
async def test_check_async_raises():
    runner = ToolRunner()
    with pytest.raises(ToolError) as excinfo:
        await runner.check_async(["sh", "-c", "exit 5"])
    assert excinfo.value.returncode == 5


class TestHelpers(unittest.TestCase):
    def test_xml_escape(self):
        self.assertEqual(xml_escape('A & B <"x">'), "A &amp; B &lt;&quot;x&quot;&gt;")

    def test_first_plist_skips_noise(self):
        text = "noise\n<?xml version=\"1.0\"?><plist><dict/></plist>\ntrailer <?xml?><plist/>"
        self.assertEqual(first_plist(text), '<?xml version="1.0"?><plist><dict/></plist>')

    def test_first_plist_missing(self):
        self.assertEqual(first_plist("no plist here"), "")
        self.assertEqual(first_plist("<?xml truncated"), "")

    def test_copy_and_remove(self):
        with tempfile.TemporaryDirectory() as td:
            base = Path(td)
            src = base / "src"
            (src / "sub").mkdir(parents=True)
            (src / "sub" / "f.txt").write_text("x")
            os.symlink("sub/f.txt", src / "link")

            dst = base / "out" / "dst"
            dst.mkdir(parents=True)
            (dst / "stale").write_text("old")

            copy_path(src, dst)
            self.assertFalse((dst / "stale").exists())
            self.assertEqual((dst / "sub" / "f.txt").read_text(), "x")
            self.assertTrue((dst / "link").is_symlink())

            remove_path(dst)
            self.assertFalse(dst.exists())
            remove_path(dst)

    def test_fresh_dir_empties(self):
        with tempfile.TemporaryDirectory() as td:
            d = Path(td) / "scratch"
            d.mkdir()
            (d / "old").write_text("x")
            fresh_dir(d)
            self.assertEqual(list(d.iterdir()), [])

    def test_copy_missing_source(self):
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(StagingError):
                copy_path(Path(td) / "missing", Path(td) / "dst")


if __name__ == "__main__":
    unittest.main()
