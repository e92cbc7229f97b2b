"""
Process runner and small filesystem helpers shared by every build stage.

Every external tool (hdiutil, ditto, tar, pkgbuild, productbuild, file, ...)
goes through ToolRunner so the command line and its merged output end up in
the log whatever the outcome.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .errors import StagingError, ToolError

PathLike = Union[str, os.PathLike]


@dataclass(frozen=True)
class ToolResult:
    cmd: List[str]
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _format_cmd(cmd: Sequence[PathLike]) -> List[str]:
    return [str(c) for c in cmd]


class ToolRunner:
    """Runs external commands, waits for them, reports exit status.

    Output from stdout and stderr is merged. There are no retries and no
    timeouts: a hung tool hangs the caller.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def _log_result(self, result: ToolResult) -> None:
        name = os.path.basename(result.cmd[0]) if result.cmd else "?"
        if result.ok:
            self.logger.debug("%s output: %s", name, result.output.strip())
        else:
            self.logger.error("%s exited with %d: %s", name, result.returncode, result.output.strip())

    def run(self, cmd: Sequence[PathLike]) -> ToolResult:
        args = _format_cmd(cmd)
        self.logger.info("+ %s", " ".join(args))
        try:
            proc = subprocess.run(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
            )
        except OSError as e:
            self.logger.error("failed to launch %s: %s", args[0], e)
            raise ToolError(f"failed to launch {args[0]}: {e}", cmd=args) from e
        result = ToolResult(cmd=args, returncode=proc.returncode, output=proc.stdout or "")
        self._log_result(result)
        return result

    async def run_async(self, cmd: Sequence[PathLike]) -> ToolResult:
        """Same contract as run(), but suspends the calling task instead of a thread."""
        args = _format_cmd(cmd)
        self.logger.info("+ %s", " ".join(args))
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            self.logger.error("failed to launch %s: %s", args[0], e)
            raise ToolError(f"failed to launch {args[0]}: {e}", cmd=args) from e
        out, _ = await proc.communicate()
        result = ToolResult(
            cmd=args,
            returncode=proc.returncode if proc.returncode is not None else -1,
            output=(out or b"").decode("utf-8", errors="replace"),
        )
        self._log_result(result)
        return result

    def check(self, cmd: Sequence[PathLike]) -> ToolResult:
        result = self.run(cmd)
        if not result.ok:
            raise ToolError(
                f"{os.path.basename(result.cmd[0])} failed with exit code {result.returncode}",
                cmd=result.cmd,
                returncode=result.returncode,
                output=result.output,
            )
        return result

    async def check_async(self, cmd: Sequence[PathLike]) -> ToolResult:
        result = await self.run_async(cmd)
        if not result.ok:
            raise ToolError(
                f"{os.path.basename(result.cmd[0])} failed with exit code {result.returncode}",
                cmd=result.cmd,
                returncode=result.returncode,
                output=result.output,
            )
        return result


def xml_escape(s: str) -> str:
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def first_plist(text: str) -> str:
    """Return the first `<?xml ... </plist>` block in tool output, or ""."""
    header = "<?xml"
    footer = "</plist>"
    start = text.find(header)
    if start == -1:
        return ""
    end = text.find(footer, start + len(header))
    if end == -1:
        return ""
    return text[start : end + len(footer)]


def remove_path(path: Path) -> None:
    if not path.exists() and not path.is_symlink():
        return
    try:
        if path.is_symlink() or path.is_file():
            path.unlink()
        else:
            shutil.rmtree(path)
    except OSError as e:
        raise StagingError(f"failed to remove {path}: {e}") from e


def copy_path(src: Path, dst: Path) -> None:
    """Copy a file or a directory tree to dst, replacing whatever is there."""
    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        if dst.exists() or dst.is_symlink():
            remove_path(dst)
        if src.is_dir() and not src.is_symlink():
            shutil.copytree(src, dst, symlinks=True)
        else:
            shutil.copy2(src, dst, follow_symlinks=False)
    except OSError as e:
        raise StagingError(f"failed to copy {src} -> {dst}: {e}") from e


def fresh_dir(path: Path) -> Path:
    remove_path(path)
    try:
        path.mkdir(parents=True)
    except OSError as e:
        raise StagingError(f"failed to create {path}: {e}") from e
    return path
