"""Shared utility functions.

Small helpers used across multiple modules: atomic file writing, delivery
id generation, and async shell execution.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import secrets
from asyncio.subprocess import PIPE
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


def write_json_atomic(path: Path, data: Any, *, indent: int | None = None) -> None:
    """Write JSON data to a file using atomic rename (tmp → final).

    Ensures the target file is never partially written: readers either
    see the old content or the complete new content.

    Creates parent directories if they don't exist.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=indent))
    tmp.replace(path)


def now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


def generate_delivery_id(prefix: str = "imsg") -> str:
    """``{prefix}-{ms_timestamp}-{random}``, unique per inbound event."""
    return f"{prefix}-{now_ms()}-{secrets.token_hex(3)}"


@dataclass
class ProcessResult:
    """Result of a subprocess execution."""

    returncode: int | None
    stdout: str
    stderr: str
    timed_out: bool = False
    start_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and self.start_error is None


async def run_process(
    *args: str,
    stdin: str | None = None,
    shell: bool = False,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    timeout_seconds: float = 30,
) -> ProcessResult:
    """Run a subprocess with timeout and structured result.

    Shared by the osascript sender and the command pipeline.  ``shell=True``
    takes a single command string in ``args[0]``.  ``env`` is layered on top
    of the current environment.
    """
    stdin_pipe = PIPE if stdin is not None else None
    full_env = {**os.environ, **env} if env else None
    try:
        if shell:
            process = await asyncio.create_subprocess_shell(
                args[0], cwd=cwd, env=full_env, stdin=stdin_pipe, stdout=PIPE, stderr=PIPE
            )
        else:
            process = await asyncio.create_subprocess_exec(
                *args, cwd=cwd, env=full_env, stdin=stdin_pipe, stdout=PIPE, stderr=PIPE
            )
    except OSError as exc:
        return ProcessResult(returncode=None, stdout="", stderr="", start_error=str(exc))

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(stdin.encode() if stdin is not None else None),
            timeout=timeout_seconds,
        )
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        with contextlib.suppress(Exception):
            await process.communicate()
        return ProcessResult(returncode=None, stdout="", stderr="", timed_out=True)
    except Exception as exc:
        return ProcessResult(returncode=None, stdout="", stderr="", start_error=str(exc))

    return ProcessResult(
        returncode=process.returncode,
        stdout=stdout.decode(errors="replace").strip(),
        stderr=stderr.decode(errors="replace").strip(),
    )
