"""Running external rendering programs."""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from codefig.errors import (
    EngineExecutionError,
    EngineOutputError,
    EngineTimeoutError,
    ExecutableNotFoundError,
)

logger = logging.getLogger(__name__)


def pipe(
    engine: str | None,
    executable: str,
    args: list[str],
    input: bytes | str,
    *,
    cwd: str | Path | None = None,
    timeout: float | None = None,
    allow_empty: bool = False,
) -> bytes:
    """Run `executable args...`, feed *input* on stdin and return stdout.

    Every failure is reported as an EngineExecutionError subclass carrying
    the engine name, so callers never see raw subprocess exceptions.
    """
    if isinstance(input, str):
        input = input.encode("utf-8")
    command = [executable, *args]
    logger.debug("running %s", " ".join(command))
    try:
        proc = subprocess.run(
            command,
            input=input,
            capture_output=True,
            cwd=cwd,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as exc:
        raise ExecutableNotFoundError(engine, executable) from exc
    except subprocess.TimeoutExpired as exc:
        raise EngineTimeoutError(engine, command, timeout or 0) from exc
    except OSError as exc:
        raise EngineExecutionError(
            engine, f"failed to execute {executable!r}: {exc}", command=command
        ) from exc

    if proc.returncode != 0:
        raise EngineExecutionError(
            engine,
            f"{executable} failed",
            command=command,
            returncode=proc.returncode,
            stderr=proc.stderr or proc.stdout,
        )
    if not proc.stdout and not allow_empty:
        raise EngineOutputError(engine, f"{executable} produced no output")
    return proc.stdout


@contextmanager
def temporary_directory(prefix: str) -> Iterator[str]:
    """Scratch directory for one engine run, removed on success and failure."""
    tmpdir = tempfile.mkdtemp(prefix=f"{prefix}-")
    try:
        yield tmpdir
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


def read_output(engine: str | None, path: Path) -> bytes:
    """Read an engine's output file, treating a missing or empty file as malformed output."""
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise EngineOutputError(engine, f"expected output file {path.name} was not created") from exc
    if not data:
        raise EngineOutputError(engine, f"output file {path.name} is empty")
    return data
