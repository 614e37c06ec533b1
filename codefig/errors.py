"""Error taxonomy for diagram rendering."""

from __future__ import annotations

_STDERR_LIMIT = 240


def abbreviate(text: str | bytes | None, limit: int = _STDERR_LIMIT) -> str:
    """Trim tool output to something that fits in a log line."""
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    text = text.strip()
    if len(text) > limit:
        return text[:limit] + "..."
    return text


class DiagramError(Exception):
    """Base class for everything that can go wrong while rendering a diagram."""

    def __init__(self, engine: str | None, message: str) -> None:
        self.engine = engine
        self.message = message
        prefix = f"{engine}: " if engine else ""
        super().__init__(f"{prefix}{message}")


class EngineNotFoundError(DiagramError):
    """Raised when a diagram type has no registered or loadable engine."""

    def __init__(self, name: str) -> None:
        super().__init__(name, f"no diagram engine found for '{name}'")


class EngineExecutionError(DiagramError):
    """The external program behind an engine failed."""

    def __init__(
        self,
        engine: str | None,
        message: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str | bytes | None = None,
    ) -> None:
        self.command = command or []
        self.returncode = returncode
        self.stderr = abbreviate(stderr)
        detail = message
        if returncode is not None:
            detail += f" (exit status {returncode})"
        if self.stderr:
            detail += f": {self.stderr}"
        super().__init__(engine, detail)


class ExecutableNotFoundError(EngineExecutionError):
    """The engine binary could not be started."""

    def __init__(self, engine: str | None, executable: str) -> None:
        self.executable = executable
        super().__init__(
            engine,
            f"engine binary not found: {executable!r}",
            command=[executable],
        )


class EngineTimeoutError(EngineExecutionError):
    """The engine binary did not exit within the configured timeout."""

    def __init__(self, engine: str | None, command: list[str], timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            engine,
            f"engine timed out after {timeout:g}s",
            command=command,
        )


class EngineOutputError(DiagramError):
    """The engine exited cleanly but produced unusable output."""


class UnknownOutputFormatError(DiagramError):
    """The engine returned data with a MIME type we cannot place in a document."""

    def __init__(self, engine: str | None, mime_type: str | None) -> None:
        self.mime_type = mime_type
        super().__init__(engine, f"unknown output MIME type: {mime_type!r}")


class ConversionError(DiagramError):
    """Converting rendered output to another image format failed."""


class DiagramRenderError(DiagramError):
    """Wraps unexpected exceptions raised by third-party engines."""

    def __init__(self, engine: str | None, cause: Exception) -> None:
        super().__init__(engine, f"render failed: {cause}")
        self.__cause__ = cause
