"""Engine interface and the resolved engine record shared by the pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

from codefig.process import pipe


class Engine(ABC):
    """Converts diagram source text into image data by calling an external tool.

    Subclasses declare what they can produce through class attributes and
    implement `compile`. An engine that only supports a single output type
    returns that type whatever was requested.
    """

    name: ClassVar[str] = ""
    executable: ClassVar[str] = ""
    line_comment_start: ClassVar[str | None] = None
    mime_types: ClassVar[frozenset[str]] = frozenset()
    default_mime_type: ClassVar[str | None] = None

    def __init__(self, execpath: str | None = None, timeout: float | None = None) -> None:
        self.execpath = execpath or self.executable
        self.timeout = timeout

    @abstractmethod
    def compile(
        self, code: str, mime_type: str | None, options: dict[str, str]
    ) -> tuple[bytes, str]:
        """Render *code*. Returns (image bytes, actual MIME type)."""
        ...

    def output_mime_type(self, requested: str | None) -> str:
        """The type this engine will actually produce for a request."""
        if requested and requested in self.mime_types:
            return requested
        if self.default_mime_type:
            return self.default_mime_type
        return next(iter(sorted(self.mime_types)))

    def run(
        self, args: list[str], input: bytes | str = b"", *, cwd: str | Path | None = None,
        allow_empty: bool = False,
    ) -> bytes:
        return pipe(
            self.name,
            self.execpath,
            args,
            input,
            cwd=cwd,
            timeout=self.timeout,
            allow_empty=allow_empty,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(execpath={self.execpath!r})"


@dataclass(frozen=True)
class EngineSpec:
    """An engine as configured for one run: what the registry hands out."""

    name: str
    engine: Engine
    mime_types: frozenset[str]
    line_comment_start: str | None = None
    options: dict[str, str] = field(default_factory=dict)

    def compile(
        self, code: str, mime_type: str | None, options: dict[str, str]
    ) -> tuple[bytes, str]:
        return self.engine.compile(code, mime_type, options)
