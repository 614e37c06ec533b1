"""Interfaces to the host document model, plus small in-memory defaults."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class MediaItem(BaseModel):
    """A binary asset registered by the pipeline."""

    model_config = ConfigDict(frozen=True)

    filename: str
    mime_type: str
    data: bytes


@runtime_checkable
class AssetStore(Protocol):
    """Where rendered images end up (pandoc's mediabag, a directory, ...)."""

    def insert(self, filename: str, mime_type: str, data: bytes) -> None: ...


@runtime_checkable
class CaptionReader(Protocol):
    """Turns caption markup into the host's block and inline content."""

    def read_blocks(self, markup: str) -> Any: ...

    def to_inlines(self, blocks: Any) -> Any: ...


class MediaBag:
    """In-memory AssetStore keyed by filename."""

    def __init__(self) -> None:
        self._items: dict[str, MediaItem] = {}

    def insert(self, filename: str, mime_type: str, data: bytes) -> None:
        self._items[filename] = MediaItem(filename=filename, mime_type=mime_type, data=data)

    def get(self, filename: str) -> MediaItem | None:
        return self._items.get(filename)

    def items(self) -> list[MediaItem]:
        return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, filename: object) -> bool:
        return filename in self._items

    def write_to(self, directory: str | Path) -> list[Path]:
        """Dump every asset into *directory*. Returns the written paths."""
        target = Path(directory)
        target.mkdir(parents=True, exist_ok=True)
        written = []
        for item in self._items.values():
            dest = target / item.filename
            # filenames come from block attributes; keep them inside the target
            if not dest.resolve().is_relative_to(target.resolve()):
                raise ValueError(f"Asset path escapes output directory: {item.filename}")
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(item.data)
            logger.info("wrote %s (%d bytes)", dest, len(item.data))
            written.append(dest)
        return written


_LINK_RE = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")
_EMPHASIS_RE = re.compile(r"(\*{1,3}|_{1,3}|~~)(.+?)\1")
_CODE_RE = re.compile(r"`([^`]*)`")


class PlainCaptionReader:
    """CaptionReader for hosts without a Markdown reader.

    Blocks are the caption's paragraphs as strings; the inline form is a
    single line of plain text with link, emphasis and code markup removed.
    """

    def read_blocks(self, markup: str) -> list[str]:
        paragraphs = re.split(r"\n\s*\n", markup.strip())
        return [" ".join(p.split()) for p in paragraphs if p.strip()]

    def to_inlines(self, blocks: list[str]) -> str:
        text = " ".join(blocks)
        text = _LINK_RE.sub(r"\1", text)
        text = _CODE_RE.sub(r"\1", text)
        text = _EMPHASIS_RE.sub(r"\2", text)
        return text
