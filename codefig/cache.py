"""Content-addressed cache for rendered diagrams."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import sys
import tempfile
from collections.abc import Mapping
from pathlib import Path

from codefig.config.models import CacheConfig
from codefig.errors import UnknownOutputFormatError
from codefig.formats import (
    KNOWN_MIME_TYPES,
    PDF,
    PNG,
    SVG,
    extension_for_mime_type,
    mime_type_for_extension,
)

logger = logging.getLogger(__name__)

CACHE_DIR_NAME = "codefig"

# Probe order for entries written without a metadata record
_PROBE_ORDER = (PDF, SVG, PNG)

# `<key>.<ext>`, or `.<key>.<ext>.<random>` for an unfinished atomic write
_ENTRY_RE = re.compile(r"^(?P<tmp>\.)?[0-9a-f]{40}\.(?P<ext>[a-z]+)(?(tmp)\.\w+)$")


def source_hash(text: str) -> str:
    """SHA-1 of the diagram source."""
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def cache_key(
    text: str,
    engine: str,
    mime_type: str = "",
    options: Mapping[str, str] | None = None,
) -> str:
    """SHA-1 of the source salted with everything else that shapes the image.

    Rendering the same text with a different engine or different options
    gives a different key.
    """
    digest = hashlib.sha1()
    digest.update(f"{engine}\0{mime_type}\0".encode("utf-8"))
    for name, value in sorted((options or {}).items()):
        digest.update(f"{name}={value}\0".encode("utf-8"))
    digest.update(text.encode("utf-8"))
    return digest.hexdigest()


def default_cache_dir(environ: dict[str, str] | None = None) -> Path | None:
    """Platform cache location, or None when no home directory is known."""
    env = os.environ if environ is None else environ
    cache_home = env.get("XDG_CACHE_HOME")
    if not cache_home:
        user_home = env.get("USERPROFILE" if sys.platform == "win32" else "HOME")
        if not user_home:
            return None
        cache_home = str(Path(user_home) / ".cache")
    return Path(cache_home) / CACHE_DIR_NAME


def resolve_cache_root(config: CacheConfig, environ: dict[str, str] | None = None) -> Path | None:
    """Explicit directory > platform default > None (caching disabled)."""
    if config.directory:
        return Path(config.directory).expanduser()
    return default_cache_dir(environ)


class ContentCache:
    """Stores rendered images as `<root>/<sha1>.<ext>`.

    A cache without a root is disabled: every lookup misses and writes are
    dropped. Nothing in here raises on I/O trouble; a broken cache only
    costs a re-render.
    """

    def __init__(self, root: Path | None) -> None:
        self.root = root

    @classmethod
    def from_config(cls, config: CacheConfig, environ: dict[str, str] | None = None) -> ContentCache:
        if not config.enabled:
            return cls(None)
        root = resolve_cache_root(config, environ)
        if root is None:
            logger.warning("No cache directory could be determined; image cache disabled")
        return cls(root)

    @property
    def enabled(self) -> bool:
        return self.root is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, key: str) -> tuple[bytes, str] | None:
        if self.root is None:
            return None

        for mime_type in self._candidate_types(key):
            path = self.root / f"{key}.{extension_for_mime_type(mime_type)}"
            try:
                data = path.read_bytes()
            except OSError:
                continue
            if data:
                logger.debug("cache hit %s", path.name)
                return data, mime_type
        logger.debug("cache miss %s", key)
        return None

    def put(self, key: str, data: bytes, mime_type: str) -> Path | None:
        if self.root is None:
            return None

        try:
            ext = extension_for_mime_type(mime_type)
        except UnknownOutputFormatError:
            logger.warning("Not caching %s: unknown MIME type %s", key, mime_type)
            return None

        path = self.root / f"{key}.{ext}"
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            _atomic_write(path, data)
            _atomic_write(
                self._meta_path(key),
                json.dumps({"mime_type": mime_type, "size_bytes": len(data)}).encode(),
            )
        except OSError:
            logger.warning("Failed to write cache entry %s", path, exc_info=True)
            return None
        return path

    def clear(self) -> int:
        """Delete every cache entry. Returns the number of images removed.

        Only files this cache writes are touched: `<sha1>.<ext>` images,
        their `.json` sidecars and leftover temp files from interrupted
        writes. Anything else sharing the directory is left alone.
        """
        if self.root is None or not self.root.is_dir():
            return 0
        removed = 0
        for path in self.root.iterdir():
            match = _ENTRY_RE.match(path.name)
            if match is None or not path.is_file():
                continue
            ext = match.group("ext")
            if ext != "json" and mime_type_for_extension(ext) is None:
                continue
            try:
                path.unlink()
            except OSError:
                logger.warning("Could not remove %s", path, exc_info=True)
                continue
            if ext != "json" and not match.group("tmp"):
                removed += 1
        return removed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _meta_path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def _candidate_types(self, key: str) -> list[str]:
        try:
            meta = json.loads(self._meta_path(key).read_text())
        except (OSError, ValueError):
            return list(_PROBE_ORDER)
        mime_type = meta.get("mime_type") if isinstance(meta, dict) else None
        if mime_type not in KNOWN_MIME_TYPES:
            return list(_PROBE_ORDER)
        # recorded type first; probing still covers entries from older writers
        return [mime_type, *[m for m in _PROBE_ORDER if m != mime_type]]


def _atomic_write(path: Path, data: bytes) -> None:
    """Write to a sibling temp file, then rename over the target."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise
