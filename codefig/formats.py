"""Output format negotiation between host documents and engines."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from codefig.errors import ConversionError, DiagramError, UnknownOutputFormatError
from codefig.process import pipe, temporary_directory

logger = logging.getLogger(__name__)

PDF = "application/pdf"
SVG = "image/svg+xml"
PNG = "image/png"
JPEG = "image/jpeg"

_EXTENSIONS: dict[str, str] = {
    PDF: "pdf",
    SVG: "svg",
    PNG: "png",
    JPEG: "jpg",
}

KNOWN_MIME_TYPES: frozenset[str] = frozenset(_EXTENSIONS)

_MIME_TYPES: dict[str, str] = {
    "pdf": PDF,
    "svg": SVG,
    "png": PNG,
    "jpg": JPEG,
    "jpeg": JPEG,
}

# Host formats that can embed PDF images directly
PDF_FORMATS: frozenset[str] = frozenset({"latex", "beamer", "context"})

# Order used when an engine supports none of the host's preferred types
_FALLBACK_ORDER = (PDF, SVG, PNG, JPEG)


def extension_for_mime_type(mime_type: str, engine: str | None = None) -> str:
    try:
        return _EXTENSIONS[mime_type]
    except KeyError:
        raise UnknownOutputFormatError(engine, mime_type) from None


def mime_type_for_extension(extension: str) -> str | None:
    return _MIME_TYPES.get(extension.lower().lstrip("."))


def accepts_pdf(host_format: str) -> bool:
    """Whether documents of this format can embed PDF images natively."""
    return host_format.lower() in PDF_FORMATS


def preferred_mime_types(host_format: str) -> list[str]:
    """Image types in the order a host format would like to receive them."""
    if accepts_pdf(host_format):
        return [PDF, PNG]
    return [SVG, PNG]


def choose_mime_type(supported: Iterable[str], preferred: Iterable[str]) -> str | None:
    """First preferred type the engine can produce, or None."""
    available = set(supported)
    for mime_type in preferred:
        if mime_type in available:
            return mime_type
    return None


def negotiate(supported: Iterable[str], host_format: str) -> str | None:
    """Pick the type to request from an engine for a given host format.

    Falls back to whatever the engine can produce when none of the preferred
    types are available; a PDF result is converted afterwards.
    """
    supported = list(supported)
    chosen = choose_mime_type(supported, preferred_mime_types(host_format))
    if chosen is not None:
        return chosen
    return choose_mime_type(supported, _FALLBACK_ORDER)


def needs_pdf_conversion(mime_type: str, host_format: str) -> bool:
    return mime_type == PDF and not accepts_pdf(host_format)


class PdfToSvgConverter:
    """Converts PDF bytes to plain SVG with Inkscape."""

    DEFAULT_EXECUTABLE = "inkscape"

    def __init__(self, execpath: str | None = None, timeout: float | None = None) -> None:
        self.execpath = execpath or self.DEFAULT_EXECUTABLE
        self.timeout = timeout

    def convert(self, data: bytes) -> bytes:
        """Return SVG bytes for a PDF document. Raises ConversionError."""
        with temporary_directory("codefig-pdf2svg") as tmpdir:
            pdf_file = Path(tmpdir) / "diagram.pdf"
            pdf_file.write_bytes(data)
            args = [
                "--export-type=svg",
                "--export-plain-svg",
                "--export-filename=-",
                str(pdf_file),
            ]
            try:
                svg = pipe(
                    "pdf2svg", self.execpath, args, b"", cwd=tmpdir, timeout=self.timeout
                )
            except DiagramError as exc:
                raise ConversionError("pdf2svg", f"PDF to SVG conversion failed: {exc.message}") from exc
        logger.debug("converted %d bytes of PDF to %d bytes of SVG", len(data), len(svg))
        return svg
