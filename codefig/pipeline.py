"""Turns diagram code blocks into figures."""

from __future__ import annotations

import hashlib
import logging
from pathlib import PurePosixPath

from pydantic import BaseModel

from codefig.cache import ContentCache, cache_key, source_hash
from codefig.config.models import CodefigConfig
from codefig.engines.base import EngineSpec
from codefig.engines.registry import EngineRegistry
from codefig.errors import DiagramError, DiagramRenderError, EngineOutputError
from codefig.formats import (
    SVG,
    PdfToSvgConverter,
    extension_for_mime_type,
    needs_pdf_conversion,
    negotiate,
)
from codefig.host import AssetStore, CaptionReader, MediaBag, PlainCaptionReader
from codefig.models import DiagramBlock, FigureNode, ImageNode, RenderResult
from codefig.options import parse_options

logger = logging.getLogger(__name__)


class RenderError(BaseModel):
    engine: str
    identifier: str = ""
    error: str


class RenderReport(BaseModel):
    converted: int = 0
    cached: int = 0
    skipped: int = 0
    errors: list[RenderError] = []


def output_filename(explicit: str | None, data: bytes, mime_type: str, engine: str | None = None) -> str:
    """Explicit filename (keeping its extension) or the SHA-1 of the image bytes."""
    name = explicit or hashlib.sha1(data).hexdigest()
    if PurePosixPath(name).suffix:
        return name
    return f"{name}.{extension_for_mime_type(mime_type, engine)}"


class DiagramPipeline:
    """Renders diagram blocks one at a time, in document order.

    Blocks whose first class names no engine are handed back untouched.
    Engine failures follow `config.on_error`: with "warn" the original block
    is kept and a warning logged; with "abort" the error propagates and the
    run stops.
    """

    def __init__(
        self,
        config: CodefigConfig | None = None,
        *,
        registry: EngineRegistry | None = None,
        cache: ContentCache | None = None,
        assets: AssetStore | None = None,
        captions: CaptionReader | None = None,
        converter: PdfToSvgConverter | None = None,
    ) -> None:
        self.config = config or CodefigConfig()
        self.registry = registry or EngineRegistry(self.config)
        self.cache = cache if cache is not None else ContentCache.from_config(self.config.cache)
        self.assets = assets if assets is not None else MediaBag()
        self.captions = captions or PlainCaptionReader()
        self.converter = converter or PdfToSvgConverter(
            self.config.pdf_converter.execpath, self.config.pdf_converter.timeout
        )
        self.report = RenderReport()

    @property
    def host_format(self) -> str:
        return self.config.format

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(self, block: DiagramBlock) -> FigureNode | DiagramBlock:
        """Replace *block* with a figure, or return it unchanged."""
        spec = self._resolve(block)
        if spec is None:
            return block

        try:
            result = self._render(block, spec)
        except DiagramError as exc:
            return self._handle_failure(block, spec, exc)
        except Exception as exc:
            # plugin engines may raise anything
            return self._handle_failure(block, spec, DiagramRenderError(spec.name, exc))

        return self._build_figure(result)

    def process_all(self, blocks: list[DiagramBlock]) -> list[FigureNode | DiagramBlock]:
        return [self.process(block) for block in blocks]

    def render(self, block: DiagramBlock) -> RenderResult | None:
        """Render and register the image for *block* without building a figure.

        Returns None for blocks no engine handles. Errors always propagate.
        """
        spec = self._resolve(block)
        if spec is None:
            return None
        return self._render(block, spec)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _resolve(self, block: DiagramBlock) -> EngineSpec | None:
        tag = block.diagram_type
        return self.registry.resolve(tag) if tag else None

    def _render(self, block: DiagramBlock, spec: EngineSpec) -> RenderResult:
        options = parse_options(block, spec.line_comment_start, spec.options)
        requested = negotiate(spec.mime_types, self.host_format)
        key = cache_key(block.text, spec.name, requested or "", options.engine_options)

        cached = self.cache.get(key)
        if cached is not None:
            data, mime_type = cached
            logger.debug("using cached %s image for %s", spec.name, key)
        else:
            data, mime_type = spec.compile(block.text, requested, options.engine_options)
            if not data:
                raise EngineOutputError(spec.name, "engine returned no image data")
            # validates the type before anything is written
            extension_for_mime_type(mime_type, spec.name)
            self.cache.put(key, data, mime_type)

        converted = False
        if needs_pdf_conversion(mime_type, self.host_format):
            data, mime_type, converted = self.converter.convert(data), SVG, True

        filename = output_filename(options.filename, data, mime_type, spec.name)
        self.assets.insert(filename, mime_type, data)

        self.report.converted += 1
        if cached is not None:
            self.report.cached += 1
        return RenderResult(
            engine=spec.name,
            data=data,
            mime_type=mime_type,
            filename=filename,
            source_hash=source_hash(block.text),
            cached=cached is not None,
            converted=converted,
            options=options,
        )

    def _build_figure(self, result: RenderResult) -> FigureNode:
        options = result.options
        caption = self.captions.read_blocks(options.caption) if options.caption else None
        if options.alt is not None:
            alt = options.alt
        elif caption is not None:
            alt = self.captions.to_inlines(caption)
        else:
            alt = ""

        figure_attributes = dict(options.figure_attributes)
        identifier = figure_attributes.pop("id", "")
        image = ImageNode(src=result.filename, alt=alt, attributes=options.image_attributes)
        return FigureNode(
            image=image,
            caption=caption,
            identifier=identifier,
            attributes=figure_attributes,
        )

    def _handle_failure(
        self, block: DiagramBlock, spec: EngineSpec, exc: DiagramError
    ) -> DiagramBlock:
        self.report.errors.append(
            RenderError(engine=spec.name, identifier=block.identifier, error=str(exc))
        )
        if self.config.on_error == "abort":
            raise exc
        self.report.skipped += 1
        where = f" #{block.identifier}" if block.identifier else ""
        logger.warning("Could not convert %s diagram%s: %s", spec.name, where, exc.message)
        return block
