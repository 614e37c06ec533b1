"""codefig: render diagram code blocks into figures through external engines."""

from codefig.cache import ContentCache, cache_key, source_hash
from codefig.config import CodefigConfig, load_config
from codefig.engines import Engine, EngineRegistry, EngineSpec
from codefig.errors import (
    ConversionError,
    DiagramError,
    DiagramRenderError,
    EngineExecutionError,
    EngineNotFoundError,
    EngineOutputError,
    EngineTimeoutError,
    ExecutableNotFoundError,
    UnknownOutputFormatError,
)
from codefig.host import AssetStore, CaptionReader, MediaBag, PlainCaptionReader
from codefig.models import DiagramBlock, FigureNode, ImageNode, RenderOptions, RenderResult
from codefig.pipeline import DiagramPipeline

__all__ = [
    "AssetStore",
    "CaptionReader",
    "CodefigConfig",
    "ContentCache",
    "ConversionError",
    "DiagramBlock",
    "DiagramError",
    "DiagramPipeline",
    "DiagramRenderError",
    "Engine",
    "EngineExecutionError",
    "EngineNotFoundError",
    "EngineOutputError",
    "EngineRegistry",
    "EngineSpec",
    "EngineTimeoutError",
    "ExecutableNotFoundError",
    "FigureNode",
    "ImageNode",
    "MediaBag",
    "PlainCaptionReader",
    "RenderOptions",
    "RenderResult",
    "UnknownOutputFormatError",
    "cache_key",
    "load_config",
    "source_hash",
]
