"""Pydantic models passed between the host document and the pipeline."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DiagramBlock(BaseModel):
    """A code block as supplied by the host document.

    The first class selects the engine; everything else is carried through
    untouched when the block is not converted.
    """

    model_config = ConfigDict(frozen=True)

    identifier: str = ""
    classes: list[str] = Field(default_factory=list)
    text: str
    attributes: dict[str, str] = Field(default_factory=dict)

    @property
    def diagram_type(self) -> str | None:
        return self.classes[0] if self.classes else None


class RenderOptions(BaseModel):
    """Options for one block after merging in-code directives and attributes."""

    caption: str | None = None
    alt: str | None = None
    filename: str | None = None
    figure_attributes: dict[str, str] = Field(default_factory=dict)
    image_attributes: dict[str, str] = Field(default_factory=dict)
    engine_options: dict[str, str] = Field(default_factory=dict)

    @property
    def identifier(self) -> str:
        return self.figure_attributes.get("id", "")


class RenderResult(BaseModel):
    """Rendered image data ready to be registered with the host."""

    engine: str
    data: bytes
    mime_type: str
    filename: str
    source_hash: str
    cached: bool = False
    converted: bool = False
    options: RenderOptions = Field(default_factory=RenderOptions)


class ImageNode(BaseModel):
    src: str
    alt: Any = ""
    title: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)


class FigureNode(BaseModel):
    """Replacement for a converted code block."""

    image: ImageNode
    caption: Any = None
    identifier: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)
