"""Minimal Markdown host: fenced code blocks in, image figures out.

Only fenced code blocks are recognised; everything else in the document is
treated as opaque text and written back unchanged.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from codefig.models import DiagramBlock, FigureNode
from codefig.pipeline import DiagramPipeline

_FENCE_OPEN_RE = re.compile(r"^(?P<indent> {0,3})(?P<fence>`{3,}|~{3,})[ \t]*(?P<info>.*?)[ \t]*$")

_ATTR_TOKEN_RE = re.compile(
    r"""
    \#(?P<id>[^\s}]+)
    | \.(?P<cls>[^\s}]+)
    | (?P<key>[^\s="'}]+)=(?:"(?P<dq>(?:\\.|[^"\\])*)"|'(?P<sq>[^']*)'|(?P<bare>[^\s}]+))
    | (?P<word>[^\s{}]+)
    """,
    re.VERBOSE,
)


def parse_attributes(info: str) -> tuple[str, list[str], dict[str, str]]:
    """Parse a fence info string into (identifier, classes, attributes).

    Accepts a bare language (`dot`), a pandoc attribute block
    (`{#fig-a .dot width=50% caption="A graph"}`) or both (`dot {#fig-a}`).
    """
    identifier = ""
    classes: list[str] = []
    attributes: dict[str, str] = {}

    info = info.strip()
    brace = info.find("{")
    if brace > 0:
        classes.append(info[:brace].strip())
        info = info[brace:]
    elif brace < 0 and info:
        return "", [info.split()[0]], {}
    info = info.strip().lstrip("{").rstrip("}")

    for m in _ATTR_TOKEN_RE.finditer(info):
        if m.group("id"):
            identifier = m.group("id")
        elif m.group("cls"):
            classes.append(m.group("cls"))
        elif m.group("key"):
            if m.group("dq") is not None:
                value = re.sub(r"\\(.)", r"\1", m.group("dq"))
            elif m.group("sq") is not None:
                value = m.group("sq")
            else:
                value = m.group("bare")
            attributes[m.group("key")] = value
        elif m.group("word"):
            classes.append(m.group("word"))
    return identifier, [c for c in classes if c], attributes


@dataclass
class FencedBlock:
    block: DiagramBlock
    raw: str


class MarkdownDocument:
    """A Markdown text split into opaque chunks and fenced code blocks."""

    def __init__(self, parts: list[str | FencedBlock]) -> None:
        self.parts = parts

    @classmethod
    def from_text(cls, text: str) -> MarkdownDocument:
        parts: list[str | FencedBlock] = []
        lines = text.splitlines(keepends=True)
        chunk: list[str] = []
        i = 0
        while i < len(lines):
            m = _FENCE_OPEN_RE.match(lines[i].rstrip("\r\n"))
            if m is None or (m.group("fence")[0] == "`" and "`" in m.group("info")):
                chunk.append(lines[i])
                i += 1
                continue

            fence, indent = m.group("fence"), len(m.group("indent"))
            close_re = re.compile(
                r"^ {0,3}" + re.escape(fence[0]) + "{" + str(len(fence)) + r",}[ \t]*$"
            )
            end = i + 1
            while end < len(lines) and not close_re.match(lines[end].rstrip("\r\n")):
                end += 1
            if end >= len(lines):
                # unterminated fence: keep the rest as plain text
                chunk.extend(lines[i:])
                break

            if chunk:
                parts.append("".join(chunk))
                chunk = []
            # diagram source always uses \n line endings
            body = "\n".join(_dedent(line.rstrip("\r\n"), indent) for line in lines[i + 1:end])
            identifier, classes, attributes = parse_attributes(m.group("info"))
            block = DiagramBlock(
                identifier=identifier, classes=classes, text=body, attributes=attributes
            )
            parts.append(FencedBlock(block=block, raw="".join(lines[i:end + 1])))
            i = end + 1

        if chunk:
            parts.append("".join(chunk))
        return cls(parts)

    @property
    def blocks(self) -> list[DiagramBlock]:
        return [p.block for p in self.parts if isinstance(p, FencedBlock)]

    def render(self, pipeline: DiagramPipeline, asset_prefix: str = "") -> str:
        """Run every fenced block through *pipeline* and return the new text."""
        out: list[str] = []
        for part in self.parts:
            if isinstance(part, str):
                out.append(part)
                continue
            node = pipeline.process(part.block)
            if isinstance(node, FigureNode):
                out.append(figure_to_markdown(node, asset_prefix) + "\n")
            else:
                out.append(part.raw)
        return "".join(out)


def figure_to_markdown(figure: FigureNode, asset_prefix: str = "") -> str:
    """Pandoc-flavoured image syntax; an image alone in a paragraph is a figure."""
    src = f"{asset_prefix.rstrip('/')}/{figure.image.src}" if asset_prefix else figure.image.src
    alt = str(figure.image.alt or "")
    label = " ".join(figure.caption) if figure.caption else alt

    attrs: list[str] = []
    if figure.identifier:
        attrs.append(f"#{figure.identifier}")
    if figure.caption and alt and alt != label:
        attrs.append(f"fig-alt={_quote(alt)}")
    for key, value in {**figure.attributes, **figure.image.attributes}.items():
        attrs.append(f"{key}={_quote(value)}")

    suffix = "{" + " ".join(attrs) + "}" if attrs else ""
    return f"![{label}]({src}){suffix}"


def _quote(value: str) -> str:
    if value and re.fullmatch(r"[\w.%/-]+", value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _dedent(line: str, width: int) -> str:
    i = 0
    while i < width and i < len(line) and line[i] == " ":
        i += 1
    return line[i:]
