"""Block options from in-code comment directives and block attributes.

A diagram can carry its options inside the source, one per line, behind the
engine's line comment marker::

    %%| caption: Request flow
    %%| width: 60%

Block attributes are applied on top, so they win on conflicts.
"""

from __future__ import annotations

import re

from codefig.models import DiagramBlock, RenderOptions

_PREFIXED_KEY_RE = re.compile(r"^([A-Za-z]+)-([A-Za-z][-\w]*)$")

# Attribute spellings that are engine options without the `opt-` prefix
_ENGINE_OPTION_ALIASES = {"additionalPackages": "additional-packages"}


def _directive_pattern(comment_start: str) -> re.Pattern[str]:
    return re.compile(
        r"^[ \t]*" + re.escape(comment_start) + r"\| ([-_A-Za-z0-9]+): ([^\n]*?)[ \t]*$",
        re.MULTILINE,
    )


def properties_from_code(code: str, comment_start: str | None) -> dict[str, str]:
    """Collect `<comment_start>| key: value` lines from diagram source."""
    if not comment_start:
        return {}
    props: dict[str, str] = {}
    for key, value in _directive_pattern(comment_start).findall(code):
        if key == "fig-cap":
            props["caption"] = value
        else:
            props[key] = value
    return props


def merge_options(block: DiagramBlock, comment_start: str | None) -> dict[str, str]:
    """In-code directives overlaid with block attributes (last writer wins)."""
    merged = properties_from_code(block.text, comment_start)
    merged.update(block.attributes)
    return merged


def parse_options(
    block: DiagramBlock,
    comment_start: str | None,
    defaults: dict[str, str] | None = None,
) -> RenderOptions:
    """Sort merged options into caption, figure, image and engine groups.

    `defaults` are engine options from the configuration; per-block `opt-*`
    values override them.
    """
    options = RenderOptions(engine_options=dict(defaults or {}))
    figure = options.figure_attributes
    image = options.image_attributes

    for key, value in merge_options(block, comment_start).items():
        if key in ("caption", "fig-cap"):
            options.caption = value
        elif key == "alt":
            options.alt = value
        elif key == "filename":
            options.filename = value
        elif key == "label":
            figure["id"] = value
        elif key in _ENGINE_OPTION_ALIASES:
            options.engine_options[_ENGINE_OPTION_ALIASES[key]] = value
        elif key == "name":
            figure["name"] = value
        else:
            match = _PREFIXED_KEY_RE.match(key)
            prefix, name = match.groups() if match else (None, None)
            if prefix == "fig":
                figure[name] = value
            elif prefix == "opt":
                options.engine_options[name] = value
            elif prefix in ("img", "image"):
                image[name] = value
            else:
                image[key] = value

    if block.identifier:
        figure["id"] = block.identifier
    return options
