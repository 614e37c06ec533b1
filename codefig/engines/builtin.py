"""Engines shipped with codefig."""

from __future__ import annotations

import logging
from pathlib import Path
from string import Template

from codefig.engines.base import Engine
from codefig.errors import EngineExecutionError
from codefig.formats import JPEG, PDF, PNG, SVG, extension_for_mime_type
from codefig.process import read_output, temporary_directory

logger = logging.getLogger(__name__)


class PlantUMLEngine(Engine):
    name = "plantuml"
    executable = "plantuml"
    line_comment_start = "'"
    mime_types = frozenset({PDF, PNG, SVG})
    default_mime_type = SVG

    def compile(self, code, mime_type, options):
        mime_type = self.output_mime_type(mime_type)
        # PlantUML format identifiers match the usual file extensions
        fmt = extension_for_mime_type(mime_type, self.name)
        return self.run([f"-t{fmt}", "-pipe", "-charset", "UTF8"], code), mime_type


class GraphvizEngine(Engine):
    name = "dot"
    executable = "dot"
    line_comment_start = "//"
    mime_types = frozenset({JPEG, PDF, PNG, SVG})
    default_mime_type = SVG

    def compile(self, code, mime_type, options):
        mime_type = self.output_mime_type(mime_type)
        fmt = extension_for_mime_type(mime_type, self.name)
        return self.run([f"-T{fmt}"], code), mime_type


class MermaidEngine(Engine):
    name = "mermaid"
    executable = "mmdc"
    line_comment_start = "%%"
    mime_types = frozenset({PDF, PNG, SVG})
    default_mime_type = SVG

    def compile(self, code, mime_type, options):
        mime_type = self.output_mime_type(mime_type)
        ext = extension_for_mime_type(mime_type, self.name)
        with temporary_directory("codefig-mermaid") as tmpdir:
            infile = Path(tmpdir) / "diagram.mmd"
            outfile = Path(tmpdir) / f"diagram.{ext}"
            infile.write_text(code, encoding="utf-8")
            self.run(
                ["--pdfFit", "--input", infile.name, "--output", outfile.name],
                cwd=tmpdir,
                allow_empty=True,
            )
            return read_output(self.name, outfile), mime_type


TIKZ_TEMPLATE = Template(
    r"""\documentclass{standalone}
\usepackage{tikz}
$header_includes
$additional_packages
\begin{document}
$body
\end{document}
"""
)


class TikZEngine(Engine):
    name = "tikz"
    executable = "pdflatex"
    line_comment_start = "%"
    mime_types = frozenset({PDF})
    default_mime_type = PDF

    def compile(self, code, mime_type, options):
        tex = TIKZ_TEMPLATE.substitute(
            header_includes=options.get("header-includes", ""),
            additional_packages=options.get("additional-packages", ""),
            body=code,
        )
        with temporary_directory("codefig-tikz") as tmpdir:
            tex_file = Path(tmpdir) / "tikz-image.tex"
            pdf_file = Path(tmpdir) / "tikz-image.pdf"
            tex_file.write_text(tex, encoding="utf-8")
            failure = None
            try:
                self.run(
                    ["-interaction=nonstopmode", "-output-directory", tmpdir, str(tex_file)],
                    cwd=tmpdir,
                    allow_empty=True,
                )
            except EngineExecutionError as exc:
                if exc.returncode is None:
                    raise
                failure = exc
            if failure is not None:
                # LaTeX exits non-zero on recoverable errors; a usable PDF may still exist.
                if not pdf_file.is_file() or pdf_file.stat().st_size == 0:
                    raise failure
                logger.warning("pdflatex reported errors: %s", failure.message)
            return read_output(self.name, pdf_file), PDF


class AsymptoteEngine(Engine):
    name = "asymptote"
    executable = "asy"
    line_comment_start = "//"
    mime_types = frozenset({PDF})
    default_mime_type = PDF

    def compile(self, code, mime_type, options):
        with temporary_directory("codefig-asymptote") as tmpdir:
            self.run(
                ["-tex", "pdflatex", "-o", "codefig_diagram", "-"],
                code,
                cwd=tmpdir,
                allow_empty=True,
            )
            return read_output(self.name, Path(tmpdir) / "codefig_diagram.pdf"), PDF


CETZ_PREAMBLE = (
    '#import "@preview/cetz:0.2.2"\n'
    "#set page(width: auto, height: auto, margin: .5cm)\n"
)


class CeTZEngine(Engine):
    name = "cetz"
    executable = "typst"
    line_comment_start = "//"
    mime_types = frozenset({PDF, PNG, SVG})
    default_mime_type = SVG

    def compile(self, code, mime_type, options):
        mime_type = self.output_mime_type(mime_type)
        ext = extension_for_mime_type(mime_type, self.name)
        with temporary_directory("codefig-cetz") as tmpdir:
            outfile = Path(tmpdir) / f"diagram.{ext}"
            self.run(
                ["compile", "-", outfile.name],
                CETZ_PREAMBLE + code,
                cwd=tmpdir,
                allow_empty=True,
            )
            return read_output(self.name, outfile), mime_type


BUILTIN_ENGINES: dict[str, type[Engine]] = {
    cls.name: cls
    for cls in (
        AsymptoteEngine,
        CeTZEngine,
        GraphvizEngine,
        MermaidEngine,
        PlantUMLEngine,
        TikZEngine,
    )
}
