"""Tests for codefig.pipeline: block to figure conversion end to end."""

import hashlib
import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from codefig.cache import ContentCache, source_hash
from codefig.config.models import CacheConfig, CodefigConfig
from codefig.engines.registry import EngineRegistry
from codefig.errors import (
    ConversionError,
    DiagramRenderError,
    EngineExecutionError,
    UnknownOutputFormatError,
)
from codefig.formats import PDF, PNG, SVG
from codefig.models import DiagramBlock, FigureNode
from codefig.pipeline import DiagramPipeline, output_filename
from tests.conftest import TEST_ENGINES, RecordingEngine, completed


@pytest.fixture
def converter():
    conv = MagicMock()
    conv.convert.return_value = b"<svg>converted</svg>"
    return conv


def make_pipeline(config=None, *, converter=None, media=None, cache=None):
    config = config or CodefigConfig()
    return DiagramPipeline(
        config,
        registry=EngineRegistry(config, builtins=TEST_ENGINES),
        cache=cache,
        assets=media,
        converter=converter or MagicMock(),
    )


def block(tag, text, identifier="", **attributes):
    return DiagramBlock(identifier=identifier, classes=[tag], text=text, attributes=attributes)


# ---------------------------------------------------------------------------
# output_filename
# ---------------------------------------------------------------------------


class TestOutputFilename:
    def test_hash_of_image_bytes(self):
        data = b"<svg/>"
        assert output_filename(None, data, SVG) == hashlib.sha1(data).hexdigest() + ".svg"

    def test_explicit_name_gets_extension(self):
        assert output_filename("flow", b"x", PNG) == "flow.png"

    def test_explicit_extension_kept(self):
        assert output_filename("figures/flow.svg", b"x", SVG) == "figures/flow.svg"

    def test_unknown_mime_type(self):
        with pytest.raises(UnknownOutputFormatError):
            output_filename(None, b"x", "image/webp", "fake")


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


class TestProcess:
    def test_converts_to_figure(self, media, fake_block):
        pipeline = make_pipeline(media=media)
        figure = pipeline.process(fake_block)

        assert isinstance(figure, FigureNode)
        data = b"<image/svg+xml>A -> B"
        expected = hashlib.sha1(data).hexdigest() + ".svg"
        assert figure.image.src == expected
        assert media.get(expected).data == data
        assert media.get(expected).mime_type == SVG
        assert pipeline.report.converted == 1

    def test_engine_receives_negotiated_type(self, media):
        pipeline = make_pipeline(CodefigConfig(format="latex"), media=media)
        pipeline.process(block("fake", "A"))
        engine = pipeline.registry.resolve("fake").engine
        # fake offers SVG and PNG; LaTeX prefers PDF then PNG
        assert engine.calls[0][1] == PNG

    def test_untagged_block_passes_through(self, media):
        pipeline = make_pipeline(media=media)
        plain = DiagramBlock(text="print('hi')")
        assert pipeline.process(plain) is plain

    def test_unknown_tag_left_unchanged(self, media):
        pipeline = make_pipeline(media=media)
        python_block = block("python", "print('hi')")
        with patch(
            "codefig.engines.registry.importlib.metadata.entry_points", return_value=[]
        ), patch("codefig.engines.registry.importlib.import_module", side_effect=ImportError):
            assert pipeline.process(python_block) is python_block
        assert len(media) == 0
        assert pipeline.report.converted == 0
        assert pipeline.report.errors == []

    def test_engine_options_from_config_and_block(self, media):
        config = CodefigConfig(engines={"fake": {"options": {"scale": "1", "theme": "dark"}}})
        pipeline = make_pipeline(config, media=media)
        pipeline.process(block("fake", "//| opt-scale: 2\nA -> B"))
        engine = pipeline.registry.resolve("fake").engine
        assert engine.calls[0][2] == {"scale": "2", "theme": "dark"}

    def test_explicit_filename(self, media):
        pipeline = make_pipeline(media=media)
        figure = pipeline.process(block("fake", "A -> B", filename="overview"))
        assert figure.image.src == "overview.svg"
        assert "overview.svg" in media

    def test_process_all_keeps_order(self, media):
        pipeline = make_pipeline(media=media)
        blocks = [block("fake", "A"), DiagramBlock(text="plain"), block("fake", "B")]
        out = pipeline.process_all(blocks)
        assert isinstance(out[0], FigureNode)
        assert out[1] is blocks[1]
        assert isinstance(out[2], FigureNode)

    def test_render_returns_result(self, media):
        pipeline = make_pipeline(media=media)
        result = pipeline.render(block("fake", "A -> B"))
        assert result.engine == "fake"
        assert result.mime_type == SVG
        assert result.source_hash == source_hash("A -> B")
        assert result.cached is False

    def test_render_unknown_returns_none(self, media):
        pipeline = make_pipeline(media=media)
        assert pipeline.render(DiagramBlock(text="x")) is None


class TestDotExample:
    def test_digraph_to_svg(self, media, converter):
        config = CodefigConfig()
        svg = b'<svg xmlns="http://www.w3.org/2000/svg"><g id="graph0"/></svg>'
        pipeline = DiagramPipeline(
            config, cache=ContentCache(None), assets=media, converter=converter
        )
        dot_block = DiagramBlock(classes=["dot"], text="digraph { a -> b }")
        with patch("codefig.process.subprocess.run", return_value=completed(svg)) as run:
            figure = pipeline.process(dot_block)

        assert run.call_args.args[0] == ["dot", "-Tsvg"]
        assert run.call_args.kwargs["input"] == b"digraph { a -> b }"
        assert figure.image.src == hashlib.sha1(svg).hexdigest() + ".svg"
        assert media.get(figure.image.src).data == svg
        converter.convert.assert_not_called()


class TestTikZPackages:
    def test_additional_packages_attribute_reaches_template(self, media):
        captured = {}

        def fake_run(command, **kwargs):
            tex_file = Path(command[-1])
            captured["tex"] = tex_file.read_text()
            (tex_file.parent / "tikz-image.pdf").write_bytes(b"%PDF")
            return completed()

        config = CodefigConfig(format="latex")
        pipeline = DiagramPipeline(config, cache=ContentCache(None), assets=media)
        tikz = block("tikz", r"\tikz \node {$x$};", additionalPackages=r"\usepackage{amsmath}")
        with patch("codefig.process.subprocess.run", side_effect=fake_run):
            figure = pipeline.process(tikz)

        assert r"\usepackage{amsmath}" in captured["tex"]
        assert "additionalPackages" not in figure.image.attributes
        assert figure.image.src.endswith(".pdf")


# ---------------------------------------------------------------------------
# PDF handling
# ---------------------------------------------------------------------------


class TestPdfConversion:
    def test_pdf_only_engine_converted_for_html(self, media, converter):
        pipeline = make_pipeline(media=media, converter=converter)
        figure = pipeline.process(block("pdfonly", r"\draw (0,0) -- (1,1);"))

        converter.convert.assert_called_once_with(b"<application/pdf>\\draw (0,0) -- (1,1);")
        assert figure.image.src.endswith(".svg")
        item = media.get(figure.image.src)
        assert item.mime_type == SVG
        assert item.data == b"<svg>converted</svg>"

    def test_pdf_kept_for_latex(self, media, converter):
        pipeline = make_pipeline(CodefigConfig(format="latex"), media=media, converter=converter)
        figure = pipeline.process(block("pdfonly", "x"))
        converter.convert.assert_not_called()
        assert figure.image.src.endswith(".pdf")
        assert media.get(figure.image.src).mime_type == PDF

    def test_conversion_failure_follows_policy(self, media, converter, caplog):
        converter.convert.side_effect = ConversionError("pdf2svg", "inkscape missing")
        pipeline = make_pipeline(media=media, converter=converter)
        original = block("pdfonly", "x")
        with caplog.at_level(logging.WARNING, logger="codefig"):
            assert pipeline.process(original) is original
        assert len(media) == 0
        assert "inkscape missing" in caplog.text

    def test_cached_pdf_is_still_converted(self, tmp_path, media, converter):
        cache = ContentCache(tmp_path)
        pipeline = make_pipeline(media=media, converter=converter, cache=cache)
        pipeline.process(block("pdfonly", "x"))
        pipeline.process(block("pdfonly", "x"))
        assert converter.convert.call_count == 2
        # the cache holds the engine's own output, not the conversion
        assert len(list(tmp_path.glob("*.pdf"))) == 1


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class TestCaching:
    def test_second_render_hits_cache(self, cached_config, media):
        pipeline = DiagramPipeline(
            cached_config,
            registry=EngineRegistry(cached_config, builtins=TEST_ENGINES),
            assets=media,
            converter=MagicMock(),
        )
        first = pipeline.render(block("fake", "A -> B"))
        second = pipeline.render(block("fake", "A -> B"))

        engine = pipeline.registry.resolve("fake").engine
        assert len(engine.calls) == 1
        assert first.data == second.data
        assert second.cached is True
        assert pipeline.report.cached == 1
        assert pipeline.report.converted == 2

    def test_without_cache_engine_runs_each_time(self, media):
        pipeline = make_pipeline(media=media, cache=ContentCache(None))
        pipeline.render(block("fake", "A -> B"))
        pipeline.render(block("fake", "A -> B"))
        engine = pipeline.registry.resolve("fake").engine
        assert len(engine.calls) == 2

    def test_cache_survives_pipelines(self, tmp_path):
        config = CodefigConfig(cache=CacheConfig(enabled=True, directory=str(tmp_path)))
        make_pipeline(config).render(block("fake", "A -> B"))
        second = make_pipeline(config)
        result = second.render(block("fake", "A -> B"))
        assert result.cached is True
        assert second.registry.resolve("fake").engine.calls == []

    def test_cache_default_off(self, media):
        pipeline = DiagramPipeline(CodefigConfig(), assets=media)
        assert pipeline.cache.enabled is False

    def test_same_source_under_two_engines(self, tmp_path, media, converter):
        pipeline = make_pipeline(media=media, converter=converter, cache=ContentCache(tmp_path))
        first = pipeline.render(block("fake", "x"))
        second = pipeline.render(block("pdfonly", "x"))
        assert first.cached is False
        assert second.cached is False
        assert len(pipeline.registry.resolve("pdfonly").engine.calls) == 1
        converter.convert.assert_called_once_with(b"<application/pdf>x")

    def test_changed_engine_options_miss_the_cache(self, tmp_path):
        def config(scale):
            return CodefigConfig(
                cache=CacheConfig(enabled=True, directory=str(tmp_path)),
                engines={"fake": {"options": {"scale": scale}}},
            )

        make_pipeline(config("1")).render(block("fake", "A -> B"))
        again = make_pipeline(config("1")).render(block("fake", "A -> B"))
        rescaled = make_pipeline(config("2"))
        result = rescaled.render(block("fake", "A -> B"))
        assert again.cached is True
        assert result.cached is False
        assert len(rescaled.registry.resolve("fake").engine.calls) == 1


# ---------------------------------------------------------------------------
# Failure policy
# ---------------------------------------------------------------------------


class TestFailurePolicy:
    def test_warn_keeps_block_and_logs_once(self, media, caplog):
        pipeline = make_pipeline(media=media)
        broken = block("broken", "A ->", identifier="fig-bad")
        with caplog.at_level(logging.WARNING, logger="codefig"):
            assert pipeline.process(broken) is broken

        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "broken" in warnings[0].getMessage()
        assert "#fig-bad" in warnings[0].getMessage()
        assert "syntax error on line 1" in warnings[0].getMessage()
        assert len(media) == 0
        assert pipeline.report.skipped == 1
        assert pipeline.report.errors[0].identifier == "fig-bad"

    def test_abort_raises(self, media):
        pipeline = make_pipeline(CodefigConfig(on_error="abort"), media=media)
        with pytest.raises(EngineExecutionError) as exc_info:
            pipeline.process(block("broken", "A ->"))
        assert exc_info.value.returncode == 3
        assert pipeline.report.errors[0].engine == "broken"

    def test_failure_does_not_stop_later_blocks(self, media):
        pipeline = make_pipeline(media=media)
        out = pipeline.process_all([block("broken", "x"), block("fake", "y")])
        assert isinstance(out[0], DiagramBlock)
        assert isinstance(out[1], FigureNode)

    def test_unexpected_plugin_exception_is_wrapped(self, media):
        class Exploding(RecordingEngine):
            name = "exploding"

            def compile(self, code, mime_type, options):
                raise KeyError("layout")

        pipeline = make_pipeline(CodefigConfig(on_error="abort"), media=media)
        pipeline.registry.register(Exploding)
        with pytest.raises(DiagramRenderError) as exc_info:
            pipeline.process(block("exploding", "x"))
        assert isinstance(exc_info.value.__cause__, KeyError)

    def test_unknown_output_type_rejected(self, media):
        class Webp(RecordingEngine):
            name = "webp"

            def compile(self, code, mime_type, options):
                return b"RIFF", "image/webp"

        pipeline = make_pipeline(CodefigConfig(on_error="abort"), media=media)
        pipeline.registry.register(Webp)
        with pytest.raises(UnknownOutputFormatError):
            pipeline.process(block("webp", "x"))
        assert len(media) == 0

    def test_render_always_raises(self, media):
        pipeline = make_pipeline(media=media)
        with pytest.raises(EngineExecutionError):
            pipeline.render(block("broken", "x"))

    def test_failing_tikz_block_warns_once_with_exit_status(self, media, caplog):
        pipeline = DiagramPipeline(
            CodefigConfig(), cache=ContentCache(None), assets=media, converter=MagicMock()
        )
        tikz = block("tikz", r"\tikz \foo;", identifier="fig-tikz")
        proc = completed(returncode=1, stdout=b"! Undefined control sequence.")
        with patch("codefig.process.subprocess.run", return_value=proc):
            with caplog.at_level(logging.WARNING, logger="codefig"):
                assert pipeline.process(tikz) is tikz

        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        message = warnings[0].getMessage()
        assert "exit status 1" in message
        assert "Undefined control sequence" in message
        assert len(media) == 0

    def test_failing_tikz_block_aborts_with_exit_status(self, media):
        config = CodefigConfig(on_error="abort")
        pipeline = DiagramPipeline(config, cache=ContentCache(None), assets=media)
        proc = completed(returncode=1, stdout=b"! Emergency stop.")
        with patch("codefig.process.subprocess.run", return_value=proc):
            with pytest.raises(EngineExecutionError) as exc_info:
                pipeline.process(block("tikz", r"\tikz \foo;"))
        assert exc_info.value.returncode == 1


# ---------------------------------------------------------------------------
# Figures
# ---------------------------------------------------------------------------


class TestFigure:
    def test_caption_and_derived_alt(self, media):
        pipeline = make_pipeline(media=media)
        figure = pipeline.process(block("fake", "//| fig-cap: A *small* graph\nA -> B"))
        assert figure.caption == ["A *small* graph"]
        assert figure.image.alt == "A small graph"

    def test_explicit_alt_wins(self, media):
        pipeline = make_pipeline(media=media)
        figure = pipeline.process(
            block("fake", "A -> B", caption="Overview", alt="Two boxes and an arrow")
        )
        assert figure.caption == ["Overview"]
        assert figure.image.alt == "Two boxes and an arrow"

    def test_no_caption(self, media):
        figure = make_pipeline(media=media).process(block("fake", "A -> B"))
        assert figure.caption is None
        assert figure.image.alt == ""

    def test_identifier_and_attributes(self, media):
        pipeline = make_pipeline(media=media)
        figure = pipeline.process(
            block(
                "fake",
                "//| label: fig-x\nA -> B",
                label="fig-y",
                width="50%",
                **{"fig-align": "center"},
            )
        )
        assert figure.identifier == "fig-y"
        assert figure.attributes == {"align": "center"}
        assert figure.image.attributes == {"width": "50%"}

    def test_block_identifier(self, media):
        figure = make_pipeline(media=media).process(block("fake", "A", identifier="fig-arch"))
        assert figure.identifier == "fig-arch"

    def test_custom_caption_reader(self, media):
        reader = MagicMock()
        reader.read_blocks.return_value = ["<p>Hi</p>"]
        reader.to_inlines.return_value = "Hi"
        config = CodefigConfig()
        pipeline = DiagramPipeline(
            config,
            registry=EngineRegistry(config, builtins=TEST_ENGINES),
            assets=media,
            captions=reader,
            converter=MagicMock(),
        )
        figure = pipeline.process(block("fake", "A", caption="*Hi*"))
        reader.read_blocks.assert_called_once_with("*Hi*")
        assert figure.caption == ["<p>Hi</p>"]
        assert figure.image.alt == "Hi"
