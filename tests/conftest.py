"""Shared test fixtures for codefig."""

import logging
import subprocess

import pytest

from codefig.config.models import CacheConfig, CodefigConfig
from codefig.engines.base import Engine
from codefig.errors import EngineExecutionError
from codefig.formats import PDF, PNG, SVG
from codefig.engines.registry import EngineRegistry
from codefig.host import MediaBag
from codefig.models import DiagramBlock


class RecordingEngine(Engine):
    """Echoes its input back as 'image data' and remembers every call."""

    name = "fake"
    executable = "fake-bin"
    line_comment_start = "//"
    mime_types = frozenset({SVG, PNG})
    default_mime_type = SVG

    def __init__(self, execpath=None, timeout=None):
        super().__init__(execpath, timeout)
        self.calls = []

    def compile(self, code, mime_type, options):
        self.calls.append((code, mime_type, dict(options)))
        mime_type = self.output_mime_type(mime_type)
        return f"<{mime_type}>{code}".encode(), mime_type


class PdfOnlyEngine(RecordingEngine):
    name = "pdfonly"
    line_comment_start = "%"
    mime_types = frozenset({PDF})
    default_mime_type = PDF


class FailingEngine(RecordingEngine):
    name = "broken"

    def compile(self, code, mime_type, options):
        self.calls.append((code, mime_type, dict(options)))
        raise EngineExecutionError(
            self.name, "broken-bin failed", command=["broken-bin"], returncode=3,
            stderr="syntax error on line 1",
        )


TEST_ENGINES = {
    "fake": RecordingEngine,
    "pdfonly": PdfOnlyEngine,
    "broken": FailingEngine,
}


@pytest.fixture
def sample_config():
    return CodefigConfig()


@pytest.fixture
def cached_config(tmp_path):
    return CodefigConfig(cache=CacheConfig(enabled=True, directory=str(tmp_path / "cache")))


@pytest.fixture
def test_registry(sample_config):
    return EngineRegistry(sample_config, builtins=TEST_ENGINES)


@pytest.fixture
def media():
    return MediaBag()


@pytest.fixture
def fake_block():
    return DiagramBlock(classes=["fake"], text="A -> B")


def completed(stdout=b"", returncode=0, stderr=b""):
    """Stand-in for subprocess.run's return value."""
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture(autouse=True)
def _reset_codefig_logger():
    """Undo setup_logging() so caplog sees records in every test."""
    yield
    logger = logging.getLogger("codefig")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
