"""Engine lookup with lazy plugin loading and memoised misses."""

from __future__ import annotations

import copy
import importlib
import importlib.metadata
import logging
from enum import Enum

from codefig.config.models import CodefigConfig, EngineConfig
from codefig.engines.base import Engine, EngineSpec
from codefig.engines.builtin import BUILTIN_ENGINES
from codefig.errors import EngineNotFoundError

logger = logging.getLogger(__name__)


class LookupState(str, Enum):
    """Where a diagram type stands in the registry."""

    unresolved = "unresolved"
    loaded = "loaded"
    not_found = "not_found"


class EngineRegistry:
    """Maps diagram type tags to configured engines.

    Built-in engines are set up eagerly. Any other tag is looked up once, on
    first use: an entry point named after the tag in the `codefig.engines`
    group, or an importable `codefig_<tag>` module (or the module named by the
    engine's `package` setting) exposing an `engine` attribute. The outcome,
    found or not, is remembered for the lifetime of the registry so documents
    with many blocks of an unsupported type only pay for the import once.
    """

    GROUP = "codefig.engines"
    MODULE_PREFIX = "codefig_"

    def __init__(
        self,
        config: CodefigConfig | None = None,
        builtins: dict[str, type[Engine]] | None = None,
    ) -> None:
        self._config = config or CodefigConfig()
        # missing key = unresolved, None = not found
        self._entries: dict[str, EngineSpec | None] = {}
        for name, engine_cls in (BUILTIN_ENGINES if builtins is None else builtins).items():
            settings = self._config.engine(name)
            if settings.package:
                # an explicit package replaces the built-in; load it lazily
                continue
            self._entries[name] = self._configure(name, engine_cls, settings)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(self, tag: str) -> EngineSpec | None:
        """Return the engine for *tag*, or None if there is none."""
        if not tag:
            return None
        if tag in self._entries:
            return self._entries[tag]

        spec = None
        settings = self._config.engine(tag)
        if settings.enabled:
            loaded = self._load_external(tag, settings)
            if loaded is not None:
                spec = self._configure(tag, loaded, settings)
        if spec is None and settings.enabled and tag in self._config.engines:
            logger.warning("Diagram engine '%s' is configured but could not be loaded", tag)
        elif spec is not None:
            logger.debug("loaded diagram engine '%s' (%r)", tag, spec.engine)
        self._entries[tag] = spec
        return spec

    def require(self, tag: str) -> EngineSpec:
        spec = self.resolve(tag)
        if spec is None:
            raise EngineNotFoundError(tag)
        return spec

    def state(self, tag: str) -> LookupState:
        if tag not in self._entries:
            return LookupState.unresolved
        if self._entries[tag] is None:
            return LookupState.not_found
        return LookupState.loaded

    def register(self, engine: Engine | type[Engine], name: str | None = None) -> EngineSpec | None:
        """Add or replace an engine programmatically."""
        tag = name or engine.name
        if not tag:
            raise ValueError("engine has no name; pass one explicitly")
        spec = self._configure(tag, engine, self._config.engine(tag))
        self._entries[tag] = spec
        return spec

    def loaded(self) -> list[EngineSpec]:
        return [spec for spec in self._entries.values() if spec is not None]

    def discover(self) -> list[str]:
        """Names of engines advertised through entry points."""
        return [ep.name for ep in importlib.metadata.entry_points(group=self.GROUP)]

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load_external(self, tag: str, settings: EngineConfig) -> object | None:
        """Fallback chain: configured package > entry point > codefig_<tag> module."""
        if settings.package:
            return self._load_from_module(tag, settings.package)

        result = self._load_from_entry_point(tag)
        if result is not None:
            return result
        return self._load_from_module(tag, self.MODULE_PREFIX + tag.replace("-", "_"))

    def _load_from_entry_point(self, tag: str) -> object | None:
        for ep in importlib.metadata.entry_points(group=self.GROUP):
            if ep.name == tag:
                try:
                    return ep.load()
                except Exception:
                    logger.warning("Failed to load engine entry point '%s'", tag, exc_info=True)
                    return None
        return None

    def _load_from_module(self, tag: str, module_path: str) -> object | None:
        try:
            module = importlib.import_module(module_path)
        except ImportError:
            logger.debug("no engine module %s for '%s'", module_path, tag)
            return None
        except Exception:
            logger.warning("Importing engine module %s failed", module_path, exc_info=True)
            return None
        engine = getattr(module, "engine", None)
        if engine is None:
            logger.warning("Engine module %s has no 'engine' attribute", module_path)
        return engine

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def _configure(self, tag: str, loaded: object, settings: EngineConfig) -> EngineSpec | None:
        """Apply per-engine settings and build the shared EngineSpec."""
        if not settings.enabled:
            return None

        if isinstance(loaded, type) and issubclass(loaded, Engine):
            engine = loaded(execpath=settings.execpath, timeout=settings.timeout)
        elif isinstance(loaded, Engine):
            engine = copy.copy(loaded)
            if settings.execpath:
                engine.execpath = settings.execpath
            if settings.timeout:
                engine.timeout = settings.timeout
        else:
            logger.warning(
                "Engine '%s' is a %s, not a codefig Engine; ignoring it",
                tag,
                type(loaded).__name__,
            )
            return None

        if not engine.name:
            engine.name = tag

        mime_types = set(engine.mime_types)
        for mime_type, allowed in settings.mime_types.items():
            if allowed:
                mime_types.add(mime_type)
            else:
                mime_types.discard(mime_type)
        if not mime_types:
            logger.warning("Engine '%s' has every output type disabled; ignoring it", tag)
            return None

        return EngineSpec(
            name=tag,
            engine=engine,
            mime_types=frozenset(mime_types),
            line_comment_start=engine.line_comment_start,
            options=dict(settings.options),
        )
