"""Diagram engines and the registry that hands them out."""

from codefig.engines.base import Engine, EngineSpec
from codefig.engines.builtin import (
    BUILTIN_ENGINES,
    AsymptoteEngine,
    CeTZEngine,
    GraphvizEngine,
    MermaidEngine,
    PlantUMLEngine,
    TikZEngine,
)
from codefig.engines.registry import EngineRegistry, LookupState

__all__ = [
    "AsymptoteEngine",
    "BUILTIN_ENGINES",
    "CeTZEngine",
    "Engine",
    "EngineRegistry",
    "EngineSpec",
    "GraphvizEngine",
    "LookupState",
    "MermaidEngine",
    "PlantUMLEngine",
    "TikZEngine",
]
