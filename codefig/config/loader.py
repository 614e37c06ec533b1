"""YAML config loading with env var expansion."""

import os
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import CodefigConfig, EngineConfig

# Environment variables naming engine executables, checked in order.
ENGINE_ENV_VARS: dict[str, tuple[str, ...]] = {
    "asymptote": ("ASYMPTOTE", "ASY"),
    "cetz": ("TYPST",),
    "dot": ("DOT",),
    "mermaid": ("MERMAID_BIN", "MMDC"),
    "plantuml": ("PLANTUML",),
    "tikz": ("PDFLATEX",),
}

PDF_CONVERTER_ENV_VAR = "INKSCAPE"


def load_config(cli_path: str | None = None) -> CodefigConfig:
    """Load config with resolution order: CLI > project-local > user-global > defaults."""
    config_paths = [
        Path(cli_path) if cli_path else None,
        Path("./codefig.yaml"),
        Path.home() / ".codefig" / "config.yaml",
    ]

    for path in config_paths:
        if path and path.exists():
            try:
                with open(path) as f:
                    raw = yaml.safe_load(f)
                if raw is None:
                    continue
                raw = _expand_env_vars(raw)
                return apply_env_overrides(CodefigConfig(**raw))
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
            except ValidationError as e:
                raise ValueError(f"Invalid config in {path}: {e}") from e

    return apply_env_overrides(CodefigConfig())


def apply_env_overrides(
    config: CodefigConfig, environ: dict[str, str] | None = None
) -> CodefigConfig:
    """Fill unset executable paths from the environment.

    Explicit `execpath` values in the config file always win. Besides the
    well-known variables in ENGINE_ENV_VARS, every configured engine also
    honours its upper-cased name (e.g. `SVGBOB` for a `svgbob` engine).
    """
    env = os.environ if environ is None else environ
    engines = dict(config.engines)

    for name in set(ENGINE_ENV_VARS) | set(engines):
        current = engines.get(name, EngineConfig())
        if current.execpath:
            continue
        candidates = ENGINE_ENV_VARS.get(name, ()) + (name.upper().replace("-", "_"),)
        execpath = next((env[var] for var in candidates if env.get(var)), None)
        if execpath:
            engines[name] = current.model_copy(update={"execpath": execpath})

    update: dict = {"engines": engines}
    if not config.pdf_converter.execpath and env.get(PDF_CONVERTER_ENV_VAR):
        update["pdf_converter"] = config.pdf_converter.model_copy(
            update={"execpath": env[PDF_CONVERTER_ENV_VAR]}
        )
    return config.model_copy(update=update)


def _expand_env_vars(obj: object) -> object:
    """Recursively expand ${VAR} references in strings."""
    if isinstance(obj, str):
        return re.sub(r"\$\{(\w+)\}", lambda m: os.environ.get(m.group(1), ""), obj)
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


# Default YAML template for `codefig config init`
DEFAULT_CONFIG_TEMPLATE = """\
# codefig.yaml

# Target document format; decides between PDF and SVG output
format: "html"                 # html | latex | context | docx | ...

# What to do when a diagram fails to render
on_error: "warn"               # warn (keep the code block) | abort

# Rendered image cache, keyed by the SHA-1 of the diagram source
cache:
  enabled: false
  # directory: "~/.cache/codefig"

# PDF to SVG conversion for engines that only emit PDF
pdf_converter:
  execpath: null               # defaults to `inkscape` on PATH
  # timeout: 60

# Engines
engines:
  dot:
    enabled: true
    # execpath: "/usr/local/bin/dot"
    # mime_types:
    #   image/svg+xml: false
  tikz:
    options:
      additional-packages: "\\\\usepackage{amsmath}"
  # Third-party engines are imported from `codefig_<name>` or `package`
  # svgbob:
  #   package: "codefig_svgbob"
  #   timeout: 30

# Logging
log_level: "info"              # debug | info | warn | error
log_format: "text"             # text | json
"""
