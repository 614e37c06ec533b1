from .loader import apply_env_overrides, load_config
from .models import (
    CacheConfig,
    CodefigConfig,
    EngineConfig,
    PdfConverterConfig,
)

__all__ = [
    "CacheConfig",
    "CodefigConfig",
    "EngineConfig",
    "PdfConverterConfig",
    "apply_env_overrides",
    "load_config",
]
