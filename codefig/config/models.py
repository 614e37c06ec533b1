from pydantic import BaseModel, Field, field_validator
from typing import Literal


class CacheConfig(BaseModel):
    enabled: bool = False
    directory: str | None = None


class EngineConfig(BaseModel):
    enabled: bool = True
    execpath: str | None = None
    mime_types: dict[str, bool] = Field(default_factory=dict)
    options: dict[str, str] = Field(default_factory=dict)
    package: str | None = None
    timeout: float | None = Field(default=None, gt=0)


class PdfConverterConfig(BaseModel):
    execpath: str | None = None
    timeout: float | None = Field(default=None, gt=0)


class CodefigConfig(BaseModel):
    format: str = "html"
    on_error: Literal["warn", "abort"] = "warn"
    cache: CacheConfig = Field(default_factory=CacheConfig)
    pdf_converter: PdfConverterConfig = Field(default_factory=PdfConverterConfig)
    engines: dict[str, EngineConfig] = Field(default_factory=dict)
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    log_format: Literal["text", "json"] = "text"

    @field_validator("engines", mode="before")
    @classmethod
    def expand_engine_shorthand(cls, v: object) -> object:
        # `dot: false` disables an engine, `dot: true` or `dot:` keeps defaults
        if not isinstance(v, dict):
            return v
        expanded = {}
        for name, value in v.items():
            if value is None or value is True:
                value = {}
            elif value is False:
                value = {"enabled": False}
            expanded[name] = value
        return expanded

    def engine(self, name: str) -> EngineConfig:
        """Settings for one engine, falling back to defaults when unconfigured."""
        return self.engines.get(name) or EngineConfig()
