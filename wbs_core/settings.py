"""
Engine and service settings.

Defaults match the diagram sliders and grid. Every field can be
overridden through a WBS_DIAGRAM_* environment variable, e.g.
WBS_DIAGRAM_GRID_SIZE=10 or WBS_DIAGRAM_STORE_DIR=/tmp/wbs.
"""

import os
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field


ENV_PREFIX = "WBS_DIAGRAM_"


class GridSettings(BaseModel):
    """Snap-to-grid and keyboard nudge settings."""
    grid_size: int = 20  # Grid pitch in screen pixels (0 = disabled)
    snap_enabled: bool = True
    nudge_multiplier: int = 10  # Grid units per nudge with the modifier held


class SizeSettings(BaseModel):
    """Bounds used by auto-fit and manual resize."""
    min_width: float = 140
    max_width: float = 560
    label_padding: float = 12  # Horizontal padding on each side of the label
    text_wrap_inset: float = 20  # Box width minus wrap width


class StyleSettings(BaseModel):
    """Global cosmetic settings (the font and box sliders)."""
    font_size: int = Field(default=12, ge=8, le=48)
    box_width: float = Field(default=240, ge=140, le=560)
    box_height: float = Field(default=72, ge=48, le=260)

    @property
    def text_max_width(self) -> float:
        return self.box_width - 20

    def to_dict(self) -> dict:
        return {
            "font_size": self.font_size,
            "box_width": self.box_width,
            "box_height": self.box_height,
            "text_max_width": self.text_max_width,
        }


class HistorySettings(BaseModel):
    max_history: int = 100


class ParserSettings(BaseModel):
    tab_width: int = 2  # Spaces per tab
    indent_unit: str = "  "
    synthetic_root_label: str = "Project"


class ServiceSettings(BaseModel):
    """Where the HTTP service listens and where outline text is stored."""
    host: str = "127.0.0.1"
    port: int = 8765
    store_dir: Path = Field(default_factory=lambda: Path.home() / ".wbs-diagram")
    store_slot: str = "wbs-outline"
    cors_origins: list[str] = Field(default_factory=lambda: [
        "http://localhost:5173", "http://localhost:3000", "http://127.0.0.1:5173",
    ])
    log_level: str = "INFO"


class EngineSettings(BaseModel):
    """All settings, grouped."""
    grid: GridSettings = Field(default_factory=GridSettings)
    size: SizeSettings = Field(default_factory=SizeSettings)
    style: StyleSettings = Field(default_factory=StyleSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    parser: ParserSettings = Field(default_factory=ParserSettings)
    service: ServiceSettings = Field(default_factory=ServiceSettings)


def _env_overrides(model: type[BaseModel], environ) -> dict:
    """Collect WBS_DIAGRAM_<FIELD> values for the fields of `model`."""
    found = {}
    for name in model.model_fields:
        value = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value is None:
            continue
        if name == "cors_origins":
            found[name] = [v.strip() for v in value.split(",") if v.strip()]
        elif name == "snap_enabled":
            found[name] = value.strip().lower() in ("1", "true", "yes", "on")
        else:
            found[name] = value
    return found


def load_settings(environ=None) -> EngineSettings:
    """Build settings from defaults plus environment overrides.

    Values are validated (and coerced from strings) by pydantic, so a bad
    override raises pydantic.ValidationError at startup.
    """
    if environ is None:
        environ = os.environ
    return EngineSettings(
        grid=GridSettings(**_env_overrides(GridSettings, environ)),
        size=SizeSettings(**_env_overrides(SizeSettings, environ)),
        style=StyleSettings(**_env_overrides(StyleSettings, environ)),
        history=HistorySettings(**_env_overrides(HistorySettings, environ)),
        parser=ParserSettings(**_env_overrides(ParserSettings, environ)),
        service=ServiceSettings(**_env_overrides(ServiceSettings, environ)),
    )


_settings: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Process-wide settings, loaded on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
