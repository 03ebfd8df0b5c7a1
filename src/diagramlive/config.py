"""Pipeline tunables and compiler options."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

# Debounce delays in seconds, keyed by what triggered the edit. The editor,
# the preview pane and programmatic loads each used a different value.
DEFAULT_DEBOUNCE = {
    "keystroke": 0.3,
    "preview": 0.5,
    "programmatic": 0.05,
}

DECODE_TIMEOUT = 10.0
SUPERSAMPLE_SCALE = 2.0
MIN_RASTER_WIDTH = 300.0
MIN_RASTER_HEIGHT = 200.0

ENV_PREFIX = "DIAGRAMLIVE_"


@dataclass(frozen=True)
class PipelineConfig:
    debounce: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_DEBOUNCE))
    decode_timeout: float = DECODE_TIMEOUT
    scale: float = SUPERSAMPLE_SCALE
    min_width: float = MIN_RASTER_WIDTH
    min_height: float = MIN_RASTER_HEIGHT
    downloads_dir: Path = field(default_factory=Path.cwd)
    filename_prefix: str = "mermaid-diagram"

    def debounce_for(self, trigger: str) -> float:
        try:
            return self.debounce[trigger]
        except KeyError:
            raise ValueError(f"unknown render trigger: {trigger!r}") from None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        """Build a config, overriding defaults from DIAGRAMLIVE_* variables.

        Recognised: DEBOUNCE_KEYSTROKE, DEBOUNCE_PREVIEW, DEBOUNCE_PROGRAMMATIC
        (milliseconds), DECODE_TIMEOUT (seconds), SCALE, DOWNLOADS_DIR,
        FILENAME_PREFIX.
        """
        env = os.environ if environ is None else environ
        config = cls()
        debounce = dict(config.debounce)
        for trigger in DEFAULT_DEBOUNCE:
            raw = env.get(f"{ENV_PREFIX}DEBOUNCE_{trigger.upper()}")
            if raw is not None:
                debounce[trigger] = _parse_float(raw, f"DEBOUNCE_{trigger.upper()}") / 1000.0
        overrides: Dict[str, Any] = {"debounce": debounce}
        if f"{ENV_PREFIX}DECODE_TIMEOUT" in env:
            overrides["decode_timeout"] = _parse_float(env[f"{ENV_PREFIX}DECODE_TIMEOUT"], "DECODE_TIMEOUT")
        if f"{ENV_PREFIX}SCALE" in env:
            overrides["scale"] = _parse_float(env[f"{ENV_PREFIX}SCALE"], "SCALE")
        if f"{ENV_PREFIX}DOWNLOADS_DIR" in env:
            overrides["downloads_dir"] = Path(env[f"{ENV_PREFIX}DOWNLOADS_DIR"]).expanduser()
        if env.get(f"{ENV_PREFIX}FILENAME_PREFIX"):
            overrides["filename_prefix"] = env[f"{ENV_PREFIX}FILENAME_PREFIX"]
        return replace(config, **overrides)


def _parse_float(raw: str, name: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{ENV_PREFIX}{name} must be >= 0")
    return value


@dataclass(frozen=True)
class CompilerOptions:
    """Options handed to the compiler adapter; rendered as a Mermaid config."""

    theme: str = "default"
    font_family: str = "monospace"
    security_level: str = "loose"
    diagram_options: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    # cairosvg cannot paint foreignObject, so labels must be SVG <text>.
    html_labels: bool = False

    def to_mermaid_config(self) -> Dict[str, Any]:
        config: Dict[str, Any] = {
            "startOnLoad": False,
            "theme": self.theme,
            "fontFamily": self.font_family,
            "securityLevel": self.security_level,
            "htmlLabels": self.html_labels,
            "flowchart": {"htmlLabels": self.html_labels},
        }
        for diagram_type, options in self.diagram_options.items():
            merged = dict(config.get(diagram_type) or {})
            merged.update(options)
            config[diagram_type] = merged
        return config


__all__ = ["CompilerOptions", "PipelineConfig", "DEFAULT_DEBOUNCE"]
