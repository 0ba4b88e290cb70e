"""
Scene configuration: defaults, JSON overrides and the parameter schema.

The scene is configured by a plain dict (JSON serializable) so a host can
store it next to its own settings. apply_default_scene_config() fills
every missing key, and the helpers below turn the dict into the typed
CategoryConfig / TextRasterRequest values used by the core.
"""

from __future__ import annotations

import copy
import dataclasses
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from treemorph_app.layout_generator import CategoryConfig
from treemorph_app.text_sampler import DEFAULT_FALLBACK_FAMILY, FontCandidate, TextRasterRequest

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class SceneParameter:
    """
    One top-level scene setting a host may expose or override.

    `check()` coerces a raw value (JSON, CLI) to the declared kind and
    rejects anything outside [minimum, maximum].
    """
    key: str
    label: str
    kind: str  # "int", "float", "bool", "str"
    default: Any
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    step: Optional[float] = None
    help: str = ""

    def check(self, value: Any) -> Any:
        if self.kind == "bool":
            if not isinstance(value, bool):
                raise ValueError(f"{self.key}: expected true/false, got {value!r}")
            return value
        if self.kind == "str":
            if not isinstance(value, str):
                raise ValueError(f"{self.key}: expected a string, got {value!r}")
            return value
        if isinstance(value, bool):
            raise ValueError(f"{self.key}: expected a number, got {value!r}")
        try:
            number = int(value) if self.kind == "int" else float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{self.key}: expected {self.kind}, got {value!r}") from exc
        if self.minimum is not None and number < self.minimum:
            raise ValueError(f"{self.key}: {number} is below the minimum {self.minimum}")
        if self.maximum is not None and number > self.maximum:
            raise ValueError(f"{self.key}: {number} is above the maximum {self.maximum}")
        return number

    def describe(self) -> str:
        if self.minimum is not None or self.maximum is not None:
            bounds = f" [{self.minimum} .. {self.maximum}]"
        else:
            bounds = ""
        return f"{self.key} ({self.kind}{bounds}, default {self.default!r}): {self.help}"


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_CATEGORIES: Dict[str, Dict[str, Any]] = {
    # Fine dust: the only category that draws the text. Keeps its cloud in
    # the tree state.
    "dust": {
        "count": 20000,
        "scatter_radius": 20.0,
        "tree_layout": "scatter",
        "text_layout": "points",
        "weight": 1.0,
        "blend_gain": 0.1,
        "blend_base": 0.05,
        "drift_mode": "sine",
        "drift_frequency": 0.1,
        "drift_amplitude": 0.1,
        "text_recede": 1.5,
    },
    "foliage": {
        "count": 3000,
        "scatter_radius": 15.0,
        "tree_height": 8.0,
        "tree_base_radius": 2.5,
        "tree_top_radius": 0.15,
        "tree_jitter": [0.3, 0.2, 0.3],
        "weight": 1.0,
        "drift_frequency": 0.5,
        "drift_amplitude": 0.1,
        "text_recede": 1.5,
        "breathing": True,
    },
    # Gift boxes: heavy, lag behind everything else.
    "ornament_heavy": {
        "count": 40,
        "scatter_radius": 12.0,
        "tree_height": 6.4,
        "tree_base_radius": 2.25,
        "tree_top_radius": 0.15,
        "tree_jitter": [0.5, 0.3, 0.5],
        "weight": 3.0,
        "blend_base": 0.03,
        "drift_frequency": 0.3,
        "drift_amplitude": 0.05,
        "text_recede": 1.3,
    },
    "ornament_light": {
        "count": 200,
        "scatter_radius": 15.0,
        "tree_jitter": [0.4, 0.2, 0.4],
        "weight": 1.5,
        "drift_frequency": 0.6,
        "drift_amplitude": 0.1,
        "text_recede": 1.4,
    },
    "ornament_tiny": {
        "count": 400,
        "scatter_radius": 18.0,
        "tree_jitter": [0.3, 0.2, 0.3],
        "weight": 0.5,
        "blend_base": 0.08,
        "drift_frequency": 1.0,
        "drift_amplitude": 0.15,
        "text_recede": 1.5,
    },
    # Photos: count follows the number of loaded images.
    "photo": {
        "count": 0,
        "scatter_radius": 12.0,
        "tree_layout": "orbit",
        "text_layout": "photo_ring",
        "weight": 1.0,
        "orbit_speed": 0.2,
        "drift_frequency": 0.3,
        "drift_amplitude": 0.05,
    },
}

DEFAULT_SCENE_CONFIG: Dict[str, Any] = {
    "text": "Happy Birthday",
    "font_families": ["Great Vibes", "Dancing Script", "Pacifico"],
    "fallback_font": "DejaVu Sans",
    "font_size": 150,
    "font_bold": True,
    "canvas_width": 2048,
    "canvas_height": 512,
    "text_depth": 0.3,
    "point_density": 0.6,
    "text_thickness": 0.3,
    "text_layers": 3,
    "transition_duration": 2.0,
    "categories": DEFAULT_CATEGORIES,
}

_CATEGORY_FIELDS = {f.name for f in dataclasses.fields(CategoryConfig)} - {"name"}


def apply_default_scene_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Ensure that `config` contains every expected key.

    Missing categories are added; existing categories get their missing
    keys filled from the defaults. Returns the same dict for chaining.
    """
    for key, value in DEFAULT_SCENE_CONFIG.items():
        if key == "categories":
            continue
        config.setdefault(key, copy.deepcopy(value))

    categories = config.setdefault("categories", {})
    if not isinstance(categories, dict):
        LOG.warning("Ignoring malformed 'categories' entry: %r", categories)
        categories = {}
        config["categories"] = categories
    for name, defaults in DEFAULT_CATEGORIES.items():
        entry = categories.setdefault(name, {})
        for key, value in defaults.items():
            entry.setdefault(key, copy.deepcopy(value))
    return config


def load_scene_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load a JSON override file on top of the defaults.

    A missing file simply yields the defaults; an unreadable one raises
    RuntimeError naming the file.
    """
    data: Dict[str, Any] = {}
    if path is not None and Path(path).exists():
        try:
            loaded = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise RuntimeError(f"Failed to parse scene config {path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise RuntimeError(f"Scene config {path} must contain a JSON object")
        data = loaded
    return apply_default_scene_config(data)


# ---------------------------------------------------------------------------
# Typed views
# ---------------------------------------------------------------------------


def category_from_config(name: str, entry: Dict[str, Any]) -> CategoryConfig:
    """Build a CategoryConfig from one entry of config["categories"]."""
    kwargs: Dict[str, Any] = {}
    for key, value in entry.items():
        if key not in _CATEGORY_FIELDS:
            LOG.warning("Category %s: ignoring unknown key %r", name, key)
            continue
        kwargs[key] = value
    if "tree_jitter" in kwargs:
        jitter = list(kwargs["tree_jitter"]) + [0.0, 0.0, 0.0]
        kwargs["tree_jitter"] = (float(jitter[0]), float(jitter[1]), float(jitter[2]))
    if "count" in kwargs:
        kwargs["count"] = int(kwargs["count"])
    return CategoryConfig(name=name, **kwargs)


def categories_from_config(config: Dict[str, Any]) -> List[CategoryConfig]:
    return [category_from_config(name, entry) for name, entry in config.get("categories", {}).items()]


def font_candidates_from_config(config: Dict[str, Any]) -> tuple[FontCandidate, ...]:
    """
    Bold variant of every family first (when font_bold is set), then the
    regular variants. The fallback font is kept apart (see "fallback_font").
    """
    families = [str(f) for f in config.get("font_families", []) if str(f).strip()]
    size = int(config.get("font_size", 150))
    candidates: List[FontCandidate] = []
    if bool(config.get("font_bold", True)):
        candidates.extend(FontCandidate(f, size, True) for f in families)
    candidates.extend(FontCandidate(f, size, False) for f in families)
    return tuple(candidates)


def text_request_from_config(config: Dict[str, Any]) -> TextRasterRequest:
    return TextRasterRequest(
        text=str(config.get("text", "")),
        font_candidates=font_candidates_from_config(config),
        fallback_family=str(config.get("fallback_font") or DEFAULT_FALLBACK_FAMILY),
        canvas_width=int(config.get("canvas_width", 2048)),
        canvas_height=int(config.get("canvas_height", 512)),
        depth=float(config.get("text_depth", 0.3)),
        point_density=float(config.get("point_density", 0.6)),
    )


# ---------------------------------------------------------------------------
# Parameter schema
# ---------------------------------------------------------------------------

SCENE_PARAMETERS: tuple[SceneParameter, ...] = (
    SceneParameter("text", "Text", "str", DEFAULT_SCENE_CONFIG["text"],
                   help="Text formed by the dust particles. Newlines start a new line."),
    SceneParameter("fallback_font", "Fallback font", "str", DEFAULT_SCENE_CONFIG["fallback_font"],
                   help="Family drawn until one of font_families is loaded."),
    SceneParameter("font_size", "Font size (px)", "int", 150, 20, 400, 10,
                   help="Pixel size used when rasterizing the text."),
    SceneParameter("font_bold", "Bold text", "bool", True,
                   help="Try bold variants of the font families first."),
    SceneParameter("point_density", "Text point density", "float", 0.6, 0.05, 1.0, 0.05,
                   help="Fraction of raster pixels kept along each axis."),
    SceneParameter("text_thickness", "Text thickness", "float", 0.3, 0.0, 2.0, 0.05,
                   help="Depth of the extruded text silhouette."),
    SceneParameter("text_layers", "Text layers", "int", 3, 1, 8, 1,
                   help="Number of z layers used to extrude the text."),
    SceneParameter("transition_duration", "Transition duration (s)", "float", 2.0, 0.2, 10.0, 0.1,
                   help="Seconds for the transition progress to go from 0 to 1."),
)


def scene_parameters() -> Dict[str, SceneParameter]:
    """Top-level parameters a host UI can expose, by key."""
    return {p.key: p for p in SCENE_PARAMETERS}


def validate_scene_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check every schema-covered value of `config` in place.

    Numbers given as strings are coerced; out-of-range or mistyped values
    raise ValueError. Returns the same dict.
    """
    for param in SCENE_PARAMETERS:
        if param.key in config:
            config[param.key] = param.check(config[param.key])
    return config
