"""
MorphScene: one layout + driver per particle category.

The scene wires the text sampler into the categories that use text points,
regenerates a category wholesale when its count changes, and rebuilds the
text-dependent layouts when the font generation moves (fonts that were
missing at first sampling have since been loaded).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import numpy as np

from treemorph_app.layout_generator import CategoryConfig, MorphLayout, generate_layout
from treemorph_app.morph_driver import MorphDriver
from treemorph_app.morph_state import TransitionSnapshot
from treemorph_app.scene_config import (
    apply_default_scene_config,
    categories_from_config,
    text_request_from_config,
    validate_scene_config,
)
from treemorph_app.text_sampler import add_text_thickness, font_generation, generate_text_points

LOG = logging.getLogger(__name__)


class MorphScene:
    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        self.config: Dict[str, Any] = validate_scene_config(
            apply_default_scene_config(config if config is not None else {})
        )
        self._categories: Dict[str, CategoryConfig] = {}
        self._drivers: Dict[str, MorphDriver] = {}
        self._flat_text_points = np.zeros((0, 3), dtype=np.float64)
        self._text_points = np.zeros((0, 3), dtype=np.float64)
        self._font_generation = -1
        self.build()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    def build(self) -> None:
        """(Re)generate the text points and every category from the config."""
        self._sample_text()
        self._categories = {c.name: c for c in categories_from_config(self.config)}
        self._drivers = {}
        for name, category in self._categories.items():
            self._drivers[name] = MorphDriver(category, self._generate(category))
        LOG.info(
            "Scene built: %s",
            ", ".join(f"{name}={len(d.layout)}" for name, d in self._drivers.items()),
        )

    def _sample_text(self) -> None:
        self._font_generation = font_generation()
        request = text_request_from_config(self.config)
        flat = generate_text_points(request)
        self._flat_text_points = flat
        self._text_points = add_text_thickness(
            flat,
            thickness=float(self.config.get("text_thickness", 0.3)),
            layers=int(self.config.get("text_layers", 3)),
        )
        LOG.info("Text %r sampled into %d points", request.text, len(self._text_points))

    def _generate(self, category: CategoryConfig) -> MorphLayout:
        if category.text_layout == "points":
            return generate_layout(category, self._text_points)
        if category.text_layout == "photo_ring":
            return generate_layout(category, self._flat_text_points)
        return generate_layout(category)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def text_points(self) -> np.ndarray:
        return self._text_points

    def category_names(self) -> List[str]:
        return list(self._drivers.keys())

    def category(self, name: str) -> CategoryConfig:
        return self._categories[name]

    def driver(self, name: str) -> MorphDriver:
        return self._drivers[name]

    def layout(self, name: str) -> MorphLayout:
        return self._drivers[name].layout

    def buffers(self) -> Dict[str, np.ndarray]:
        """Category name -> float32 position buffer (x, y, z triples)."""
        return {name: d.position_buffer for name, d in self._drivers.items()}

    # ------------------------------------------------------------------
    # Regeneration
    # ------------------------------------------------------------------
    def set_category_count(self, name: str, count: int) -> bool:
        """
        Regenerate category `name` for a new particle count.

        Returns False when the count did not change. The layout is replaced
        wholesale; particles restart from their scatter positions.
        """
        old = self._categories[name]
        count = int(count)
        if count == old.count:
            return False
        category = old.replace_count(count)
        self._categories[name] = category
        self.config["categories"][name]["count"] = count
        self._drivers[name] = MorphDriver(category, self._generate(category))
        LOG.info("Category %s regenerated for %d particles", name, count)
        return True

    def set_text(self, text: str) -> None:
        """Change the displayed text and rebuild the text-dependent layouts."""
        self.config["text"] = str(text)
        self._rebuild_text_layouts()

    def refresh_fonts(self) -> bool:
        """
        Rebuild text-dependent layouts when fonts became ready since the last
        sampling. Returns True when something was regenerated.
        """
        if font_generation() == self._font_generation:
            return False
        LOG.info("Font generation changed, regenerating text layouts")
        self._rebuild_text_layouts()
        return True

    def _rebuild_text_layouts(self) -> None:
        self._sample_text()
        for name, category in self._categories.items():
            if category.uses_text_points:
                self._drivers[name].adopt_layout(self._generate(category))

    # ------------------------------------------------------------------
    # Frame
    # ------------------------------------------------------------------
    def step(self, snapshot: TransitionSnapshot, elapsed_time: float) -> None:
        """Advance every category by one frame."""
        for driver in self._drivers.values():
            driver.step(snapshot, elapsed_time)
