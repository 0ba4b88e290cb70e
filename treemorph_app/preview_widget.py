"""
QPainter preview for the morphing scene.

A small host around the core: a QTimer drives the TransitionClock and the
MorphScene, and paintEvent projects every category buffer with a slowly
orbiting perspective camera. Keys 1 / 2 / 3 switch between the scattered,
text and tree states.

Materials, bloom, photo textures and interactive camera controls belong to
a real renderer and are not reproduced here; every category is drawn as
batched round points in a flat color.
"""

from __future__ import annotations

import math
import time
from typing import Any, Dict, Optional, Tuple

import numpy as np
from PyQt6.QtCore import QPointF, QSize, Qt, QTimer
from PyQt6.QtGui import QColor, QPainter, QPen, QPolygonF, QRadialGradient
from PyQt6.QtWidgets import QWidget

from treemorph_app.layout_generator import TOPPER_HEIGHT
from treemorph_app.morph_math import clamp, ease_out_elastic
from treemorph_app.morph_scene import MorphScene
from treemorph_app.morph_state import MorphState, TransitionClock

# Category -> (color, point width in px)
_CATEGORY_STYLE: Dict[str, Tuple[QColor, float]] = {
    "dust": (QColor(255, 215, 0, 200), 1.5),
    "foliage": (QColor(224, 242, 255, 230), 2.5),
    "ornament_heavy": (QColor(230, 40, 40, 255), 7.0),
    "ornament_light": (QColor(255, 190, 60, 255), 5.0),
    "ornament_tiny": (QColor(255, 250, 210, 255), 3.0),
    "photo": (QColor(255, 255, 255, 255), 12.0),
}
_DEFAULT_STYLE = (QColor(200, 200, 255, 220), 2.0)

_STATE_KEYS = {
    Qt.Key.Key_1.value: MorphState.SCATTERED,
    Qt.Key.Key_2.value: MorphState.TEXT_SHAPE,
    Qt.Key.Key_3.value: MorphState.TREE_SHAPE,
}

_CHUNK = 50000


def project_points(
    points: np.ndarray,
    cam_pos: Tuple[float, float, float],
    target: Tuple[float, float, float],
    focal: float,
    center: Tuple[float, float],
    near_plane: float = 0.5,
) -> np.ndarray:
    """
    Perspective-project (N, 3) world points to (M, 2) screen points.

    Points behind the near plane are dropped.
    """
    if points.size == 0:
        return np.zeros((0, 2), dtype=np.float64)
    cam = np.asarray(cam_pos, dtype=np.float64)
    forward = np.asarray(target, dtype=np.float64) - cam
    forward /= max(1e-6, float(np.linalg.norm(forward)))
    right = np.cross(forward, (0.0, 1.0, 0.0))
    n = float(np.linalg.norm(right))
    # forward colinear with world up
    right = right / n if n > 1e-6 else np.array([1.0, 0.0, 0.0])
    up = np.cross(right, forward)

    rel = points.reshape(-1, 3) - cam
    z_cam = rel @ forward
    keep = z_cam > near_plane
    rel = rel[keep]
    z_cam = z_cam[keep]
    sx = center[0] + focal * (rel @ right) / z_cam
    sy = center[1] - focal * (rel @ up) / z_cam
    return np.stack([sx, sy], axis=-1)


class MorphPreviewWidget(QWidget):
    """
    Preview widget for the morphing scene.

    The scene and clock can be injected (tests, embedding); otherwise they
    are built from `config`.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        scene: Optional[MorphScene] = None,
        clock: Optional[TransitionClock] = None,
        parent: Optional[QWidget] = None,
    ) -> None:
        super().__init__(parent)
        self._scene = scene if scene is not None else MorphScene(config)
        duration = float(self._scene.config.get("transition_duration", 2.0))
        self._clock = clock if clock is not None else TransitionClock(duration=duration)
        self._t0 = time.monotonic()
        self._time_s: float = 0.0

        self._timer = QTimer(self)
        self._timer.setInterval(16)  # ~60 FPS
        self._timer.timeout.connect(self._on_tick)
        self._timer.start()

        self.setFocusPolicy(Qt.FocusPolicy.StrongFocus)
        self.setMinimumSize(320, 180)

    def sizeHint(self) -> QSize:  # type: ignore[override]
        return QSize(1280, 720)

    @property
    def scene(self) -> MorphScene:
        return self._scene

    @property
    def clock(self) -> TransitionClock:
        return self._clock

    def set_timer_interval(self, interval_ms: int) -> None:
        self._timer.setInterval(max(5, int(interval_ms)))

    def set_state(self, state: MorphState) -> None:
        self._clock.set_state(state)

    # ------------------------------------------------------------------
    # Frame driving
    # ------------------------------------------------------------------
    def advance(self, elapsed_s: float) -> None:
        """Run one frame of the scene at `elapsed_s` seconds."""
        self._time_s = max(0.0, float(elapsed_s))
        self._scene.refresh_fonts()
        self._scene.step(self._clock.snapshot(), self._time_s)
        self.update()

    def _on_tick(self) -> None:
        self.advance(time.monotonic() - self._t0)

    def keyPressEvent(self, event) -> None:  # type: ignore[override]
        state = _STATE_KEYS.get(int(event.key()))
        if state is None:
            super().keyPressEvent(event)
            return
        self.set_state(state)

    # ------------------------------------------------------------------
    # Painting
    # ------------------------------------------------------------------
    def paintEvent(self, event) -> None:  # type: ignore[override]
        _ = event
        w = self.width()
        h = self.height()
        if w <= 0 or h <= 0:
            return

        painter = QPainter(self)
        painter.setRenderHint(QPainter.RenderHint.Antialiasing, True)

        cx = w * 0.5
        cy = h * 0.5
        min_dim = float(min(w, h))

        bg = QRadialGradient(cx, cy, min_dim * 0.8, cx, cy)
        bg.setColorAt(0.0, QColor(0, 40, 34))
        bg.setColorAt(1.0, QColor(2, 8, 10))
        painter.fillRect(self.rect(), bg)

        # Slow orbit around the tree, looking at its middle
        t = self._time_s
        angle = t * 0.1
        elev = math.radians(12.0 + 6.0 * math.sin(t * 0.05 * 2.0 * math.pi))
        cam_radius = 22.0
        cam_pos = (
            cam_radius * math.cos(elev) * math.sin(angle),
            5.0 + cam_radius * math.sin(elev),
            cam_radius * math.cos(elev) * math.cos(angle),
        )
        look_at = (0.0, 5.0, 0.0)
        fov_rad = math.radians(55.0)
        focal = 0.5 * min_dim / math.tan(fov_rad / 2.0)

        pen = QPen()
        pen.setCapStyle(Qt.PenCapStyle.RoundCap)
        painter.setBrush(Qt.BrushStyle.NoBrush)

        for name, buffer in self._scene.buffers().items():
            if buffer.size == 0:
                continue
            screen = project_points(buffer.reshape(-1, 3), cam_pos, look_at, focal, (cx, cy))
            if screen.size == 0:
                continue
            inside = (
                (screen[:, 0] > -50) & (screen[:, 0] < w + 50)
                & (screen[:, 1] > -50) & (screen[:, 1] < h + 50)
            )
            screen = screen[inside]

            color, width = _CATEGORY_STYLE.get(name, _DEFAULT_STYLE)
            pen.setColor(color)
            pen.setWidthF(clamp(width * min_dim / 720.0, 1.0, 40.0))
            painter.setPen(pen)
            for start in range(0, len(screen), _CHUNK):
                chunk = screen[start : start + _CHUNK]
                painter.drawPoints(QPolygonF([QPointF(float(x), float(y)) for x, y in chunk]))

        # Star topper pops in with the tree
        if self._clock.state == MorphState.TREE_SHAPE:
            pop = ease_out_elastic(self._clock.progress())
            top = project_points(np.array([[0.0, TOPPER_HEIGHT, 0.0]]), cam_pos, look_at, focal, (cx, cy))
            if top.size and pop > 0.0:
                pen.setColor(QColor(255, 223, 90, 255))
                pen.setWidthF(max(1.0, 18.0 * pop * min_dim / 720.0))
                painter.setPen(pen)
                painter.drawPoint(QPointF(float(top[0, 0]), float(top[0, 1])))

        painter.setPen(QColor(255, 215, 0, 180))
        painter.drawText(12, h - 12, f"{self._clock.state.value}  [1] scatter  [2] text  [3] tree")
        painter.end()
