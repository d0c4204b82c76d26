# fleetsync/services/damage_canvas.py
"""
Damage-check diagram editor model.

Markers and strokes are stored as fractional coordinates (0–1 of the diagram's
width/height) so they stay put when the diagram is shown at another size.
Pixel coordinates only exist at the edges: clicks coming in, rendering going out.

Rendering uses Pillow: render_overlay() draws strokes and numbered markers on a
transparent layer, composite() flattens that layer onto the diagram image.
"""

import base64
import io
import math
import uuid
from dataclasses import asdict, dataclass, field
from typing import Optional
from PIL import Image, ImageDraw, ImageFont
from fleetsync.config import settings

SEVERITY_COLORS = {
    "minor": "#10B981",
    "moderate": "#F59E0B",
    "severe": "#DC2626",
}
DAMAGE_TYPES = ("scratch", "dent", "crack", "missing", "other")

STROKE_COLOR = "#EF4444"
STROKE_WIDTH = 3
MARKER_DRAW_RADIUS = 15


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


@dataclass
class DamageMarker:
    x: float                         # fraction of width
    y: float                         # fraction of height
    type: str = "scratch"
    severity: str = "minor"
    notes: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def color(self) -> str:
        return SEVERITY_COLORS[self.severity]

    def pixel(self, width: float, height: float) -> tuple[float, float]:
        return self.x * width, self.y * height

    @classmethod
    def from_dict(cls, data: dict) -> "DamageMarker":
        marker = cls(x=float(data["x"]), y=float(data["y"]),
                     type=data.get("type") or "scratch",
                     severity=data.get("severity") or "minor",
                     notes=data.get("notes") or "")
        if data.get("id"):
            marker.id = str(data["id"])
        _validate(marker)
        return marker


def _validate(marker: DamageMarker):
    if marker.severity not in SEVERITY_COLORS:
        raise ValueError(f"Unknown severity: {marker.severity!r}")
    if marker.type not in DAMAGE_TYPES:
        raise ValueError(f"Unknown damage type: {marker.type!r}")
    if not (0.0 <= marker.x <= 1.0 and 0.0 <= marker.y <= 1.0):
        raise ValueError(f"Marker coordinates must be fractions, got ({marker.x}, {marker.y})")


class _StrokeSurface:
    """Freehand strokes on a fixed-size surface, stored as fractional point lists."""

    def __init__(self, width: float, height: float):
        if width <= 0 or height <= 0:
            raise ValueError("Canvas size must be positive")
        self.width = width
        self.height = height
        self.paths: list[list[tuple[float, float]]] = []
        self._current: Optional[list[tuple[float, float]]] = None

    def to_fraction(self, px: float, py: float) -> tuple[float, float]:
        return _clamp(px / self.width), _clamp(py / self.height)

    def to_pixel(self, fx: float, fy: float) -> tuple[float, float]:
        return fx * self.width, fy * self.height

    def resize(self, width: float, height: float):
        if width <= 0 or height <= 0:
            raise ValueError("Canvas size must be positive")
        self.width = width
        self.height = height

    def begin_stroke(self, px: float, py: float):
        self._current = [self.to_fraction(px, py)]

    def extend_stroke(self, px: float, py: float):
        if self._current is not None:
            self._current.append(self.to_fraction(px, py))

    def end_stroke(self) -> Optional[list[tuple[float, float]]]:
        stroke, self._current = self._current, None
        if stroke:
            self.paths.append(stroke)
        return stroke

    def _draw_paths(self, draw: ImageDraw.ImageDraw, size: tuple[int, int], color: str, width: int):
        for path in self.paths:
            points = [(x * size[0], y * size[1]) for x, y in path]
            if len(points) == 1:
                x, y = points[0]
                r = width / 2
                draw.ellipse((x - r, y - r, x + r, y + r), fill=color)
            else:
                draw.line(points, fill=color, width=width, joint="curve")


class DamageCanvas(_StrokeSurface):
    """
    Click to place or select a marker; toggle drawing_mode to draw freehand strokes.
    A click within hit_radius px of an existing marker selects it (the most
    recently placed one wins) instead of creating a new one.
    """

    def __init__(self, width: float, height: float, hit_radius: Optional[float] = None):
        super().__init__(width, height)
        self.hit_radius = settings.MARKER_HIT_RADIUS if hit_radius is None else hit_radius
        self.markers: list[DamageMarker] = []
        self.selected_id: Optional[str] = None
        self.drawing_mode = False

    @property
    def selected(self) -> Optional[DamageMarker]:
        return self.get_marker(self.selected_id) if self.selected_id else None

    def get_marker(self, marker_id: str) -> Optional[DamageMarker]:
        return next((m for m in self.markers if m.id == marker_id), None)

    def marker_at(self, px: float, py: float) -> Optional[DamageMarker]:
        for marker in reversed(self.markers):
            mx, my = marker.pixel(self.width, self.height)
            if math.hypot(mx - px, my - py) < self.hit_radius:
                return marker
        return None

    def click(self, px: float, py: float) -> Optional[DamageMarker]:
        """Select the marker under the click, or place a new one. Ignored in drawing mode."""
        if self.drawing_mode:
            return None
        marker = self.marker_at(px, py)
        if marker is None:
            fx, fy = self.to_fraction(px, py)
            marker = DamageMarker(x=fx, y=fy)
            self.markers.append(marker)
        self.selected_id = marker.id
        return marker

    def begin_stroke(self, px: float, py: float):
        if self.drawing_mode:
            super().begin_stroke(px, py)

    def update_marker(self, marker_id: Optional[str] = None, **changes) -> DamageMarker:
        marker = self.get_marker(marker_id or self.selected_id or "")
        if marker is None:
            raise KeyError(f"No marker {marker_id or self.selected_id!r}")
        allowed = {"type", "severity", "notes"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Cannot update marker fields: {sorted(unknown)}")
        previous = asdict(marker)
        for name, value in changes.items():
            setattr(marker, name, value)
        try:
            _validate(marker)
        except ValueError:
            for name in changes:
                setattr(marker, name, previous[name])
            raise
        return marker

    def delete_marker(self, marker_id: str) -> bool:
        before = len(self.markers)
        self.markers = [m for m in self.markers if m.id != marker_id]
        if self.selected_id == marker_id:
            self.selected_id = None
        return len(self.markers) < before

    def clear_drawings(self):
        self.paths = []

    # ── Rendering ────────────────────────────────────────────────────────
    def render_overlay(self, size: Optional[tuple[int, int]] = None) -> Image.Image:
        """Transparent RGBA layer with strokes and numbered markers, at `size` (defaults to canvas size)."""
        size = size or (round(self.width), round(self.height))
        overlay = Image.new("RGBA", size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)
        self._draw_paths(draw, size, STROKE_COLOR, STROKE_WIDTH)

        font = ImageFont.load_default()
        for number, marker in enumerate(self.markers, start=1):
            x, y = marker.x * size[0], marker.y * size[1]
            r = MARKER_DRAW_RADIUS
            draw.ellipse((x - r, y - r, x + r, y + r), fill=marker.color)
            left, top, right, bottom = draw.textbbox((0, 0), str(number), font=font)
            draw.text((x - (right - left) / 2, y - (bottom - top) / 2), str(number), fill="white", font=font)
        return overlay

    def composite(self, background: Image.Image) -> Image.Image:
        """Flatten the overlay onto the diagram at the diagram's natural size."""
        base = background.convert("RGBA")
        return Image.alpha_composite(base, self.render_overlay(base.size))

    # ── Persistence ──────────────────────────────────────────────────────
    def to_payload(self) -> dict:
        return {
            "damageMarkers": [asdict(m) for m in self.markers],
            "drawingPaths": [[list(p) for p in path] for path in self.paths],
        }

    @classmethod
    def from_payload(cls, payload: dict, width: float, height: float,
                     hit_radius: Optional[float] = None) -> "DamageCanvas":
        """Rebuild a canvas from saved data, at whatever size the diagram is shown now."""
        canvas = cls(width, height, hit_radius=hit_radius)
        canvas.markers = [DamageMarker.from_dict(m) for m in payload.get("damageMarkers") or []]
        canvas.paths = [[(float(x), float(y)) for x, y in path] for path in payload.get("drawingPaths") or []]
        return canvas


class SignaturePad(_StrokeSurface):
    """Signature capture: black strokes on white, exported as PNG."""

    def __init__(self, width: float = 400, height: float = 150):
        super().__init__(width, height)

    @classmethod
    def from_paths(cls, paths: list, width: float = 400, height: float = 150) -> "SignaturePad":
        pad = cls(width, height)
        pad.paths = [[(float(x), float(y)) for x, y in path] for path in paths]
        return pad

    @property
    def is_empty(self) -> bool:
        return not self.paths

    def clear(self):
        self.paths = []

    def to_image(self) -> Image.Image:
        size = (round(self.width), round(self.height))
        image = Image.new("RGB", size, "white")
        self._draw_paths(ImageDraw.Draw(image), size, "black", 2)
        return image


def to_data_url(image: Image.Image) -> str:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def load_image(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data))
