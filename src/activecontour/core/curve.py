"""Immutable polygonal curve used as the snake representation.

A :class:`Curve` stores its control points in *normalized* coordinates, i.e.
pixel coordinates divided by a uniform scale factor chosen when the curve is
built. Each point carries a link to the index of the point it evolved from in
the previous iteration's curve (``NO_PREVIOUS`` for points inserted by
resampling); motion-based convergence tests rely on these links.

Curves are never mutated. Every operation that changes geometry returns a new
instance, and the underlying arrays are flagged read-only so that superseded
curves can be shared safely with termination strategies.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

import cv2
import numpy as np
from shapely.geometry import LinearRing, LineString, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient
from shapely.validation import make_valid

from activecontour.core.errors import InvalidGeometryError

logger = logging.getLogger(__name__)

__all__ = ["NO_PREVIOUS", "Curve"]

# Sentinel stored in ``Curve.previous_index`` for points without a predecessor.
NO_PREVIOUS: int = -1

# Relative bounds on segment length accepted by resample(); segments outside
# [_MIN_SEGMENT_FACTOR, _MAX_SEGMENT_FACTOR] * spacing are merged or split.
_MIN_SEGMENT_FACTOR: float = 0.5
_MAX_SEGMENT_FACTOR: float = 1.5


# Pixel distance under which a repaired vertex is identified with an original one.
_VERTEX_MATCH_TOLERANCE: float = 1e-6


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


def _largest_polygon(geom: BaseGeometry) -> Polygon | None:
    """Pick the polygon with the largest area out of a repaired geometry."""
    if geom.is_empty:
        return None
    if geom.geom_type == "Polygon":
        return geom if geom.area > 0 else None  # type: ignore[return-value]
    if geom.geom_type in ("MultiPolygon", "GeometryCollection"):
        polys = [
            g
            for part in geom.geoms  # type: ignore[attr-defined]
            for g in getattr(part, "geoms", [part])
            if g.geom_type == "Polygon" and g.area > 0
        ]
        if polys:
            return max(polys, key=lambda g: g.area)
    return None


@dataclass(frozen=True, eq=False)
class Curve:
    """Ordered sequence of 2D control points with open/closed topology.

    Attributes:
        points: Control points in normalized coordinates, shape (N, 2),
            float64, columns (x, y).
        closed: Whether the last point connects back to the first.
        scale: Factor converting normalized coordinates back to pixels.
        previous_index: Shape (N,) int array. Entry ``i`` is the index of the
            corresponding point in the previous iteration's curve, or
            ``NO_PREVIOUS``. Defaults to all ``NO_PREVIOUS``.
    """

    points: np.ndarray
    closed: bool = True
    scale: float = 1.0
    previous_index: np.ndarray = field(default=None)  # type: ignore[assignment]

    def __post_init__(self) -> None:
        pts = np.array(self.points, dtype=np.float64)
        if pts.ndim != 2 or pts.shape[1] != 2:
            raise InvalidGeometryError(
                f"Curve points must have shape (N, 2), got {pts.shape}"
            )
        if pts.shape[0] == 0:
            raise InvalidGeometryError("Curve must contain at least one point")
        if not np.all(np.isfinite(pts)):
            raise InvalidGeometryError("Curve points must be finite")
        if not self.scale > 0:
            raise InvalidGeometryError(f"Curve scale must be positive, got {self.scale}")

        if self.previous_index is None:
            links = np.full(pts.shape[0], NO_PREVIOUS, dtype=np.intp)
        else:
            links = np.array(self.previous_index, dtype=np.intp)
            if links.shape != (pts.shape[0],):
                raise InvalidGeometryError(
                    f"previous_index must have shape ({pts.shape[0]},), "
                    f"got {links.shape}"
                )

        object.__setattr__(self, "points", _readonly(pts))
        object.__setattr__(self, "previous_index", _readonly(links))
        object.__setattr__(self, "closed", bool(self.closed))
        object.__setattr__(self, "scale", float(self.scale))

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_polygon(
        cls,
        points: np.ndarray | list[tuple[float, float]],
        closed: bool = True,
        scale: float = 1.0,
    ) -> Curve:
        """Build a curve from pixel-space polygon vertices.

        The points are copied, divided by *scale* and tagged as having no
        previous index.

        Args:
            points: Sequence of (x, y) pixel coordinates.
            closed: Whether the polygon is closed.
            scale: Normalization factor; stored coordinates are
                ``points / scale``.

        Returns:
            New curve.

        Raises:
            InvalidGeometryError: On empty, malformed or non-finite input, or
                a non-positive scale.
        """
        if not scale > 0:
            raise InvalidGeometryError(f"Curve scale must be positive, got {scale}")
        pts = np.asarray(points, dtype=np.float64)
        if pts.ndim != 2 or pts.shape[1:] != (2,):
            raise InvalidGeometryError(
                f"Polygon points must have shape (N, 2), got {pts.shape}"
            )
        return cls(points=pts / scale, closed=closed, scale=scale)

    def with_points(
        self, points: np.ndarray, previous_index: np.ndarray | None = None
    ) -> Curve:
        """Return a successor curve with the same topology and scale."""
        return Curve(
            points=points,
            closed=self.closed,
            scale=self.scale,
            previous_index=previous_index,
        )

    # ------------------------------------------------------------------
    # Basic accessors
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return int(self.points.shape[0])

    @property
    def n_points(self) -> int:
        return len(self)

    @property
    def pixel_points(self) -> np.ndarray:
        """Control points in pixel coordinates, shape (N, 2)."""
        return self.points * self.scale

    def previous_link(self, i: int) -> int | None:
        """Index of point *i*'s predecessor, or None if it was newly inserted."""
        link = int(self.previous_index[i])
        return None if link == NO_PREVIOUS else link

    def as_vector(self) -> np.ndarray:
        """Stack coordinates as ``[x_0..x_{N-1}, y_0..y_{N-1}]``, shape (2N,)."""
        return np.concatenate([self.points[:, 0], self.points[:, 1]])

    def __repr__(self) -> str:
        kind = "closed" if self.closed else "open"
        return f"Curve(n_points={len(self)}, {kind}, scale={self.scale:g})"

    # ------------------------------------------------------------------
    # Differential quantities
    # ------------------------------------------------------------------

    def first_differences(self) -> np.ndarray:
        """Forward differences ``p[i+1] - p[i]``, shape (N, 2).

        Closed curves wrap around; for open curves the last row is zero.
        """
        diffs = np.roll(self.points, -1, axis=0) - self.points
        if not self.closed:
            diffs[-1] = 0.0
        return diffs

    def second_differences(self) -> np.ndarray:
        """Central second differences ``p[i+1] - 2 p[i] + p[i-1]``, shape (N, 2).

        Closed curves wrap around. For open curves the missing neighbour of
        an endpoint is replaced by the endpoint itself.
        """
        nxt = np.roll(self.points, -1, axis=0)
        prv = np.roll(self.points, 1, axis=0)
        if not self.closed:
            nxt[-1] = self.points[-1]
            prv[0] = self.points[0]
        return nxt - 2.0 * self.points + prv

    def segment_lengths(self) -> np.ndarray:
        """Euclidean length of every segment in normalized units.

        Closed curves include the closing segment, so the result has N
        entries; open curves have N - 1.
        """
        diffs = np.diff(self.points, axis=0)
        if self.closed:
            diffs = np.vstack([diffs, self.points[0] - self.points[-1]])
        return np.hypot(diffs[:, 0], diffs[:, 1])

    def arc_length(self) -> float:
        """Total curve length in pixels."""
        return float(self.segment_lengths().sum() * self.scale)

    # ------------------------------------------------------------------
    # Orientation & area
    # ------------------------------------------------------------------

    def signed_area(self) -> float:
        """Shoelace area of the polygon in pixel units (positive if CCW)."""
        pts = self.pixel_points
        x, y = pts[:, 0], pts[:, 1]
        x_n, y_n = np.roll(x, -1), np.roll(y, -1)
        return float(0.5 * np.sum(x * y_n - y * x_n))

    def is_counter_clockwise(self) -> bool:
        """True if the points are ordered counter-clockwise.

        Orientation is measured in the mathematical sense on the stored
        (x, y) coordinates. With the image y-axis pointing down, such a curve
        appears clockwise on screen.
        """
        return self.signed_area() > 0

    def reversed(self) -> Curve:
        """Return the curve with its point order reversed (links travel along)."""
        return Curve(
            points=self.points[::-1].copy(),
            closed=self.closed,
            scale=self.scale,
            previous_index=self.previous_index[::-1].copy(),
        )

    def center_of_mass(self) -> tuple[float, float]:
        """Mean of the control points in pixel coordinates."""
        com = self.pixel_points.mean(axis=0)
        return float(com[0]), float(com[1])

    def binary_mask(self, width: int, height: int) -> np.ndarray:
        """Rasterize the polygon interior (boundary included).

        Open curves are treated as implicitly closed for rasterization.

        Args:
            width: Mask width in pixels.
            height: Mask height in pixels.

        Returns:
            uint8 array of shape (height, width) with 1 inside, 0 outside.
        """
        mask = np.zeros((height, width), dtype=np.uint8)
        if len(self) < 3:
            return mask
        vertices = np.round(self.pixel_points).astype(np.int32)
        cv2.fillPoly(mask, [vertices.reshape(-1, 1, 2)], 1)
        return mask

    def enclosed_pixel_count(self, raster: object) -> int:
        """Count pixels inside the curve on the grid of *raster*.

        Args:
            raster: Any object exposing integer ``width`` and ``height``.

        Returns:
            Number of interior pixels.
        """
        mask = self.binary_mask(raster.width, raster.height)  # type: ignore[attr-defined]
        return int(np.count_nonzero(mask))

    def clipped(self, width: int, height: int) -> Curve:
        """Clip control points to the pixel domain of a ``width x height`` image."""
        x_max = (width - 1) / self.scale
        y_max = (height - 1) / self.scale
        pts = np.column_stack(
            [
                np.clip(self.points[:, 0], 0.0, x_max),
                np.clip(self.points[:, 1], 0.0, y_max),
            ]
        )
        return self.with_points(pts, self.previous_index.copy())

    # ------------------------------------------------------------------
    # Self-intersections
    # ------------------------------------------------------------------

    def is_simple(self) -> bool:
        """True if no two segments of the curve cross or touch.

        Curves with fewer than four points cannot intersect themselves.
        """
        if len(self) < 4:
            return True
        pts = self.pixel_points
        line = LinearRing(pts) if self.closed else LineString(pts)
        return bool(line.is_simple)

    def made_simple(self) -> Curve:
        """Remove self-intersection loops from a closed curve.

        The polygon is repaired with :func:`shapely.validation.make_valid`
        and the exterior of the largest resulting piece is kept, ordered
        counter-clockwise. Vertices that survive keep their previous-index
        link; intersection points created by the repair get ``NO_PREVIOUS``.
        Open curves and curves whose repair leaves no area are returned
        unchanged.

        Returns:
            Simple curve with the same scale.
        """
        if not self.closed or len(self) < 4:
            return self
        pts = self.pixel_points
        poly = Polygon(pts)
        if not poly.is_valid:
            poly = make_valid(poly)
        poly = _largest_polygon(poly)
        if poly is None:
            logger.debug("Self-intersection repair left no area; curve kept")
            return self

        ring = np.asarray(orient(poly, sign=1.0).exterior.coords)[:-1]
        dist = np.hypot(
            ring[:, None, 0] - pts[None, :, 0], ring[:, None, 1] - pts[None, :, 1]
        )
        nearest = dist.argmin(axis=1)
        matched = dist[np.arange(len(ring)), nearest] <= _VERTEX_MATCH_TOLERANCE
        links = np.where(matched, self.previous_index[nearest], NO_PREVIOUS)

        logger.debug(
            "Removed self-intersections: %d -> %d points", len(self), len(ring)
        )
        return self.with_points(ring / self.scale, links.astype(np.intp))

    # ------------------------------------------------------------------
    # Resampling
    # ------------------------------------------------------------------

    def resample(self, target_spacing: float) -> Curve:
        """Insert/remove points so that segment lengths stay near *target_spacing*.

        Segments no longer than half the spacing lose their end point;
        segments longer than 1.5 times the spacing are split into
        ``floor(length / spacing)`` equal parts, so a segment shorter than two
        spacings is left alone. For closed curves the
        closing segment is handled last by dropping or appending points.
        Retained points keep their previous-index link, inserted points get
        ``NO_PREVIOUS``.

        Args:
            target_spacing: Desired distance between neighbours, in pixels.

        Returns:
            Resampled curve.

        Raises:
            ValueError: If *target_spacing* is not positive.
            InvalidGeometryError: If resampling leaves no points.
        """
        if not target_spacing > 0:
            raise ValueError(f"target_spacing must be positive, got {target_spacing}")

        seg = target_spacing / self.scale
        min_len = _MIN_SEGMENT_FACTOR * seg
        max_len = _MAX_SEGMENT_FACTOR * seg

        pts: list[np.ndarray] = [p.copy() for p in self.points]
        links: list[int] = [int(v) for v in self.previous_index]

        i = 0
        while i < len(pts) - 1:
            delta = pts[i + 1] - pts[i]
            dist = math.hypot(delta[0], delta[1])
            if dist <= min_len:
                del pts[i + 1]
                del links[i + 1]
                continue
            if dist > max_len:
                n_parts = int(math.floor(dist / seg))
                start = pts[i]
                new_pts = [start + delta * (k / n_parts) for k in range(1, n_parts)]
                pts[i + 1 : i + 1] = new_pts
                links[i + 1 : i + 1] = [NO_PREVIOUS] * len(new_pts)
                i += len(new_pts)
            i += 1

        if self.closed and pts:
            delta = pts[0] - pts[-1]
            dist = math.hypot(delta[0], delta[1])
            if dist <= min_len:
                pts.pop()
                links.pop()
            elif dist > max_len:
                n_parts = int(math.floor(dist / seg))
                start = pts[-1]
                for k in range(1, n_parts):
                    pts.append(start + delta * (k / n_parts))
                    links.append(NO_PREVIOUS)

        if not pts:
            raise InvalidGeometryError(
                f"Resampling with spacing {target_spacing:g} left no points"
            )

        if len(pts) != len(self):
            logger.debug(
                "Resampled curve from %d to %d points (spacing=%g)",
                len(self),
                len(pts),
                target_spacing,
            )
        return self.with_points(np.array(pts), np.array(links, dtype=np.intp))
