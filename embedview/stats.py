# -*- coding: utf-8 -*-
"""
stats.py — polygon statistics helpers.

Normalises whatever the statistics endpoint returns into ``StatsRecord``
objects, estimates statistics from point samples when that endpoint fails,
and turns the results into the strings shown in the side panel.

The fallback is an approximation: by default only the polygon vertices are
sampled, so values from the interior never enter the mean.  Setting
``fallback_sampling = grid`` adds a regular grid of interior points.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from pyproj import Geod
from shapely.geometry import MultiPolygon, Point, Polygon, shape as shp_from_geojson
from shapely.errors import ShapelyError
from shapely.geometry.base import BaseGeometry

PLACEHOLDER = "–"
ERROR_TEXT = "error"

GEOD = Geod(ellps="WGS84")


@dataclass
class StatsRecord:
    valid_pixels: int = 0
    mean: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    histogram: Optional[List[Dict[str, float]]] = None
    samples: List[float] = field(default_factory=list)
    source: str = "server"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid_pixels": self.valid_pixels,
            "mean": self.mean,
            "min": self.min,
            "max": self.max,
            "histogram": self.histogram,
            "samples": list(self.samples),
            "source": self.source,
        }


@dataclass
class PolygonSummary:
    record: StatsRecord
    threshold: float
    below_fraction: Optional[float] = None
    area_km2: float = 0.0
    area_below_km2: Optional[float] = None

    def display(self) -> Dict[str, str]:
        return {
            "area_below": format_below(self.below_fraction),
            "mean": format_mean(self.record.mean),
            "min_max": format_min_max(self.record.min, self.record.max),
            "area": format_km2(self.area_km2),
            "area_below_km2": format_km2(self.area_below_km2),
            "source": self.record.source,
        }


# ---------------------------------------------------------------------------
# Geometry helpers
# ---------------------------------------------------------------------------

def as_feature(obj: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(obj, dict):
        raise ValueError("GeoJSON object expected")
    if obj.get("type") == "Feature":
        return obj
    if obj.get("type") == "FeatureCollection":
        features = obj.get("features") or []
        if not features:
            raise ValueError("empty FeatureCollection")
        return as_feature(features[0])
    return {"type": "Feature", "geometry": obj, "properties": {}}


def polygon_geometry(obj: Dict[str, Any]) -> BaseGeometry:
    feature = as_feature(obj)
    geometry = feature.get("geometry")
    if not geometry:
        raise ValueError("feature has no geometry")
    try:
        geom = shp_from_geojson(geometry)
    except (ShapelyError, AttributeError, KeyError, IndexError, TypeError) as exc:
        raise ValueError(f"invalid geometry: {exc}") from exc
    if not isinstance(geom, (Polygon, MultiPolygon)) or geom.is_empty:
        raise ValueError(f"polygon expected, got {geom.geom_type}")
    return geom


def _parts(geom: BaseGeometry) -> List[Polygon]:
    if isinstance(geom, MultiPolygon):
        return list(geom.geoms)
    return [geom]


def _vertices(geom: BaseGeometry) -> List[Tuple[float, float]]:
    coords: List[Tuple[float, float]] = []
    for part in _parts(geom):
        ring = list(part.exterior.coords)
        # GeoJSON rings repeat the first vertex at the end
        if len(ring) > 1 and ring[0] == ring[-1]:
            ring = ring[:-1]
        coords.extend((float(x), float(y)) for x, y, *_ in ring)
    return coords


def _grid_points(geom: BaseGeometry, budget: int) -> List[Tuple[float, float]]:
    if budget <= 0:
        return []
    minx, miny, maxx, maxy = geom.bounds
    # Oversample the bounding box so roughly ``budget`` points land inside
    fill = geom.area / max((maxx - minx) * (maxy - miny), 1e-12)
    per_side = max(2, int(math.ceil(math.sqrt(budget / max(fill, 1e-3)))))
    xs = np.linspace(minx, maxx, per_side + 2)[1:-1]
    ys = np.linspace(miny, maxy, per_side + 2)[1:-1]
    inside = [
        (float(x), float(y))
        for y in ys
        for x in xs
        if geom.contains(Point(x, y))
    ]
    if len(inside) > budget:
        idx = np.linspace(0, len(inside) - 1, budget).round().astype(int)
        inside = [inside[i] for i in idx]
    return inside


def sample_coordinates(obj: Dict[str, Any], max_samples: int = 100, mode: str = "vertices") -> List[Tuple[float, float]]:
    """
    Coordinates to query for the fallback estimate.

    ``vertices`` returns the exterior ring vertices, capped at ``max_samples``.
    ``grid`` keeps the vertices (capped at half the budget) and fills the
    rest of the budget with interior grid points.
    """
    geom = polygon_geometry(obj)
    vertices = _vertices(geom)
    if mode != "grid":
        return vertices[:max_samples]
    vertices = vertices[: max(1, max_samples // 2)]
    return vertices + _grid_points(geom, max_samples - len(vertices))


def geodesic_area_km2(obj: Dict[str, Any]) -> float:
    try:
        geom = polygon_geometry(obj)
    except ValueError:
        return 0.0
    total = 0.0
    for part in _parts(geom):
        area, _ = GEOD.geometry_area_perimeter(part)
        total += abs(area)
    return total / 1e6


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def summarise_samples(values: Sequence[float]) -> StatsRecord:
    arr = np.asarray([v for v in values if v is not None], dtype=float)
    arr = arr[np.isfinite(arr)]
    if arr.size == 0:
        raise ValueError("no finite samples")
    return StatsRecord(
        valid_pixels=int(arr.size),
        mean=float(arr.mean()),
        min=float(arr.min()),
        max=float(arr.max()),
        histogram=None,
        samples=[float(v) for v in arr],
        source="fallback",
    )


def below_threshold_fraction(histogram: Any, threshold: float) -> Optional[float]:
    """Share of counts in buckets whose lower edge lies below ``threshold``."""
    if not isinstance(histogram, list):
        return None
    total = 0.0
    below = 0.0
    for bucket in histogram:
        if not isinstance(bucket, dict):
            continue
        count = _num(bucket.get("count")) or 0.0
        total += count
        lower = bucket.get("min")
        if isinstance(lower, (int, float)) and not isinstance(lower, bool) and lower < threshold:
            below += count
    if total <= 0:
        return None
    return below / total


def samples_below_fraction(samples: Sequence[float], threshold: float) -> Optional[float]:
    if not samples:
        return None
    arr = np.asarray(samples, dtype=float)
    return float((arr < threshold).sum()) / float(arr.size)


def summarise_polygon(record: StatsRecord, threshold: float, area_km2: float = 0.0) -> PolygonSummary:
    if record.histogram is not None:
        fraction = below_threshold_fraction(record.histogram, threshold)
    elif record.samples:
        fraction = samples_below_fraction(record.samples, threshold)
    else:
        fraction = None
    area_below = area_km2 * fraction if (fraction is not None and area_km2 > 0) else None
    return PolygonSummary(
        record=record,
        threshold=threshold,
        below_fraction=fraction,
        area_km2=area_km2,
        area_below_km2=area_below,
    )


# ---------------------------------------------------------------------------
# Response normalisation
# ---------------------------------------------------------------------------

def _num(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def _histogram_buckets(raw: Any) -> Optional[List[Dict[str, float]]]:
    if not isinstance(raw, list) or not raw:
        return None
    if all(isinstance(b, dict) for b in raw):
        return raw
    # [counts, edges] with len(edges) == len(counts) + 1
    if len(raw) == 2 and all(isinstance(part, list) for part in raw):
        counts, edges = raw
        if len(edges) != len(counts) + 1:
            return None
        return [
            {"min": float(edges[i]), "max": float(edges[i + 1]), "count": float(counts[i] or 0)}
            for i in range(len(counts))
        ]
    return None


def _record_from_flat(data: Dict[str, Any]) -> StatsRecord:
    count = data.get("valid_pixels") or data.get("valid_count") or 0
    return StatsRecord(
        valid_pixels=int(_num(count) or 0),
        mean=_num(data.get("mean")),
        min=_num(data.get("min")),
        max=_num(data.get("max")),
        histogram=_histogram_buckets(data.get("histogram")),
        source="server",
    )


def _record_from_feature(feature: Dict[str, Any]) -> Optional[StatsRecord]:
    props = feature.get("properties")
    if not isinstance(props, dict):
        return None
    bands = props.get("statistics")
    if not isinstance(bands, dict) or not bands:
        return None
    first = bands[sorted(bands, key=str)[0]]
    if not isinstance(first, dict):
        return None
    return _record_from_flat(first)


def normalise_stats_response(payload: Any) -> List[StatsRecord]:
    """
    Accept either a list of flat per-geometry records or a GeoJSON
    Feature/FeatureCollection carrying ``properties.statistics`` per band.
    """
    if isinstance(payload, list):
        return [_record_from_flat(item) for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        if payload.get("type") == "FeatureCollection":
            out = []
            for feat in payload.get("features") or []:
                rec = _record_from_feature(feat) if isinstance(feat, dict) else None
                if rec is not None:
                    out.append(rec)
            return out
        if payload.get("type") == "Feature":
            rec = _record_from_feature(payload)
            return [rec] if rec is not None else []
    raise ValueError("unrecognised statistics payload")


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------

def format_point(value: Optional[float]) -> str:
    return PLACEHOLDER if value is None else f"{value:.4f}"


def format_below(fraction: Optional[float]) -> str:
    return PLACEHOLDER if fraction is None else f"{fraction * 100:.1f}% of pixels"


def format_mean(mean: Optional[float]) -> str:
    return PLACEHOLDER if mean is None else f"{mean:.4f}"


def format_min_max(vmin: Optional[float], vmax: Optional[float]) -> str:
    if vmin is None or vmax is None:
        return PLACEHOLDER
    return f"{vmin:.3f} / {vmax:.3f}"


def format_km2(value: Optional[float]) -> str:
    if value is None:
        return PLACEHOLDER
    return f"{value:,.2f} km²"


def empty_display() -> Dict[str, str]:
    return {
        "area_below": PLACEHOLDER,
        "mean": PLACEHOLDER,
        "min_max": PLACEHOLDER,
        "area": PLACEHOLDER,
        "area_below_km2": PLACEHOLDER,
        "source": "",
    }


def error_display() -> Dict[str, str]:
    out = empty_display()
    out.update({"area_below": ERROR_TEXT, "mean": ERROR_TEXT, "min_max": ERROR_TEXT})
    return out
