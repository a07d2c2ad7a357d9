# -*- coding: utf-8 -*-
"""
api.py — the bridge object exposed to the embedded Leaflet page.

Every public method is callable from JavaScript as
``window.pywebview.api.<name>(payload)`` and returns a JSON-ready dict with an
``ok`` flag.  Network failures never escape: they degrade to placeholder
values in the returned ``display`` block.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from .settings import DEFAULT_RESCALE, ViewerSettings, debug_log
from .titiler import (
    TileServerClient,
    TileServerError,
    build_legend_url,
    first_band_value,
    point_in_bounds,
)
from . import stats

RASTER_OPACITY = 0.9


def _as_float(value: Any) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return math.nan
    return out


def validate_rescale(vmin: Any, vmax: Any) -> Tuple[float, float]:
    """Non-numeric input resets to the default range; an empty range is widened."""
    lo, hi = _as_float(vmin), _as_float(vmax)
    if math.isnan(lo) or math.isnan(hi):
        lo, hi = DEFAULT_RESCALE
    if lo >= hi:
        hi = lo + 0.01
    return lo, hi


def tile_source(tj: Dict[str, Any]) -> Dict[str, Any]:
    """Leaflet tile layer options taken from a TileJSON document."""
    src: Dict[str, Any] = {
        "tiles": tj.get("tiles") or [],
        "tileSize": 256,
        "attribution": tj.get("attribution") or "",
        "opacity": RASTER_OPACITY,
    }
    bounds = tj.get("bounds")
    if isinstance(bounds, list) and len(bounds) == 4:
        src["bounds"] = bounds
    for key in ("minzoom", "maxzoom"):
        value = tj.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            src[key] = value
    if isinstance(tj.get("scheme"), str):
        src["scheme"] = tj["scheme"]
    center = tj.get("center")
    if isinstance(center, list) and len(center) >= 2:
        src["center"] = center
    return src


@dataclass
class ViewerState:
    colormap: str
    rescale: Tuple[float, float]
    tilejson: Optional[Dict[str, Any]] = None
    polygon: Optional[Dict[str, Any]] = None
    summary: Optional[stats.PolygonSummary] = None


class WebApi:
    """Expose tile server queries and the viewer state to the page."""

    def __init__(
        self,
        settings: ViewerSettings,
        base_dir: Path,
        client: Optional[TileServerClient] = None,
        on_exit: Optional[Callable[[], None]] = None,
    ) -> None:
        self._settings = settings
        self._base_dir = base_dir
        self._client = client or TileServerClient(settings, base_dir)
        self._on_exit = on_exit
        self._lock = threading.Lock()
        self._state = ViewerState(
            colormap=settings.default_colormap,
            rescale=validate_rescale(settings.rescale_min, settings.rescale_max),
        )
        debug_log(self._base_dir, "WebApi initialised")

    # --------------------- helpers ---------------------
    def _current_bounds(self) -> Any:
        with self._lock:
            tj = self._state.tilejson
        return tj.get("bounds") if tj else None

    def _legend(self, colormap: str, vmin: float, vmax: float) -> Dict[str, Any]:
        return {
            "url": build_legend_url(self._settings, colormap, vmin, vmax),
            "min": f"{vmin:g}",
            "max": f"{vmax:g}",
        }

    # --------------------- exposed API -----------------
    def js_log(self, message: str) -> None:
        debug_log(self._base_dir, f"[JS] {message}")

    def bootstrap(self, _payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        s = self._settings
        with self._lock:
            vmin, vmax = self._state.rescale
            colormap = self._state.colormap
        return {
            "ok": True,
            "colormaps": list(s.colormaps),
            "colormap": colormap,
            "rescale": {"min": vmin, "max": vmax},
            "threshold": s.threshold,
            "center": [s.map_center[1], s.map_center[0]],
            "zoom": s.map_zoom,
            "titiler_base": s.titiler_base,
            "cog_url": s.cog_url,
            "display": stats.empty_display(),
        }

    def apply_raster(self, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = payload or {}
        colormap = (str(payload.get("colormap") or "").strip().lower()) or self._settings.default_colormap
        vmin, vmax = validate_rescale(payload.get("min"), payload.get("max"))
        rescale = {"min": vmin, "max": vmax}
        try:
            tj = self._client.tilejson(colormap, vmin, vmax)
        except TileServerError as exc:
            debug_log(self._base_dir, f"apply_raster: TileJSON fetch failed ({exc})")
            return {"ok": False, "error": f"TileJSON fetch failed: {exc}", "rescale": rescale}

        with self._lock:
            self._state.colormap = colormap
            self._state.rescale = (vmin, vmax)
            self._state.tilejson = tj
        debug_log(self._base_dir, f"apply_raster: colormap={colormap}, rescale={vmin},{vmax}")
        return {
            "ok": True,
            "colormap": colormap,
            "rescale": rescale,
            "source": tile_source(tj),
            "legend": self._legend(colormap, vmin, vmax),
        }

    def legend(self, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = payload or {}
        colormap = (str(payload.get("colormap") or "").strip().lower()) or self._settings.default_colormap
        vmin, vmax = validate_rescale(payload.get("min"), payload.get("max"))
        return {"ok": True, "legend": self._legend(colormap, vmin, vmax)}

    def query_point(self, lat: Any, lng: Any) -> Dict[str, Any]:
        try:
            lon_f, lat_f = float(lng), float(lat)
        except (TypeError, ValueError):
            return {"ok": False, "error": "Invalid coordinates.", "value": None, "display": stats.PLACEHOLDER}

        if not point_in_bounds(lon_f, lat_f, self._current_bounds()):
            return {"ok": True, "value": None, "display": stats.PLACEHOLDER, "outside": True}

        try:
            value = first_band_value(self._client.point_value(lon_f, lat_f))
        except TileServerError as exc:
            debug_log(self._base_dir, f"query_point: {lon_f},{lat_f} failed ({exc})")
            return {"ok": True, "value": None, "display": stats.PLACEHOLDER}
        return {"ok": True, "value": value, "display": stats.format_point(value)}

    def polygon_stats(self, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = payload or {}
        feature = payload.get("feature")
        if not feature:
            return self.clear_polygon()
        threshold = _as_float(payload.get("threshold"))
        if math.isnan(threshold):
            threshold = self._settings.threshold

        try:
            feature = stats.as_feature(feature)
            records = self._client.feature_stats(feature)
            summary = stats.summarise_polygon(records[0], threshold, stats.geodesic_area_km2(feature))
        except (TileServerError, ValueError) as exc:
            debug_log(self._base_dir, f"polygon_stats: error {exc}")
            with self._lock:
                self._state.polygon = feature
                self._state.summary = None
            return {"ok": False, "error": str(exc), "display": stats.error_display()}

        with self._lock:
            self._state.polygon = feature
            self._state.summary = summary
        debug_log(
            self._base_dir,
            f"polygon_stats: source={summary.record.source}, below={summary.below_fraction}, mean={summary.record.mean}",
        )
        return {
            "ok": True,
            "record": summary.record.to_dict(),
            "below_fraction": summary.below_fraction,
            "threshold": threshold,
            "display": summary.display(),
        }

    def clear_polygon(self, _payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        with self._lock:
            self._state.polygon = None
            self._state.summary = None
        return {"ok": True, "display": stats.empty_display()}

    def exit_app(self) -> None:
        if self._on_exit is not None:
            self._on_exit()
