# -*- coding: utf-8 -*-
"""
titiler.py — thin HTTP client for the external tile server.

Only URL building and request plumbing live here.  Rendering, colormaps and
statistics are computed by the server; this module just asks for them.
"""

from __future__ import annotations

import http.client
import json
import math
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote, urlencode

from .settings import ViewerSettings, debug_log
from . import stats

USER_AGENT = "embedview/1.0"
STATS_CRS = "EPSG:4326"


class TileServerError(RuntimeError):
    """A request to the tile server failed or returned something unusable."""


class NoValidSamplesError(TileServerError):
    """The fallback estimator could not read a single pixel value."""


def _fmt_num(value: float) -> str:
    # 0.8 -> "0.8", 1.0 -> "1"
    return f"{float(value):g}"


def build_tilejson_url(settings: ViewerSettings, colormap: str, vmin: float, vmax: float) -> str:
    params = urlencode({
        "url": settings.cog_url,
        "rescale": f"{_fmt_num(vmin)},{_fmt_num(vmax)}",
        "colormap_name": colormap,
    })
    return f"{settings.titiler_base}/cog/{settings.tile_matrix_set}/tilejson.json?{params}"


def build_legend_url(settings: ViewerSettings, colormap: str, vmin: float, vmax: float) -> str:
    # legend range is cosmetic; rescale defines the mapping in the tiles
    params = urlencode({
        "colormap_name": colormap,
        "min": _fmt_num(vmin),
        "max": _fmt_num(vmax),
        "format": "png",
    })
    return f"{settings.titiler_base}/colorMaps/{quote(colormap)}?{params}"


def build_point_url(settings: ViewerSettings, lon: float, lat: float) -> str:
    return f"{settings.titiler_base}/cog/point/{lon},{lat}?url={quote(settings.cog_url, safe='')}"


def build_statistics_url(settings: ViewerSettings) -> str:
    params = urlencode({"url": settings.cog_url, "coord_crs": STATS_CRS})
    return f"{settings.titiler_base}/cog/statistics?{params}"


def fetch_json(url: str, payload: Optional[Any] = None, timeout: float = 15.0) -> Any:
    """GET (or POST when ``payload`` is given) and decode a JSON body."""
    headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
    data = None
    if payload is not None:
        data = json.dumps(payload).encode("utf-8")
        headers["Content-Type"] = "application/json"
    req = urllib.request.Request(url, data=data, headers=headers, method="POST" if data is not None else "GET")
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = resp.read()
    except urllib.error.HTTPError as exc:
        raise TileServerError(f"{exc.code} {exc.reason}") from exc
    except (urllib.error.URLError, OSError, http.client.HTTPException) as exc:
        raise TileServerError(f"request failed: {exc}") from exc
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise TileServerError(f"invalid JSON from {url}") from exc


def point_in_bounds(lon: float, lat: float, bounds: Any) -> bool:
    """Bounds are ``[west, south, east, north]``; anything else means unbounded."""
    if not isinstance(bounds, (list, tuple)) or len(bounds) != 4:
        return True
    west, south, east, north = (float(b) for b in bounds)
    return west <= lon <= east and south <= lat <= north


def first_band_value(point_payload: Any) -> Optional[float]:
    if not isinstance(point_payload, dict):
        return None
    values = point_payload.get("values")
    if not isinstance(values, list) or not values:
        return None
    value = values[0]
    if value is None or isinstance(value, bool):
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


class TileServerClient:
    """Requests against one COG on one tile server."""

    def __init__(
        self,
        settings: ViewerSettings,
        base_dir: Path,
        fetch: Callable[..., Any] = fetch_json,
    ) -> None:
        self.settings = settings
        self._base_dir = base_dir
        self._fetch = fetch

    def _get(self, url: str) -> Any:
        return self._fetch(url, None, self.settings.request_timeout)

    def _post(self, url: str, payload: Any) -> Any:
        return self._fetch(url, payload, self.settings.request_timeout)

    def tilejson(self, colormap: str, vmin: float, vmax: float) -> Dict[str, Any]:
        url = build_tilejson_url(self.settings, colormap, vmin, vmax)
        debug_log(self._base_dir, f"tilejson: {url}")
        tj = self._get(url)
        if not isinstance(tj, dict) or not isinstance(tj.get("tiles"), list) or not tj["tiles"]:
            raise TileServerError("TileJSON response lacks a tiles list")
        return tj

    def point_value(self, lon: float, lat: float) -> Any:
        return self._get(build_point_url(self.settings, lon, lat))

    def feature_stats(self, feature: Dict[str, Any]) -> List[stats.StatsRecord]:
        """Server-side polygon statistics, falling back to point sampling."""
        url = build_statistics_url(self.settings)
        body = {"type": "FeatureCollection", "features": [stats.as_feature(feature)]}
        try:
            response = self._post(url, body)
            records = stats.normalise_stats_response(response)
            if not records:
                raise TileServerError("statistics response holds no records")
            return records
        except (TileServerError, ValueError, TypeError) as exc:
            debug_log(self._base_dir, f"feature_stats: statistics request failed ({exc}); sampling points instead")
        return [self.fallback_stats(feature)]

    def fallback_stats(self, feature: Dict[str, Any]) -> stats.StatsRecord:
        coords = stats.sample_coordinates(
            feature,
            max_samples=self.settings.max_samples,
            mode=self.settings.fallback_sampling,
        )
        values: List[float] = []
        for lon, lat in coords:
            try:
                value = first_band_value(self.point_value(lon, lat))
            except TileServerError:
                continue
            if value is not None:
                values.append(value)

        if not values:
            debug_log(self._base_dir, f"fallback_stats: no valid samples out of {len(coords)} point(s)")
            raise NoValidSamplesError("No valid sample points")

        record = stats.summarise_samples(values)
        debug_log(
            self._base_dir,
            f"fallback_stats: {record.valid_pixels} sample(s), mean={record.mean}, min={record.min}, max={record.max}",
        )
        return record
