# -*- coding: utf-8 -*-
"""
settings.py — base folder probing, config.ini and log.txt for embedview.

The viewer keeps everything next to ``config.ini``: the log file and any
overrides for the tile server.  Missing or broken values fall back to the
defaults below so the window always opens.
"""

from __future__ import annotations

import configparser
import datetime as dt
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

DEFAULT_TITILER_BASE = "http://localhost:8001"
DEFAULT_COG_URL = "/data/sanjuans_cosine_2020_2024_cog.tif"
DEFAULT_TMS = "WebMercatorQuad"
DEFAULT_COLORMAP = "viridis"
DEFAULT_COLORMAPS = "viridis,magma,plasma,inferno,cividis,rdylgn,rdbu,greys"
DEFAULT_RESCALE = (0.8, 1.0)
DEFAULT_THRESHOLD = 0.9
DEFAULT_MAX_SAMPLES = 100
DEFAULT_TIMEOUT = 15.0
DEFAULT_CENTER = (-107.59, 37.68)
DEFAULT_ZOOM = 8
SAMPLING_MODES = ("vertices", "grid")

_ECHO_STDERR = False


def enable_console_echo(flag: bool = True) -> None:
    global _ECHO_STDERR
    _ECHO_STDERR = bool(flag)


def debug_log(base_dir: Path, message: str) -> None:
    """
    Append a timestamped message to ``log.txt`` for diagnostics.
    Fail silently to avoid disrupting the UI if the filesystem is unavailable.
    """
    ts = dt.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    line = f"[{ts}] [embedview] {message}"
    if _ECHO_STDERR:
        try:
            print(line, file=sys.stderr)
        except Exception:
            pass
    try:
        path = (Path(base_dir) / "log.txt").resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as fh:
            fh.write(line + "\n")
    except Exception:
        pass


def resolve_base_dir(cli_path: Optional[str] = None) -> Path:
    """Pick the first folder holding a config.ini (env, CLI, package, cwd)."""
    candidates: List[Path] = []
    env_base = os.environ.get("EMBEDVIEW_BASE_DIR")
    if env_base:
        candidates.append(Path(env_base))
    if cli_path:
        candidates.append(Path(cli_path))

    here = Path(__file__).resolve()
    candidates.extend([here.parent, here.parent.parent])
    cwd = Path(os.getcwd())
    candidates.append(cwd)

    seen: set[Path] = set()
    ordered: List[Path] = []
    for cand in candidates:
        try:
            resolved = cand.resolve()
        except Exception:
            resolved = cand
        if resolved not in seen:
            seen.add(resolved)
            ordered.append(resolved)

    for cand in ordered:
        if (cand / "config.ini").exists():
            return cand

    # No config anywhere: an explicit folder still wins over the cwd
    if cli_path:
        return Path(cli_path).resolve()
    if env_base:
        return Path(env_base).resolve()
    return cwd.resolve()


def read_config(base_dir: Path) -> configparser.ConfigParser:
    cfg = configparser.ConfigParser(inline_comment_prefixes=(";", "#"), strict=False)
    path = Path(base_dir) / "config.ini"
    if path.exists():
        try:
            cfg.read(path, encoding="utf-8")
        except Exception:
            cfg.read(path)
    if "DEFAULT" not in cfg:
        cfg["DEFAULT"] = {}
    return cfg


def _get_str(cfg: configparser.ConfigParser, key: str, fallback: str) -> str:
    value = (cfg["DEFAULT"].get(key, "") or "").strip()
    return value or fallback


def _get_float(cfg: configparser.ConfigParser, key: str, fallback: float) -> float:
    try:
        return float(cfg["DEFAULT"].get(key, str(fallback)))
    except (TypeError, ValueError):
        return fallback


def _get_int(cfg: configparser.ConfigParser, key: str, fallback: int) -> int:
    try:
        return int(float(cfg["DEFAULT"].get(key, str(fallback))))
    except (TypeError, ValueError):
        return fallback


@dataclass
class ViewerSettings:
    titiler_base: str = DEFAULT_TITILER_BASE
    cog_url: str = DEFAULT_COG_URL
    tile_matrix_set: str = DEFAULT_TMS
    default_colormap: str = DEFAULT_COLORMAP
    colormaps: List[str] = field(default_factory=lambda: DEFAULT_COLORMAPS.split(","))
    rescale_min: float = DEFAULT_RESCALE[0]
    rescale_max: float = DEFAULT_RESCALE[1]
    threshold: float = DEFAULT_THRESHOLD
    max_samples: int = DEFAULT_MAX_SAMPLES
    fallback_sampling: str = "vertices"
    request_timeout: float = DEFAULT_TIMEOUT
    map_center: tuple = DEFAULT_CENTER
    map_zoom: int = DEFAULT_ZOOM


def load_settings(cfg: configparser.ConfigParser) -> ViewerSettings:
    colormaps = [
        c.strip().lower()
        for c in _get_str(cfg, "colormaps", DEFAULT_COLORMAPS).split(",")
        if c.strip()
    ]
    default_cmap = _get_str(cfg, "default_colormap", DEFAULT_COLORMAP).lower()
    if default_cmap not in colormaps:
        colormaps.insert(0, default_cmap)

    sampling = _get_str(cfg, "fallback_sampling", "vertices").lower()
    if sampling not in SAMPLING_MODES:
        sampling = "vertices"

    max_samples = _get_int(cfg, "max_samples", DEFAULT_MAX_SAMPLES)
    if max_samples <= 0:
        max_samples = DEFAULT_MAX_SAMPLES

    timeout = _get_float(cfg, "request_timeout", DEFAULT_TIMEOUT)
    if timeout <= 0:
        timeout = DEFAULT_TIMEOUT

    return ViewerSettings(
        titiler_base=_get_str(cfg, "titiler_base", DEFAULT_TITILER_BASE).rstrip("/"),
        cog_url=_get_str(cfg, "cog_url", DEFAULT_COG_URL),
        tile_matrix_set=_get_str(cfg, "tile_matrix_set", DEFAULT_TMS),
        default_colormap=default_cmap,
        colormaps=colormaps,
        rescale_min=_get_float(cfg, "rescale_min", DEFAULT_RESCALE[0]),
        rescale_max=_get_float(cfg, "rescale_max", DEFAULT_RESCALE[1]),
        threshold=_get_float(cfg, "threshold", DEFAULT_THRESHOLD),
        max_samples=max_samples,
        fallback_sampling=sampling,
        request_timeout=timeout,
        map_center=(
            _get_float(cfg, "map_center_lon", DEFAULT_CENTER[0]),
            _get_float(cfg, "map_center_lat", DEFAULT_CENTER[1]),
        ),
        map_zoom=_get_int(cfg, "map_zoom", DEFAULT_ZOOM),
    )
