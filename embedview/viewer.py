# -*- coding: utf-8 -*-
"""
viewer.py — embedview desktop window.

Opens a pywebview window with a Leaflet map showing the cosine-similarity
COG through the tile server, a click-to-query readout and a polygon tool
whose statistics are computed by the tile server (or estimated from point
samples when that fails).
"""

from __future__ import annotations

import argparse
import os
import threading
from typing import List, Optional

os.environ.setdefault("PYWEBVIEW_LOG", "error")

try:
    import webview

    try:
        webview.logger.disabled = True
    except Exception:
        pass
except ModuleNotFoundError as exc:
    raise SystemExit(
        "pywebview is required for embedview (pip install pywebview)"
    ) from exc

from .api import WebApi
from .settings import (
    debug_log,
    enable_console_echo,
    load_settings,
    read_config,
    resolve_base_dir,
)

HTML_TEMPLATE = """<!doctype html>
<html>
<head>
  <meta charset="utf-8">
  <title>Embedding change viewer</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <link rel="stylesheet" href="https://unpkg.com/leaflet@1.9.4/dist/leaflet.css">
  <script src="https://unpkg.com/leaflet@1.9.4/dist/leaflet.js"></script>
  <link rel="stylesheet" href="https://unpkg.com/leaflet-draw@1.0.4/dist/leaflet.draw.css" />
  <script src="https://unpkg.com/leaflet-draw@1.0.4/dist/leaflet.draw.js"></script>
  <style>
    html, body { height:100%; margin:0; }
    body { font-family: system-ui, -apple-system, Segoe UI, Roboto, Arial, sans-serif; background:#f8fafc; color:#1e293b; }
    .wrap { height:100vh; display:grid; grid-template-columns: 320px 1fr; grid-template-areas: "panel map"; }
    .panel { grid-area: panel; border-right:2px solid #1f2937; padding:12px 14px; display:flex; flex-direction:column; gap:10px; overflow:auto; background:#fff; }
    .panel h1 { font-size:18px; margin:0; }
    .panel h2 { font-size:13px; margin:8px 0 4px; text-transform:uppercase; letter-spacing:0.03em; color:#334155; }
    .form-group { display:flex; flex-direction:column; gap:4px; }
    .form-group input, .form-group select { border:1px solid #cbd5f5; border-radius:6px; padding:5px 8px; font-size:13px; }
    .row { display:flex; gap:8px; }
    .row .form-group { flex:1; }
    .buttons { display:flex; gap:8px; flex-wrap:wrap; }
    button { padding:6px 10px; border:1px solid #cbd5f5; border-radius:6px; background:#fff; cursor:pointer; }
    button.primary { background:#2563eb; color:#fff; border-color:#1d4ed8; }
    button.drawing { background:#ff6b6b; color:#fff; border-color:#e11d48; }
    .kv { display:grid; grid-template-columns:120px 1fr; gap:4px 10px; font-size:13px; }
    .kv .v { text-align:right; font-variant-numeric: tabular-nums; }
    .status { font-size:12px; color:#334155; }
    .status.error { color:#b91c1c; }
    .legend img { width:100%; height:14px; display:block; border:1px solid #cbd5f5; }
    .legend .ends { display:flex; justify-content:space-between; font-size:11px; color:#475569; }
    .map { grid-area: map; position:relative; }
    #map { position:absolute; inset:0; }
    #map.leaflet-container { cursor: crosshair; }
  </style>
</head>
<body>
<div class="wrap">
  <div class="panel">
    <div>
      <h1>Embedding change</h1>
      <p class="status" id="statusText">Initialising...</p>
    </div>

    <div>
      <h2>Raster</h2>
      <div class="form-group">
        <label for="colormapSelect">Colormap</label>
        <select id="colormapSelect"></select>
      </div>
      <div class="row">
        <div class="form-group"><label for="rescaleMin">Min</label><input id="rescaleMin" type="number" step="0.01"></div>
        <div class="form-group"><label for="rescaleMax">Max</label><input id="rescaleMax" type="number" step="0.01"></div>
      </div>
      <div class="buttons" style="margin-top:6px;"><button id="applyBtn" class="primary">Apply</button></div>
      <div class="legend" style="margin-top:8px;">
        <img id="legendImg" alt="legend">
        <div class="ends"><span id="legendMin"></span><span id="legendMax"></span></div>
      </div>
    </div>

    <div>
      <h2>Point</h2>
      <div class="kv"><span>Clicked value</span><span class="v" id="clickedValue">–</span></div>
    </div>

    <div>
      <h2>Polygon</h2>
      <div class="form-group">
        <label for="threshold">Threshold</label>
        <input id="threshold" type="number" step="0.01">
      </div>
      <div class="buttons" style="margin:6px 0;">
        <button id="drawBtn">Draw polygon</button>
        <button id="clearBtn">Clear</button>
      </div>
      <div class="kv">
        <span>Area below</span><span class="v" id="areaBelow">–</span>
        <span>Mean</span><span class="v" id="meanVal">–</span>
        <span>Min / max</span><span class="v" id="minMax">–</span>
        <span>Polygon area</span><span class="v" id="areaKm2">–</span>
        <span>Below (km²)</span><span class="v" id="areaBelowKm2">–</span>
      </div>
      <p class="status" id="statsSource"></p>
    </div>

    <div class="buttons"><button id="exitBtn">Exit</button></div>
  </div>
  <div class="map"><div id="map"></div></div>
</div>

<script>
let MAP = null;
let DRAW_CONTROL = null;
let DRAWN = null;
let RASTER = null;
let BOUNDS = null;
let DRAW_MODE = false;
const BACKEND_RETRY_MS = 250;

const statusText = (msg, cls='') => {
  const el = document.getElementById('statusText');
  el.textContent = msg || '';
  el.className = 'status ' + cls;
};
function notifyError(msg){ statusText(String(msg), 'error'); }
function logErr(m){ try{ window.pywebview.api.js_log(String(m)); }catch(e){} }

function getBackendApi(){
  if(!window.pywebview || !window.pywebview.api){ return null; }
  return Promise.resolve(window.pywebview.api);
}

async function callPython(method, ...args){
  const api = await getBackendApi();
  if(!api || typeof api[method] !== 'function'){
    throw new Error(`Backend method '${method}' unavailable`);
  }
  return api[method](...args);
}

function showStats(display){
  const d = display || {};
  document.getElementById('areaBelow').textContent = d.area_below || '–';
  document.getElementById('meanVal').textContent = d.mean || '–';
  document.getElementById('minMax').textContent = d.min_max || '–';
  document.getElementById('areaKm2').textContent = d.area || '–';
  document.getElementById('areaBelowKm2').textContent = d.area_below_km2 || '–';
  document.getElementById('statsSource').textContent =
    d.source === 'fallback' ? 'Estimated from point samples (statistics request failed).' : '';
}

function setDrawMode(enable){
  DRAW_MODE = !!enable;
  const btn = document.getElementById('drawBtn');
  btn.textContent = DRAW_MODE ? 'Drawing... (click map)' : 'Draw polygon';
  btn.classList.toggle('drawing', DRAW_MODE);
  const handler = DRAW_CONTROL?._toolbars?.draw?._modes?.polygon?.handler;
  if(handler){ DRAW_MODE ? handler.enable() : handler.disable(); }
}

function applyLegend(legend){
  if(!legend) return;
  document.getElementById('legendImg').src = legend.url;
  document.getElementById('legendMin').textContent = legend.min;
  document.getElementById('legendMax').textContent = legend.max;
}

async function applyRaster(){
  const payload = {
    colormap: document.getElementById('colormapSelect').value,
    min: document.getElementById('rescaleMin').value,
    max: document.getElementById('rescaleMax').value
  };
  statusText('Loading raster...');
  let res;
  try { res = await callPython('apply_raster', payload); }
  catch(err){ notifyError(err); logErr(err); return; }
  if(res?.rescale){
    document.getElementById('rescaleMin').value = res.rescale.min;
    document.getElementById('rescaleMax').value = res.rescale.max;
  }
  if(!res?.ok){ notifyError(res?.error || 'TileJSON fetch failed'); return; }

  const src = res.source;
  if(RASTER){ MAP.removeLayer(RASTER); RASTER = null; }
  const opts = { tileSize: src.tileSize, opacity: src.opacity, attribution: src.attribution };
  if(src.scheme === 'tms'){ opts.tms = true; }
  if(typeof src.minzoom === 'number'){ opts.minNativeZoom = src.minzoom; }
  if(typeof src.maxzoom === 'number'){ opts.maxNativeZoom = src.maxzoom; }
  BOUNDS = null;
  if(Array.isArray(src.bounds)){
    const [w, s, e, n] = src.bounds;
    BOUNDS = L.latLngBounds([[s, w], [n, e]]);
    opts.bounds = BOUNDS;
  }
  RASTER = L.tileLayer(src.tiles[0], opts).addTo(MAP);
  RASTER.bringToBack();
  if(BOUNDS){
    try { MAP.fitBounds(BOUNDS, { padding:[20,20] }); } catch(e){}
  } else if(Array.isArray(src.center)){
    const [lon, lat, z] = src.center;
    try { MAP.setView([lat, lon], (z != null) ? z : MAP.getZoom()); } catch(e){}
  }
  applyLegend(res.legend);
  statusText('Ready.');
}

async function updatePolygonStats(){
  const layers = DRAWN.getLayers();
  if(!layers.length){ clearPolygonStats(); return; }
  setDrawMode(false);
  const feature = layers[0].toGeoJSON();
  statusText('Computing statistics...');
  try {
    const res = await callPython('polygon_stats', {
      feature: feature,
      threshold: document.getElementById('threshold').value
    });
    showStats(res?.display);
    if(res?.ok){ statusText('Ready.'); } else { notifyError(res?.error || 'Statistics failed'); }
  } catch(err){
    showStats({area_below:'error', mean:'error', min_max:'error'});
    notifyError(err); logErr(err);
  }
}

async function clearPolygonStats(){
  DRAWN.clearLayers();
  setDrawMode(false);
  try { showStats((await callPython('clear_polygon'))?.display); }
  catch(err){ showStats(null); }
}

async function handleMapClick(evt){
  if(DRAW_MODE) return;
  const out = document.getElementById('clickedValue');
  out.textContent = '…';
  try {
    const res = await callPython('query_point', evt.latlng.lat, evt.latlng.lng);
    out.textContent = res?.display || '–';
  } catch(err){
    out.textContent = '–';
  }
}

function ensureMap(state){
  if(MAP) return;
  MAP = L.map('map', { zoomControl:false, worldCopyJump:false });
  L.control.zoom({ position:'topright' }).addTo(MAP);
  L.tileLayer('https://tile.openstreetmap.org/{z}/{x}/{y}.png', { maxZoom:19, attribution:'&copy; OpenStreetMap' }).addTo(MAP);
  MAP.setView(state.center, state.zoom);

  DRAWN = L.featureGroup().addTo(MAP);
  DRAW_CONTROL = new L.Control.Draw({
    position: 'topleft',
    draw: {
      polyline:false, rectangle:false, circle:false, circlemarker:false, marker:false,
      polygon: { allowIntersection:false, shapeOptions:{ color:'#ff0000', fillOpacity:0.3, weight:3 } }
    },
    edit: { featureGroup: DRAWN, remove: true }
  });
  MAP.addControl(DRAW_CONTROL);

  MAP.on(L.Draw.Event.CREATED, (evt) => {
    DRAWN.clearLayers();
    DRAWN.addLayer(evt.layer);
    updatePolygonStats();
  });
  MAP.on(L.Draw.Event.EDITED, updatePolygonStats);
  MAP.on(L.Draw.Event.DELETED, () => { if(!DRAWN.getLayers().length){ clearPolygonStats(); } });
  MAP.on(L.Draw.Event.DRAWSTOP, () => setDrawMode(false));
  MAP.on('click', handleMapClick);
}

function applyState(state){
  const sel = document.getElementById('colormapSelect');
  sel.innerHTML = '';
  (state.colormaps || []).forEach(name => {
    const opt = document.createElement('option');
    opt.value = name; opt.textContent = name;
    sel.appendChild(opt);
  });
  sel.value = state.colormap;
  document.getElementById('rescaleMin').value = state.rescale.min;
  document.getElementById('rescaleMax').value = state.rescale.max;
  document.getElementById('threshold').value = state.threshold;
  showStats(state.display);
  ensureMap(state);

  document.getElementById('applyBtn').addEventListener('click', applyRaster);
  document.getElementById('drawBtn').addEventListener('click', () => setDrawMode(!DRAW_MODE));
  document.getElementById('clearBtn').addEventListener('click', clearPolygonStats);
  document.getElementById('exitBtn').addEventListener('click', () => callPython('exit_app').catch(() => {}));
  applyRaster();
}

let BOOTED = false;
function startBootstrap(){
  const attempt = () => {
    if(BOOTED) return;
    if(typeof L === 'undefined' || !getBackendApi()){
      statusText('Waiting for backend...');
      window.setTimeout(attempt, BACKEND_RETRY_MS);
      return;
    }
    callPython('bootstrap').then(state => {
      if(BOOTED) return;
      if(!state?.ok){ notifyError(state?.error || 'Bootstrap failed'); window.setTimeout(attempt, 500); return; }
      BOOTED = true;
      applyState(state);
    }).catch(err => { notifyError(err); window.setTimeout(attempt, 500); });
  };
  attempt();
}

window.addEventListener('pywebviewready', startBootstrap);
startBootstrap();
</script>
</body>
</html>"""


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Embedding change viewer (tile server client)")
    parser.add_argument("--original_working_directory", dest="owd", help="Folder holding config.ini and log.txt")
    parser.add_argument("--titiler", dest="titiler", help="Tile server base URL (overrides config.ini)")
    parser.add_argument("--cog", dest="cog", help="COG path or URL as seen by the tile server (overrides config.ini)")
    parser.add_argument("--debug", action="store_true", help="Echo log lines to stderr and open the web inspector")
    return parser.parse_args(args)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    enable_console_echo(args.debug)
    base_dir = resolve_base_dir(args.owd)
    cfg = read_config(base_dir)
    if args.titiler:
        cfg["DEFAULT"]["titiler_base"] = args.titiler
    if args.cog:
        cfg["DEFAULT"]["cog_url"] = args.cog
    settings = load_settings(cfg)
    debug_log(base_dir, f"start: titiler={settings.titiler_base}, cog={settings.cog_url}, sampling={settings.fallback_sampling}")

    windows = []

    def _close() -> None:
        for win in windows:
            threading.Timer(0.05, win.destroy).start()

    api = WebApi(settings, base_dir, on_exit=_close)
    window = webview.create_window(
        title="Embedding change viewer",
        html=HTML_TEMPLATE,
        js_api=api,
        width=1300,
        height=800,
        resizable=True,
    )
    windows.append(window)
    webview.start(debug=args.debug)


if __name__ == "__main__":
    main()
