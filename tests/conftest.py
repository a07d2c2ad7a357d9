"""Shared fixtures: settings pointing at a fake tile server, scripted fetchers."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import pytest

from embedview.settings import ViewerSettings
from embedview.titiler import TileServerError

TRIANGLE = {
    "type": "Feature",
    "properties": {},
    "geometry": {
        "type": "Polygon",
        "coordinates": [[[-107.6, 37.6], [-107.5, 37.6], [-107.55, 37.7], [-107.6, 37.6]]],
    },
}


class ScriptedFetch:
    """Stand-in for ``fetch_json``: routes by URL fragment, records calls."""

    def __init__(self, routes: Dict[str, Any]) -> None:
        self.routes = routes
        self.calls: List[tuple] = []

    def __call__(self, url: str, payload: Optional[Any] = None, timeout: float = 15.0) -> Any:
        self.calls.append((url, payload, timeout))
        for fragment, answer in self.routes.items():
            if fragment in url:
                if isinstance(answer, Exception):
                    raise answer
                if callable(answer):
                    return answer(url, payload)
                return answer
        raise TileServerError("404 Not Found")


def point_values(values: List[Any]) -> Callable[[str, Any], Any]:
    it = iter(values)

    def _answer(url: str, payload: Any) -> Any:
        value = next(it)
        if isinstance(value, Exception):
            raise value
        return {"coordinates": [0, 0], "values": [value], "band_names": ["b1"]}

    return _answer


@pytest.fixture
def settings() -> ViewerSettings:
    return ViewerSettings(titiler_base="http://tiles.test", cog_url="/data/cos.tif")


@pytest.fixture
def triangle() -> Dict[str, Any]:
    return TRIANGLE
