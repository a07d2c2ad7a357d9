from __future__ import annotations

import pytest

from embedview import stats


def test_summarise_samples_mean_min_max():
    rec = stats.summarise_samples([0.1, 0.5, 0.9])
    assert rec.valid_pixels == 3
    assert rec.mean == pytest.approx(0.5)
    assert rec.min == pytest.approx(0.1)
    assert rec.max == pytest.approx(0.9)
    assert rec.histogram is None
    assert rec.source == "fallback"


def test_summarise_samples_ignores_nan_and_none():
    rec = stats.summarise_samples([0.2, float("nan"), None, 0.4])
    assert rec.valid_pixels == 2
    assert rec.mean == pytest.approx(0.3)


def test_summarise_samples_rejects_empty():
    with pytest.raises(ValueError):
        stats.summarise_samples([])


def test_below_threshold_fraction_sums_lower_buckets():
    histogram = [
        {"min": 0.0, "max": 0.5, "count": 10},
        {"min": 0.5, "max": 0.8, "count": 30},
        {"min": 0.8, "max": 1.0, "count": 60},
    ]
    assert stats.below_threshold_fraction(histogram, 0.6) == pytest.approx(0.4)
    assert stats.below_threshold_fraction(histogram, 0.0) == pytest.approx(0.0)
    assert stats.below_threshold_fraction(histogram, 2.0) == pytest.approx(1.0)


def test_below_threshold_fraction_missing_counts_and_empty_total():
    assert stats.below_threshold_fraction([{"min": 0.1}, {"min": 0.9, "count": 4}], 0.5) == pytest.approx(0.0)
    assert stats.below_threshold_fraction([{"min": 0.1, "count": 0}], 0.5) is None
    assert stats.below_threshold_fraction(None, 0.5) is None


def test_summarise_polygon_uses_samples_without_histogram():
    rec = stats.summarise_samples([0.1, 0.5, 0.9])
    summary = stats.summarise_polygon(rec, 0.6, area_km2=10.0)
    assert summary.below_fraction == pytest.approx(2 / 3)
    assert summary.area_below_km2 == pytest.approx(20 / 3)
    shown = summary.display()
    assert shown["area_below"] == "66.7% of pixels"
    assert shown["mean"] == "0.5000"
    assert shown["min_max"] == "0.100 / 0.900"


def test_summarise_polygon_without_histogram_or_samples():
    summary = stats.summarise_polygon(stats.StatsRecord(valid_pixels=5, mean=0.4, min=0.1, max=0.7), 0.5)
    assert summary.below_fraction is None
    assert summary.display()["area_below"] == stats.PLACEHOLDER


def test_normalise_flat_records():
    records = stats.normalise_stats_response([
        {"valid_count": 42, "mean": 0.7, "min": 0.2, "max": 0.95,
         "histogram": [{"min": 0.2, "max": 0.6, "count": 2}, {"min": 0.6, "max": 0.95, "count": 40}]},
    ])
    assert len(records) == 1
    rec = records[0]
    assert rec.valid_pixels == 42
    assert rec.mean == pytest.approx(0.7)
    assert rec.histogram[1]["count"] == 40
    assert rec.source == "server"


def test_normalise_feature_collection_histogram_edges():
    payload = {
        "type": "FeatureCollection",
        "features": [{
            "type": "Feature",
            "geometry": None,
            "properties": {"statistics": {"b1": {
                "min": 0.2, "max": 1.0, "mean": 0.8, "valid_pixels": 100,
                "histogram": [[10, 30, 60], [0.2, 0.5, 0.8, 1.0]],
            }}},
        }],
    }
    rec = stats.normalise_stats_response(payload)[0]
    assert rec.valid_pixels == 100
    assert rec.histogram == [
        {"min": 0.2, "max": 0.5, "count": 10.0},
        {"min": 0.5, "max": 0.8, "count": 30.0},
        {"min": 0.8, "max": 1.0, "count": 60.0},
    ]
    assert stats.summarise_polygon(rec, 0.6).below_fraction == pytest.approx(0.4)


def test_normalise_rejects_unknown_payload():
    with pytest.raises(ValueError):
        stats.normalise_stats_response({"detail": "Not Found"})


def test_vertices_drop_closing_coordinate(triangle):
    coords = stats.sample_coordinates(triangle)
    assert coords == [(-107.6, 37.6), (-107.5, 37.6), (-107.55, 37.7)]


def test_vertices_are_capped():
    ring = [[float(i), float(i % 2)] for i in range(10)] + [[9.0, 5.0], [0.0, 5.0], [0.0, 0.0]]
    geom = {"type": "Polygon", "coordinates": [ring]}
    assert len(stats.sample_coordinates(geom, max_samples=4)) == 4


def test_grid_sampling_stays_inside_budget():
    square = {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]]}
    coords = stats.sample_coordinates(square, max_samples=20, mode="grid")
    assert 4 < len(coords) <= 20
    assert coords[:4] == [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)]
    assert all(0 < x < 1 and 0 < y < 1 for x, y in coords[4:])


def test_sample_coordinates_rejects_points():
    with pytest.raises(ValueError):
        stats.sample_coordinates({"type": "Point", "coordinates": [0, 0]})


def test_geodesic_area_of_one_degree_cell():
    cell = {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]]}
    assert 12000 < stats.geodesic_area_km2(cell) < 12500
    assert stats.geodesic_area_km2({"type": "Point", "coordinates": [0, 0]}) == 0.0


def test_display_helpers():
    assert stats.format_point(0.87654321) == "0.8765"
    assert stats.format_point(None) == stats.PLACEHOLDER
    assert stats.format_min_max(0.1, None) == stats.PLACEHOLDER
    assert stats.error_display()["mean"] == stats.ERROR_TEXT


def _two_squares():
    return {"type": "MultiPolygon", "coordinates": [
        [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]],
        [[[2, 0], [3, 0], [3, 1], [2, 1], [2, 0]]],
    ]}


def test_multipolygon_vertices_per_part():
    coords = stats.sample_coordinates(_two_squares())
    assert coords == [
        (0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0),
        (2.0, 0.0), (3.0, 0.0), (3.0, 1.0), (2.0, 1.0),
    ]
    capped = stats.sample_coordinates(_two_squares(), max_samples=6)
    assert capped == coords[:6]


def test_multipolygon_area_is_sum_of_parts():
    multi = _two_squares()
    parts = [{"type": "Polygon", "coordinates": rings} for rings in multi["coordinates"]]
    expected = sum(stats.geodesic_area_km2(p) for p in parts)
    assert stats.geodesic_area_km2(multi) == pytest.approx(expected)
    assert stats.geodesic_area_km2(multi) > stats.geodesic_area_km2(parts[0])


def test_unknown_geometry_type_is_a_value_error():
    with pytest.raises(ValueError):
        stats.polygon_geometry({"type": "Blob", "coordinates": []})
    with pytest.raises(ValueError):
        stats.polygon_geometry({"type": "Feature", "geometry": {"coordinates": [[0, 0]]}})
    assert stats.geodesic_area_km2({"type": "Blob"}) == 0.0
