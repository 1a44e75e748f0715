import pytest

from skyfi_mcp.domain.models.errors import SkyFiValidationError
from skyfi_mcp.infrastructure.skyfi.geometry import (
    close_ring, normalize_aoi_params, point_to_ring, to_wkt_polygon
)

SQUARE = [[10, 20], [11, 20], [11, 21], [10, 21], [10, 20]]

def test_closed_polygon_to_wkt():
    wkt = to_wkt_polygon({"type": "Polygon", "coordinates": [SQUARE]})
    assert wkt == "POLYGON ((10 20, 11 20, 11 21, 10 21, 10 20))"

def test_open_ring_is_closed():
    wkt = to_wkt_polygon({"type": "Polygon", "coordinates": [SQUARE[:4]]})
    assert wkt.endswith("10 21, 10 20))")

def test_fractional_coordinates_are_kept():
    ring = [[-122.5, 37.25], [-122.0, 37.25], [-122.0, 37.75], [-122.5, 37.75]]
    wkt = to_wkt_polygon({"type": "Polygon", "coordinates": [ring]})
    assert wkt == "POLYGON ((-122.5 37.25, -122 37.25, -122 37.75, -122.5 37.75, -122.5 37.25))"

def test_point_expands_to_closed_square():
    wkt = to_wkt_polygon({"type": "Point", "coordinates": [10, 20]})
    assert wkt.startswith("POLYGON ((")
    positions = wkt[len("POLYGON (("):-2].split(", ")
    assert len(positions) == 5
    assert positions[0] == positions[-1]

def test_point_square_half_width():
    ring = point_to_ring(10.0, 20.0)
    lons = [lon for lon, _ in ring]
    lats = [lat for _, lat in ring]
    assert min(lons) == pytest.approx(9.99)
    assert max(lons) == pytest.approx(10.01)
    assert min(lats) == pytest.approx(19.99)
    assert max(lats) == pytest.approx(20.01)

def test_point_square_is_clamped_at_the_antimeridian():
    ring = point_to_ring(180.0, 0.0)
    assert max(lon for lon, _ in ring) == 180.0

def test_feature_wrapper_is_unwrapped():
    feature = {"type": "Feature", "geometry": {"type": "Polygon", "coordinates": [SQUARE]}, "properties": {}}
    assert to_wkt_polygon(feature).startswith("POLYGON ((10 20")

def test_latitude_longitude_objects_are_accepted():
    ring = [{"longitude": 10, "latitude": 20}, {"longitude": 11, "latitude": 20},
            {"longitude": 11, "latitude": 21}, {"longitude": 10, "latitude": 21}]
    assert to_wkt_polygon({"type": "Polygon", "coordinates": [ring]}).startswith("POLYGON ((10 20, 11 20")

@pytest.mark.parametrize("geometry", [
    None,
    {"type": "LineString", "coordinates": SQUARE},
    {"type": "Polygon", "coordinates": []},
    {"type": "Polygon", "coordinates": [SQUARE[:3]]},
    {"type": "Polygon", "coordinates": [[[200, 0], [1, 0], [1, 1], [0, 1]]]},
    {"type": "Polygon", "coordinates": [[[0, 95], [1, 0], [1, 1], [0, 1]]]},
    {"type": "Point", "coordinates": ["a", "b"]},
])
def test_invalid_geometry_raises_validation_error(geometry):
    with pytest.raises(SkyFiValidationError):
        to_wkt_polygon(geometry)

def test_close_ring_leaves_closed_ring_alone():
    ring = [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 0.0)]
    assert close_ring(ring) == ring

def test_normalize_aoi_params_converts_location():
    params = {"location": {"type": "Polygon", "coordinates": [SQUARE]}, "maxCloudCoverage": 20}
    normalized = normalize_aoi_params(params)
    assert normalized["aoi"].startswith("POLYGON ((")
    assert "location" not in normalized
    assert normalized["maxCloudCoverage"] == 20
    # Input is not mutated
    assert "location" in params

def test_normalize_aoi_params_keeps_explicit_wkt():
    params = {"aoi": "POLYGON ((0 0, 1 0, 1 1, 0 1, 0 0))", "geometry": {"type": "Point", "coordinates": [5, 5]}}
    assert normalize_aoi_params(params) == params

def test_normalize_aoi_params_converts_geojson_aoi():
    normalized = normalize_aoi_params({"aoi": {"type": "Polygon", "coordinates": [SQUARE]}})
    assert normalized["aoi"] == "POLYGON ((10 20, 11 20, 11 21, 10 21, 10 20))"

def test_normalize_aoi_params_handles_none():
    assert normalize_aoi_params(None) == {}
