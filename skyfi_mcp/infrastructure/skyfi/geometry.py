"""GeoJSON to WKT conversion for SkyFi area-of-interest parameters.

SkyFi expects AOIs as WKT polygons, `POLYGON ((lon lat, lon lat, ...))`.
Callers usually hold GeoJSON, so points and polygons are normalized here.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

from skyfi_mcp.domain.models.common import WKTPolygon
from skyfi_mcp.domain.models.errors import SkyFiValidationError

logger = logging.getLogger(__name__)

POINT_HALF_WIDTH_DEGREES = 0.01
MIN_RING_POSITIONS = 4

Position = Tuple[float, float]

def _coerce_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            number = float(value)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None

def _to_position(value: Any) -> Position:
    """Accepts `[lon, lat, ...]` or `{"longitude": .., "latitude": ..}`."""
    lon: Optional[float] = None
    lat: Optional[float] = None
    if isinstance(value, (list, tuple)) and len(value) >= 2:
        lon, lat = _coerce_number(value[0]), _coerce_number(value[1])
    elif isinstance(value, dict):
        lon, lat = _coerce_number(value.get("longitude")), _coerce_number(value.get("latitude"))

    if lon is None or lat is None:
        raise SkyFiValidationError(f"Invalid coordinate: {value!r}")
    if not -180 <= lon <= 180:
        raise SkyFiValidationError(f"Longitude out of range [-180, 180]: {lon}")
    if not -90 <= lat <= 90:
        raise SkyFiValidationError(f"Latitude out of range [-90, 90]: {lat}")
    return lon, lat

def close_ring(ring: List[Position]) -> List[Position]:
    """Appends the first position when the ring is open."""
    if ring and ring[0] != ring[-1]:
        return ring + [ring[0]]
    return ring

def normalize_ring(positions: Sequence[Any]) -> List[Position]:
    if not isinstance(positions, (list, tuple)):
        raise SkyFiValidationError("Polygon ring must be a list of positions")
    ring = [_to_position(p) for p in positions]
    if len(ring) < MIN_RING_POSITIONS:
        raise SkyFiValidationError(
            f"Polygon ring needs at least {MIN_RING_POSITIONS} positions, got {len(ring)}"
        )
    return close_ring(ring)

def point_to_ring(lon: float, lat: float, half_width: float = POINT_HALF_WIDTH_DEGREES) -> List[Position]:
    """Square around a point, clamped to valid coordinates."""
    west, east = max(-180.0, lon - half_width), min(180.0, lon + half_width)
    south, north = max(-90.0, lat - half_width), min(90.0, lat + half_width)
    return [(west, south), (east, south), (east, north), (west, north), (west, south)]

def _format_number(value: float) -> str:
    # 10.0 -> "10", 10.25 -> "10.25"
    return repr(int(value)) if value.is_integer() else repr(value)

def ring_to_wkt(ring: List[Position]) -> str:
    return ", ".join(f"{_format_number(lon)} {_format_number(lat)}" for lon, lat in ring)

def to_wkt_polygon(geometry: Dict[str, Any]) -> WKTPolygon:
    """Converts a GeoJSON Point or Polygon (or a Feature wrapping one) to WKT.

    Args:
        geometry: The GeoJSON object.

    Returns:
        The WKT polygon string.

    Raises:
        SkyFiValidationError: If the geometry is missing, of another type, or invalid.
    """
    if not isinstance(geometry, dict):
        raise SkyFiValidationError("Geometry must be a GeoJSON object")
    if geometry.get("type") == "Feature":
        return to_wkt_polygon(geometry.get("geometry"))

    geometry_type = geometry.get("type")
    coordinates = geometry.get("coordinates")

    if geometry_type == "Point":
        lon, lat = _to_position(coordinates)
        rings = [point_to_ring(lon, lat)]
    elif geometry_type == "Polygon":
        if not isinstance(coordinates, (list, tuple)) or not coordinates:
            raise SkyFiValidationError("Polygon requires at least one ring")
        rings = [normalize_ring(ring) for ring in coordinates]
    else:
        raise SkyFiValidationError(f"Unsupported geometry type: {geometry_type!r}")

    wkt = "POLYGON (" + ", ".join(f"({ring_to_wkt(ring)})" for ring in rings) + ")"
    logger.debug(f"Converted {geometry_type} geometry to WKT ({len(rings)} ring(s))")
    return WKTPolygon(wkt)

def normalize_aoi_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Fills `aoi` from a GeoJSON `location`/`geometry` when no WKT text is given.

    A GeoJSON object passed directly as `aoi` is converted as well. The source
    keys are removed once consumed.
    """
    normalized = dict(params or {})
    aoi = normalized.get("aoi")
    if isinstance(aoi, dict):
        normalized["aoi"] = to_wkt_polygon(aoi)
        return normalized
    if isinstance(aoi, str) and aoi.strip():
        return normalized

    for source_key in ("location", "geometry"):
        source = normalized.get(source_key)
        if isinstance(source, dict):
            normalized["aoi"] = to_wkt_polygon(source)
            del normalized[source_key]
            break
    return normalized
