from __future__ import annotations

from dataclasses import dataclass
from math import asin, cos, isfinite, radians, sin, sqrt

from siteguard.errors import ValidationError
from siteguard.models import Site

EARTH_MEAN_RADIUS_M = 6371000.0


@dataclass(frozen=True, slots=True)
class GeofenceResult:
    within_radius: bool
    distance_m: float
    radius_m: float | None = None
    bypassed: bool = False


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    # Rounding can push a marginally above 1 for antipodal points.
    c = 2 * asin(sqrt(min(1.0, a)))
    return EARTH_MEAN_RADIUS_M * c


def validate_coordinates(lat: float, lon: float) -> None:
    if lat is None or lon is None or not isfinite(lat) or not isfinite(lon):
        raise ValidationError("Latitude and longitude are required.", code="INVALID_COORDINATES")
    if not -90.0 <= lat <= 90.0:
        raise ValidationError("Latitude must be between -90 and 90.", code="INVALID_COORDINATES")
    if not -180.0 <= lon <= 180.0:
        raise ValidationError("Longitude must be between -180 and 180.", code="INVALID_COORDINATES")


def is_within_radius(
    site_lat: float | None,
    site_lon: float | None,
    radius_m: float | None,
    reported_lat: float,
    reported_lon: float,
) -> GeofenceResult:
    """Classify a reported point against a circular site geofence.

    The boundary is inclusive. A site without coordinates or radius is not
    geofenced and always yields ``(True, 0)`` with ``bypassed`` set.
    """
    if site_lat is None or site_lon is None or radius_m is None:
        return GeofenceResult(within_radius=True, distance_m=0.0, radius_m=radius_m, bypassed=True)

    value = distance_m(site_lat, site_lon, reported_lat, reported_lon)
    return GeofenceResult(
        within_radius=value <= radius_m,
        distance_m=value,
        radius_m=radius_m,
    )


def evaluate_site_geofence(
    site: Site,
    lat: float,
    lon: float,
    *,
    default_radius_m: float,
    bypass_unconfigured: bool,
) -> GeofenceResult:
    validate_coordinates(lat, lon)
    if not site.has_coordinates:
        if not bypass_unconfigured:
            raise ValidationError(
                "Site location is not configured. Contact your supervisor.",
                code="SITE_GEOFENCE_NOT_CONFIGURED",
            )
        return is_within_radius(None, None, None, lat, lon)

    radius_m = site.allowed_radius_m if site.allowed_radius_m is not None else float(default_radius_m)
    return is_within_radius(site.latitude, site.longitude, radius_m, lat, lon)
