"""Spherical (Web) Mercator conversion between lon/lat degrees and pixels."""

import logging
import numbers
from dataclasses import dataclass
from functools import lru_cache
from math import atan, atanh, copysign, cos, degrees, exp, floor, isfinite, pi, radians, sin
from typing import NamedTuple

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_TILE_SIZE = 256
DEFAULT_MAX_ZOOM = 18
ZOOM_LIMIT = 30
EARTH_RADIUS = 6378137.0
MAX_LATITUDE = degrees(2 * atan(exp(pi)) - pi / 2)


class ProjectionError(ValueError):
    pass


class InvalidConfiguration(ProjectionError):
    pass


class OutOfRange(ProjectionError):
    pass


class Pixel(NamedTuple):
    x: float
    y: float


class LonLat(NamedTuple):
    lon: float
    lat: float


def clamp_latitude(lat):
    """Clamp ``lat`` into the square Web Mercator extent (about +/-85.0511)."""
    return min(max(lat, -MAX_LATITUDE), MAX_LATITUDE)


def _is_int(value):
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def _check_lonlat(lon, lat):
    if not -180.0 <= lon <= 180.0:
        raise OutOfRange(f'longitude {lon!r} outside [-180, 180]')
    if not -90.0 < lat < 90.0:
        raise OutOfRange(f'latitude {lat!r} outside (-90, 90)')


def _latitude_for_offset(g):
    # 2*atan(exp(g)) - pi/2 folded onto g >= 0 so exp never overflows
    return copysign(90.0 - degrees(2 * atan(exp(-abs(g)))), g)


@dataclass(frozen=True)
class ZoomLevelSpec:
    zoom_level: int
    globe_pixels: float

    @property
    def hemisphere_pixels(self):
        return self.globe_pixels / 2

    @property
    def resolution(self):
        """Radians of longitude covered by one pixel on the unit sphere."""
        return 2.0 * pi / self.globe_pixels

    @property
    def pixels_per_lon_degree(self):
        return self.globe_pixels / 360.0

    @property
    def pixels_per_lon_radian(self):
        return self.globe_pixels / (2.0 * pi)


class SphericalMercator:
    """Forward and inverse Web Mercator transforms at zoom levels 0..max_zoom.

    All per-zoom constants are computed here once; the instance is never
    mutated afterwards, so one projector may be shared freely.
    """

    __slots__ = ('_tile_size', '_zoom_level_specs')

    def __init__(self, tile_size=DEFAULT_TILE_SIZE, max_zoom=DEFAULT_MAX_ZOOM):
        if not _is_int(tile_size) or tile_size <= 0:
            raise InvalidConfiguration(f'tile_size must be a positive integer, got {tile_size!r}')
        if not _is_int(max_zoom) or not 0 <= max_zoom <= ZOOM_LIMIT:
            raise InvalidConfiguration(f'max_zoom must be an integer in [0, {ZOOM_LIMIT}], got {max_zoom!r}')
        self._tile_size = tile_size = int(tile_size)
        self._zoom_level_specs = tuple(
            ZoomLevelSpec(zoom_level, float(tile_size << zoom_level)) for zoom_level in range(max_zoom + 1))
        logger.debug('Built %d zoom levels for tile size %d', len(self._zoom_level_specs), tile_size)

    def __repr__(self):
        return f'{type(self).__name__}(tile_size={self._tile_size}, max_zoom={self.max_zoom})'

    def __len__(self):
        return len(self._zoom_level_specs)

    @property
    def tile_size(self):
        return self._tile_size

    @property
    def max_zoom(self):
        return len(self._zoom_level_specs) - 1

    @property
    def zoom_level_specs(self):
        return self._zoom_level_specs

    def zoom_level_spec(self, zoom):
        if not _is_int(zoom) or not 0 <= zoom <= self.max_zoom:
            raise OutOfRange(f'zoom {zoom!r} outside [0, {self.max_zoom}]')
        return self._zoom_level_specs[zoom]

    def forward(self, lon, lat, zoom, snap=False):
        """Project ``lon``/``lat`` degrees to a pixel at ``zoom``.

        The y axis grows downwards. With ``snap`` both coordinates are
        rounded half-up to whole pixels.
        """
        zoom_spec = self.zoom_level_spec(zoom)
        _check_lonlat(lon, lat)
        sine_lat = sin(radians(lat))
        if abs(sine_lat) >= 1.0:
            raise OutOfRange(f'latitude {lat!r} too close to a pole to project')
        x = zoom_spec.hemisphere_pixels + lon * zoom_spec.pixels_per_lon_degree
        # atanh(sin(phi)) == ln(tan(pi/4 + phi/2))
        y = zoom_spec.hemisphere_pixels - atanh(sine_lat) * zoom_spec.pixels_per_lon_radian
        if snap:
            x, y = float(floor(x + 0.5)), float(floor(y + 0.5))
        return Pixel(x, y)

    def inverse(self, x, y, zoom):
        """Unproject pixel ``x``/``y`` at ``zoom`` back to lon/lat degrees."""
        zoom_spec = self.zoom_level_spec(zoom)
        if not (isfinite(x) and isfinite(y)):
            raise OutOfRange(f'pixel ({x!r}, {y!r}) is not finite')
        lon = (x - zoom_spec.hemisphere_pixels) / zoom_spec.pixels_per_lon_degree
        g = (zoom_spec.hemisphere_pixels - y) / zoom_spec.pixels_per_lon_radian
        return LonLat(lon, _latitude_for_offset(g))

    def pixel_for_lonlat(self, ll, zoom):
        return self.forward(ll[0], ll[1], zoom)

    def lonlat_for_pixel(self, pixel, zoom):
        return self.inverse(pixel[0], pixel[1], zoom)

    def forward_array(self, lons, lats, zoom):
        """Vectorized :meth:`forward`; returns ``(xs, ys)`` float arrays."""
        zoom_spec = self.zoom_level_spec(zoom)
        lons, lats = np.broadcast_arrays(np.asarray(lons, dtype=float), np.asarray(lats, dtype=float))
        if not np.all((lons >= -180.0) & (lons <= 180.0)):
            raise OutOfRange('longitudes outside [-180, 180]')
        if not np.all((lats > -90.0) & (lats < 90.0)):
            raise OutOfRange('latitudes outside (-90, 90)')
        sine_lats = np.sin(np.radians(lats))
        if np.any(np.abs(sine_lats) >= 1.0):
            raise OutOfRange('latitudes too close to a pole to project')
        xs = zoom_spec.hemisphere_pixels + lons * zoom_spec.pixels_per_lon_degree
        ys = zoom_spec.hemisphere_pixels - np.arctanh(sine_lats) * zoom_spec.pixels_per_lon_radian
        return xs, ys

    def inverse_array(self, xs, ys, zoom):
        """Vectorized :meth:`inverse`; returns ``(lons, lats)`` float arrays."""
        zoom_spec = self.zoom_level_spec(zoom)
        xs, ys = np.broadcast_arrays(np.asarray(xs, dtype=float), np.asarray(ys, dtype=float))
        if not np.all(np.isfinite(xs) & np.isfinite(ys)):
            raise OutOfRange('pixels are not finite')
        lons = (xs - zoom_spec.hemisphere_pixels) / zoom_spec.pixels_per_lon_degree
        g = (zoom_spec.hemisphere_pixels - ys) / zoom_spec.pixels_per_lon_radian
        lats = np.copysign(90.0 - np.degrees(2 * np.arctan(np.exp(-np.abs(g)))), g)
        return lons, lats

    def ground_resolution(self, lat, zoom):
        """Metres on the ground covered by one pixel at ``lat`` and ``zoom``."""
        zoom_spec = self.zoom_level_spec(zoom)
        if not -90.0 < lat < 90.0:
            raise OutOfRange(f'latitude {lat!r} outside (-90, 90)')
        return cos(radians(lat)) * EARTH_RADIUS * zoom_spec.resolution


@lru_cache(maxsize=None)
def default_projector():
    """Shared projector with 256 pixel tiles and zoom levels 0..18."""
    return SphericalMercator(DEFAULT_TILE_SIZE, DEFAULT_MAX_ZOOM)
