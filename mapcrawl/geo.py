"""Geospatial helpers and search-area tiling."""
from __future__ import annotations

import math
from typing import List, Optional

from . import config
from .models import (
    BoundingBox,
    Geometry,
    LatLng,
    MultiPolygonGeometry,
    PointGeometry,
    PolygonGeometry,
    SearchJob,
    TileDescriptor,
)

KM_PER_DEGREE = 111.0
MIN_SPAN_DEG = 0.0001


def _km_per_lng_degree(lat: float) -> float:
    return max(MIN_SPAN_DEG, math.cos(math.radians(lat)) * KM_PER_DEGREE)


def point_bounding_box(point: PointGeometry, radius_km: Optional[float] = None) -> BoundingBox:
    if radius_km is None:
        radius_km = point.radius_km if point.radius_km and point.radius_km > 0 else config.DEFAULT_POINT_RADIUS_KM
    lat_delta = radius_km / KM_PER_DEGREE
    lng_delta = radius_km / _km_per_lng_degree(point.lat)
    return BoundingBox(
        min_lat=point.lat - lat_delta,
        max_lat=point.lat + lat_delta,
        min_lng=point.lng - lng_delta,
        max_lng=point.lng + lng_delta,
    )


def polygon_bounding_box(polygon: PolygonGeometry) -> BoundingBox:
    lats = [lat for ring in polygon.rings for _, lat in ring]
    lngs = [lng for ring in polygon.rings for lng, _ in ring]
    if not lats:
        raise ValueError("Polygon has no positions")
    return BoundingBox(min_lat=min(lats), max_lat=max(lats), min_lng=min(lngs), max_lng=max(lngs))


def bounding_boxes_for(geometry: Geometry) -> List[BoundingBox]:
    if isinstance(geometry, PointGeometry):
        return [point_bounding_box(geometry)]
    if isinstance(geometry, PolygonGeometry):
        return [polygon_bounding_box(geometry)]
    if isinstance(geometry, MultiPolygonGeometry):
        return [polygon_bounding_box(poly) for poly in geometry.polygons]
    raise ValueError(f"Unsupported geometry: {geometry!r}")


def bounding_box_for(geometry: Geometry) -> BoundingBox:
    """Overall extent of a geometry (union of its per-polygon boxes)."""
    boxes = bounding_boxes_for(geometry)
    return BoundingBox(
        min_lat=min(b.min_lat for b in boxes),
        max_lat=max(b.max_lat for b in boxes),
        min_lng=min(b.min_lng for b in boxes),
        max_lng=max(b.max_lng for b in boxes),
    )


def box_to_tiles(
    bbox: BoundingBox,
    tile_size_km: float = config.DEFAULT_TILE_SIZE_KM,
    zoom: int = config.DEFAULT_ZOOM,
    max_cells: int = config.MAX_TILES_PER_BOX,
    start_index: int = 0,
) -> List[TileDescriptor]:
    if tile_size_km <= 0:
        raise ValueError("tile_size_km must be positive")
    if max_cells < 1:
        raise ValueError("max_cells must be >= 1")

    lat_center = (bbox.min_lat + bbox.max_lat) / 2
    lat_span = max(MIN_SPAN_DEG, bbox.max_lat - bbox.min_lat)
    lng_span = max(MIN_SPAN_DEG, bbox.max_lng - bbox.min_lng)

    lat_deg_per_tile = tile_size_km / KM_PER_DEGREE
    lng_deg_per_tile = tile_size_km / _km_per_lng_degree(lat_center)

    lat_cells = max(1, math.ceil(lat_span / lat_deg_per_tile))
    lng_cells = max(1, math.ceil(lng_span / lng_deg_per_tile))

    total = lat_cells * lng_cells
    if total > max_cells:
        # Coarser cells over the same area; rounding can overshoot by a row.
        scale = math.sqrt(total / max_cells)
        lat_cells = max(1, round(lat_cells / scale))
        lng_cells = max(1, round(lng_cells / scale))
        while lat_cells * lng_cells > max_cells:
            if lat_cells >= lng_cells and lat_cells > 1:
                lat_cells -= 1
            elif lng_cells > 1:
                lng_cells -= 1
            else:
                break

    lat_step = lat_span / lat_cells
    lng_step = lng_span / lng_cells
    # Floored spans stay centred on the original box.
    origin_lat = lat_center - lat_span / 2
    origin_lng = (bbox.min_lng + bbox.max_lng) / 2 - lng_span / 2

    tiles: List[TileDescriptor] = []
    idx = start_index
    for i in range(lat_cells):
        for j in range(lng_cells):
            idx += 1
            tiles.append(
                TileDescriptor(
                    id=f"tile-{idx}",
                    center=LatLng(
                        lat=origin_lat + lat_step * (i + 0.5),
                        lng=origin_lng + lng_step * (j + 0.5),
                    ),
                    zoom=zoom,
                )
            )
    return tiles


def tiles_for(
    geometry: Geometry,
    tile_size_km: float = config.DEFAULT_TILE_SIZE_KM,
    zoom: int = config.DEFAULT_ZOOM,
    max_cells: int = config.MAX_TILES_PER_BOX,
) -> List[TileDescriptor]:
    tiles: List[TileDescriptor] = []
    for box in bounding_boxes_for(geometry):
        tiles.extend(box_to_tiles(box, tile_size_km, zoom, max_cells, start_index=len(tiles)))
    return tiles


def tiles_for_search_job(job: SearchJob, settings: Optional[config.CrawlSettings] = None) -> List[TileDescriptor]:
    settings = settings or config.CrawlSettings()
    if job.geometry is not None:
        return tiles_for(job.geometry, settings.tile_size_km, settings.zoom, settings.max_tiles_per_box)
    return [TileDescriptor(id=f"{job.id}-global", center=LatLng(lat=0.0, lng=0.0), zoom=config.GLOBAL_TILE_ZOOM)]
