"""Typed records for search jobs, crawl requests and scraped output."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

REQUEST_SEARCH = "SEARCH"
REQUEST_PLACE_DETAIL = "PLACE_DETAIL"
REQUEST_REVIEWS = "REVIEWS"

SOCIAL_NETWORKS: Tuple[str, ...] = ("facebook", "instagram", "tiktok", "youtube", "twitter")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


# --- Geometry ---


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, point: LatLng, epsilon: float = 1e-9) -> bool:
        return (
            self.min_lat - epsilon <= point.lat <= self.max_lat + epsilon
            and self.min_lng - epsilon <= point.lng <= self.max_lng + epsilon
        )


@dataclass(frozen=True)
class TileDescriptor:
    id: str
    center: LatLng
    zoom: int


@dataclass(frozen=True)
class PointGeometry:
    lng: float
    lat: float
    radius_km: Optional[float] = None

    geometry_type: ClassVar[str] = "Point"

    def to_geojson(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": "Point", "coordinates": [self.lng, self.lat]}
        if self.radius_km is not None:
            data["radiusKm"] = self.radius_km
        return data


Ring = Tuple[Tuple[float, float], ...]


@dataclass(frozen=True)
class PolygonGeometry:
    # Rings of (lng, lat) pairs, GeoJSON order.
    rings: Tuple[Ring, ...]

    geometry_type: ClassVar[str] = "Polygon"

    def to_geojson(self) -> Dict[str, Any]:
        return {
            "type": "Polygon",
            "coordinates": [[[lng, lat] for lng, lat in ring] for ring in self.rings],
        }


@dataclass(frozen=True)
class MultiPolygonGeometry:
    polygons: Tuple[PolygonGeometry, ...]

    geometry_type: ClassVar[str] = "MultiPolygon"

    def to_geojson(self) -> Dict[str, Any]:
        return {
            "type": "MultiPolygon",
            "coordinates": [poly.to_geojson()["coordinates"] for poly in self.polygons],
        }


Geometry = Union[PointGeometry, PolygonGeometry, MultiPolygonGeometry]


def _parse_position(raw: Any) -> Tuple[float, float]:
    if not isinstance(raw, (list, tuple)) or len(raw) < 2:
        raise ValueError(f"Invalid GeoJSON position: {raw!r}")
    return (float(raw[0]), float(raw[1]))


def _parse_rings(raw: Any) -> Tuple[Ring, ...]:
    if not isinstance(raw, (list, tuple)) or not raw:
        raise ValueError("Polygon coordinates must be a non-empty list of rings")
    rings = []
    for ring in raw:
        if not isinstance(ring, (list, tuple)) or not ring:
            raise ValueError("Polygon ring must be a non-empty list of positions")
        rings.append(tuple(_parse_position(pos) for pos in ring))
    return tuple(rings)


def geometry_from_geojson(data: Dict[str, Any]) -> Geometry:
    if not isinstance(data, dict):
        raise ValueError("Geometry must be a GeoJSON object")
    if data.get("type") == "Feature":
        return geometry_from_geojson(data.get("geometry") or {})

    geometry_type = data.get("type")
    coordinates = data.get("coordinates")
    if geometry_type == "Point":
        lng, lat = _parse_position(coordinates)
        radius = data.get("radiusKm")
        return PointGeometry(lng=lng, lat=lat, radius_km=float(radius) if radius is not None else None)
    if geometry_type == "Polygon":
        return PolygonGeometry(rings=_parse_rings(coordinates))
    if geometry_type == "MultiPolygon":
        if not isinstance(coordinates, (list, tuple)) or not coordinates:
            raise ValueError("MultiPolygon coordinates must be a non-empty list of polygons")
        return MultiPolygonGeometry(
            polygons=tuple(PolygonGeometry(rings=_parse_rings(poly)) for poly in coordinates)
        )
    raise ValueError(f"Unsupported GeoJSON geometry type: {geometry_type}")


# --- Search jobs and crawl requests ---


@dataclass(frozen=True)
class SearchJob:
    id: str
    language: str
    max_places_per_search: int
    search_term: Optional[str] = None
    category: Optional[str] = None
    location_text: Optional[str] = None
    geometry: Optional[Geometry] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "searchTerm": self.search_term,
            "category": self.category,
            "locationText": self.location_text,
            "language": self.language,
            "maxCrawledPlacesPerSearch": self.max_places_per_search,
            "customGeolocation": self.geometry.to_geojson() if self.geometry else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchJob":
        geo = data.get("customGeolocation")
        return cls(
            id=str(data["id"]),
            language=str(data.get("language") or "en"),
            max_places_per_search=int(data.get("maxCrawledPlacesPerSearch") or 0),
            search_term=data.get("searchTerm") or None,
            category=data.get("category") or None,
            location_text=data.get("locationText") or None,
            geometry=geometry_from_geojson(geo) if geo else None,
        )


@dataclass(frozen=True)
class SearchRequest:
    search_job_id: str
    search_job: SearchJob

    request_type: ClassVar[str] = REQUEST_SEARCH


@dataclass(frozen=True)
class PlaceDetailRequest:
    search_job_id: str
    place_url: str
    place_id: Optional[str] = None

    request_type: ClassVar[str] = REQUEST_PLACE_DETAIL


@dataclass(frozen=True)
class ReviewsRequest:
    search_job_id: str
    place_id: str
    place_url: str
    offset: int
    accumulated_count: int
    max_reviews: int

    request_type: ClassVar[str] = REQUEST_REVIEWS


CrawlRequest = Union[SearchRequest, PlaceDetailRequest, ReviewsRequest]


def request_to_user_data(request: CrawlRequest) -> Dict[str, Any]:
    if isinstance(request, SearchRequest):
        return {
            "requestType": REQUEST_SEARCH,
            "searchJobId": request.search_job_id,
            "searchJob": request.search_job.to_dict(),
        }
    if isinstance(request, PlaceDetailRequest):
        return {
            "requestType": REQUEST_PLACE_DETAIL,
            "searchJobId": request.search_job_id,
            "placeId": request.place_id,
            "placeUrl": request.place_url,
        }
    if isinstance(request, ReviewsRequest):
        return {
            "requestType": REQUEST_REVIEWS,
            "searchJobId": request.search_job_id,
            "placeId": request.place_id,
            "placeUrl": request.place_url,
            "offset": request.offset,
            "accumulatedCount": request.accumulated_count,
            "maxReviews": request.max_reviews,
        }
    raise TypeError(f"Unknown crawl request: {request!r}")


def request_from_user_data(data: Dict[str, Any]) -> CrawlRequest:
    request_type = (data or {}).get("requestType")
    if request_type == REQUEST_SEARCH:
        job = SearchJob.from_dict(data["searchJob"])
        return SearchRequest(search_job_id=str(data.get("searchJobId") or job.id), search_job=job)
    if request_type == REQUEST_PLACE_DETAIL:
        return PlaceDetailRequest(
            search_job_id=str(data.get("searchJobId") or ""),
            place_url=str(data["placeUrl"]),
            place_id=data.get("placeId") or None,
        )
    if request_type == REQUEST_REVIEWS:
        return ReviewsRequest(
            search_job_id=str(data.get("searchJobId") or ""),
            place_id=str(data["placeId"]),
            place_url=str(data["placeUrl"]),
            offset=int(data.get("offset") or 0),
            accumulated_count=int(data.get("accumulatedCount") or 0),
            max_reviews=int(data.get("maxReviews") or 0),
        )
    raise ValueError(f"Unknown request type: {request_type!r}")


# --- Output records ---


@dataclass
class SocialProfile:
    type: str
    url: str
    username: Optional[str] = None
    source: str = "website"

    def to_record(self) -> Dict[str, Any]:
        return {"type": self.type, "url": self.url, "username": self.username, "extra": {"source": self.source}}


@dataclass
class ContactEnrichment:
    emails: List[str] = field(default_factory=list)
    phones: List[str] = field(default_factory=list)
    social_profiles: List[SocialProfile] = field(default_factory=list)

    def to_record(self) -> Dict[str, Any]:
        return {
            "emails": list(self.emails),
            "phones": list(self.phones),
            "socialProfiles": [p.to_record() for p in self.social_profiles],
        }


@dataclass
class Lead:
    id: str
    place_id: str
    full_name: Optional[str] = None
    job_title: Optional[str] = None
    linkedin_url: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    source_url: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "placeId": self.place_id,
            "fullName": self.full_name,
            "jobTitle": self.job_title,
            "linkedinUrl": self.linkedin_url,
            "email": self.email,
            "phone": self.phone,
            "sourceUrl": self.source_url,
        }


@dataclass
class PlaceEnrichment:
    contacts: Optional[ContactEnrichment] = None
    leads: Optional[List[Lead]] = None
    social_profiles: Optional[List[SocialProfile]] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "contacts": self.contacts.to_record() if self.contacts else None,
            "leads": [lead.to_record() for lead in self.leads] if self.leads is not None else None,
            "socialProfiles": (
                [p.to_record() for p in self.social_profiles] if self.social_profiles is not None else None
            ),
        }


@dataclass
class Address:
    full_address: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "fullAddress": self.full_address,
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "postalCode": self.postal_code,
            "country": self.country,
        }


@dataclass
class Place:
    id: str
    title: Optional[str] = None
    search_job_id: Optional[str] = None
    place_id: Optional[str] = None
    cid: Optional[str] = None
    google_maps_url: Optional[str] = None
    primary_category: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    description: Optional[str] = None
    address: Address = field(default_factory=Address)
    lat: Optional[float] = None
    lng: Optional[float] = None
    plus_code: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    opening_hours: Optional[Dict[str, List[str]]] = None
    price_level: Optional[str] = None
    permanently_closed: bool = False
    temporarily_closed: bool = False
    total_reviews: Optional[int] = None
    average_rating: Optional[float] = None
    additional_info: Dict[str, Any] = field(default_factory=dict)
    enrichment: PlaceEnrichment = field(default_factory=PlaceEnrichment)
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    @property
    def has_location(self) -> bool:
        return self.lat is not None and self.lng is not None

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "searchJobId": self.search_job_id,
            "title": self.title,
            "primaryCategory": self.primary_category,
            "categories": list(self.categories),
            "description": self.description,
            "address": self.address.to_record(),
            "location": {"lat": self.lat, "lng": self.lng},
            "plusCode": self.plus_code,
            "googleMapsUrl": self.google_maps_url,
            "placeId": self.place_id,
            "cid": self.cid,
            "phone": {"formatted": self.phone},
            "website": self.website,
            "openingHours": self.opening_hours,
            "priceLevel": self.price_level,
            "permanentlyClosed": self.permanently_closed,
            "temporarilyClosed": self.temporarily_closed,
            "reviewStats": {"totalReviews": self.total_reviews, "averageRating": self.average_rating},
            "additionalInfo": dict(self.additional_info),
            "enrichment": self.enrichment.to_record(),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class Review:
    id: str
    place_id: str
    scraped_at: str
    search_job_id: Optional[str] = None
    reviewer_name: Optional[str] = None
    reviewer_profile_url: Optional[str] = None
    reviewer_photo_url: Optional[str] = None
    text: Optional[str] = None
    rating: Optional[float] = None
    likes_count: Optional[int] = None
    is_local_guide: bool = False
    review_images: List[str] = field(default_factory=list)
    owner_response: Optional[str] = None
    published_at: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "placeId": self.place_id,
            "searchJobId": self.search_job_id,
            "reviewerName": self.reviewer_name,
            "reviewerProfileUrl": self.reviewer_profile_url,
            "reviewerPhotoUrl": self.reviewer_photo_url,
            "text": self.text,
            "rating": self.rating,
            "likesCount": self.likes_count,
            "isLocalGuide": self.is_local_guide,
            "reviewImages": list(self.review_images),
            "ownerResponse": {"text": self.owner_response} if self.owner_response else None,
            "publishedAt": self.published_at,
            "scrapedAt": self.scraped_at,
        }
