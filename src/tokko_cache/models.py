"""Pydantic models for cached properties, searches, checkpoints and job results."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Final, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class CacheTier(StrEnum):
    """Where a response was served from, in fallthrough order."""

    HOT = "hot"
    WARM = "warm"
    ORIGIN = "origin"


class SyncStatus(StrEnum):
    """Freshness state of a warm-tier row."""

    SYNCED = "synced"
    STALE = "stale"
    PENDING = "pending"


class SyncMode(StrEnum):
    """How a property sync treats existing progress."""

    FULL = "full"
    INCREMENTAL = "incremental"


class ProcessType(StrEnum):
    """Kinds of long-running batch jobs that keep a checkpoint."""

    PROPERTY_SYNC = "property_sync"
    IMAGE_PROCESSING = "image_processing"


class CheckpointStatus(StrEnum):
    """Lifecycle of a batch job checkpoint."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_CHECKPOINT_STATUSES: Final = (
    CheckpointStatus.PENDING,
    CheckpointStatus.RUNNING,
    CheckpointStatus.PAUSED,
)


class ImageStatus(StrEnum):
    """Processing state of a single property image."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Property
# ---------------------------------------------------------------------------


class PropertyPrice(BaseModel):
    """One price for one operation (sale, rent, ...)."""

    model_config = ConfigDict(frozen=True)

    operation: str
    operation_id: int = 0
    price: float = Field(default=0, ge=0)
    currency: str = "USD"
    period: int = Field(default=0, description="0 one-off, 1 monthly, 12 yearly")
    formatted: str = ""


class Coordinates(BaseModel):
    """Geographic position; both values are absent when the origin has none."""

    model_config = ConfigDict(frozen=True)

    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)


class PropertyLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    full_location: str = ""
    short_location: str = ""
    address: str = ""
    real_address: str = ""
    coordinates: Coordinates = Field(default_factory=Coordinates)


class MediaRef(BaseModel):
    """A photo or video reference."""

    model_config = ConfigDict(frozen=True)

    url: str
    description: str = ""


class ExtraAttribute(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    value: str = ""
    is_measure: bool = False
    is_expenditure: bool = False


class PropertyFeatures(BaseModel):
    model_config = ConfigDict(frozen=True)

    orientation: str = ""
    amenities: tuple[str, ...] = ()
    extra_attributes: tuple[ExtraAttribute, ...] = ()


class BranchContact(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    display_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    logo: str | None = None
    contact_time: str | None = None


class AgentContact(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    email: str = ""
    phone: str = ""
    cellphone: str = ""
    picture: str | None = None
    position: str = ""


class Contact(BaseModel):
    model_config = ConfigDict(frozen=True)

    branch: BranchContact = Field(default_factory=BranchContact)
    agent: AgentContact = Field(default_factory=AgentContact)


class Property(BaseModel):
    """A listing in the internal shape served by every cache tier."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=1, description="Tokko property ID")
    title: str
    reference_code: str
    description: str = ""
    rich_description: str = ""

    prices: tuple[PropertyPrice, ...] = ()
    main_price: PropertyPrice
    available_operations: tuple[str, ...] = ()

    surface: float = Field(default=0, ge=0)
    covered_surface: float = Field(default=0, ge=0)
    uncovered_surface: float = Field(default=0, ge=0)
    total_surface: float = Field(default=0, ge=0)

    location: PropertyLocation = Field(default_factory=PropertyLocation)

    type: str = ""
    type_code: str = ""
    operation: str = ""
    age: int | None = None
    condition: str = ""
    situation: str = ""
    zonification: str = ""

    rooms: int = Field(default=0, ge=0)
    bathrooms: int = Field(default=0, ge=0)
    toilets: int = Field(default=0, ge=0)
    suites: int = Field(default=0, ge=0)
    parking_spaces: int = Field(default=0, ge=0)
    floors: int = Field(default=1, ge=0)

    images: tuple[MediaRef, ...] = ()
    videos: tuple[MediaRef, ...] = ()
    features: PropertyFeatures = Field(default_factory=PropertyFeatures)
    contact: Contact = Field(default_factory=Contact)

    featured: bool = False
    status: int = 0
    transaction_requirements: str = ""
    has_temporary_rent: bool = False
    expenses: float = 0

    created_at: str | None = None
    deleted_at: str | None = None
    public_url: str | None = None


class PropertyLookup(BaseModel):
    """A property together with the tier that answered."""

    model_config = ConfigDict(frozen=True)

    property: Property
    source: CacheTier


class PropertyImage(BaseModel):
    """Row of the property_images table."""

    id: int
    property_id: int
    original_url: str
    description: str = ""
    display_order: int = 0
    webp_url: str | None = None
    thumbnail_url: str | None = None
    width: int | None = None
    height: int | None = None
    file_size_original: int | None = None
    file_size_webp: int | None = None
    processing_status: ImageStatus = ImageStatus.PENDING
    processing_error: str | None = None

    @property
    def display_url(self) -> str:
        """Processed URL when available, otherwise the origin URL."""
        return self.webp_url or self.original_url


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class SearchFilters(BaseModel):
    """Validated search filters over the warm tier."""

    model_config = ConfigDict(frozen=True)

    query: str | None = None
    type: str | None = None
    operation: str | None = None
    min_price: float | None = Field(default=None, ge=0)
    max_price: float | None = Field(default=None, ge=0)
    min_surface: float | None = Field(default=None, ge=0)
    max_surface: float | None = Field(default=None, ge=0)
    featured: bool | None = None
    tags: tuple[str, ...] = ()
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=12, ge=1, le=50)

    @field_validator("query", "type", "operation")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        """Treat whitespace-only strings as "no filter"."""
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Strip tags, drop blanks and sort so order does not matter."""
        return tuple(sorted({t.strip() for t in v if t.strip()}))

    @model_validator(mode="after")
    def check_ranges(self) -> Self:
        """Ensure min <= max for price and surface."""
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            raise ValueError("min_price must be <= max_price")
        if (
            self.min_surface is not None
            and self.max_surface is not None
            and self.min_surface > self.max_surface
        ):
            raise ValueError("min_surface must be <= max_surface")
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def cache_params(self) -> dict[str, Any]:
        """Non-empty filters as a plain dict, used to derive cache keys."""
        params = self.model_dump(exclude_none=True)
        if not params.get("tags"):
            params.pop("tags", None)
        else:
            params["tags"] = list(params["tags"])
        return params


class SearchResult(BaseModel):
    """One page of search results."""

    properties: list[Property]
    total: int = Field(ge=0)
    page: int = Field(ge=1)
    limit: int = Field(ge=1)
    total_pages: int = Field(ge=0)
    source: CacheTier = CacheTier.WARM

    @classmethod
    def build(
        cls,
        properties: list[Property],
        total: int,
        filters: SearchFilters,
        source: CacheTier = CacheTier.WARM,
    ) -> "SearchResult":
        """Create a result page, deriving total_pages from total and limit."""
        total_pages = -(-total // filters.limit) if total > 0 else 0
        return cls(
            properties=properties,
            total=total,
            page=filters.page,
            limit=filters.limit,
            total_pages=total_pages,
            source=source,
        )


# ---------------------------------------------------------------------------
# Checkpoints
# ---------------------------------------------------------------------------


class ProgressInfo(BaseModel):
    percentage: int
    remaining: int
    status: CheckpointStatus
    estimated_time_remaining: str


class Checkpoint(BaseModel):
    """Progress row of a long-running batch job."""

    id: int
    process_type: ProcessType
    process_id: str
    status: CheckpointStatus
    total_items: int = 0
    processed_items: int = 0
    failed_items: int = 0
    current_batch: int = 0
    last_processed_tokko_id: int | None = None
    checkpoint_data: dict[str, Any] = Field(default_factory=dict)
    error_log: list[str] = Field(default_factory=list)
    started_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    @property
    def done_items(self) -> int:
        return self.processed_items + self.failed_items

    def progress_info(self, now: datetime | None = None) -> ProgressInfo:
        """Percentage, remaining count and a rough ETA for dashboards."""
        done = min(self.done_items, self.total_items) if self.total_items else self.done_items
        percentage = round(done / self.total_items * 100) if self.total_items > 0 else 0
        return ProgressInfo(
            percentage=percentage,
            remaining=max(self.total_items - done, 0),
            status=self.status,
            estimated_time_remaining=self._estimate_remaining(now or datetime.now(UTC)),
        )

    def _estimate_remaining(self, now: datetime) -> str:
        done = self.done_items
        if done == 0 or self.status != CheckpointStatus.RUNNING:
            return "Unknown"
        elapsed = (now - self.started_at).total_seconds()
        if elapsed <= 0:
            return "Unknown"
        remaining_items = max(self.total_items - done, 0)
        remaining_seconds = remaining_items / (done / elapsed)
        minutes = round(remaining_seconds / 60)
        if minutes < 1:
            return "Less than 1 minute"
        if minutes < 60:
            return f"{minutes} minutes"
        return f"{round(minutes / 60)} hours"


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


class ClearResult(BaseModel):
    success: bool
    message: str
    keys_cleared: int = 0


class InvalidateResult(BaseModel):
    success: bool
    message: str
    hot_keys_removed: int = 0
    warm_row_marked: bool = False
    hot_error: str | None = None


class WarmResult(BaseModel):
    success: bool
    warmed: int = 0
    errors: int = 0
    message: str


class SyncResult(BaseModel):
    process_id: str
    status: CheckpointStatus
    synced: int = 0
    errors: int = 0
    message: str


class ImageJobResult(BaseModel):
    process_id: str
    status: CheckpointStatus
    processed: int = 0
    failed: int = 0
    message: str


class CacheStats(BaseModel):
    """Warm-tier counters for the cache-stats endpoint."""

    total_properties: int = 0
    featured_properties: int = 0
    stale_properties: int = 0
    accessed_last_24h: int = 0
    last_sync_time: str | None = None
    pending_images: int = 0
    processed_images: int = 0
    failed_images: int = 0


class ConnectionStatus(BaseModel):
    hot: bool
    warm: bool
    origin: bool
    hot_backend: str
    overall: str
