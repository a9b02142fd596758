"""Pydantic models for TokkoBroker JSON payloads.

The origin sends most numeric measurements (surfaces, coordinates) as
strings; they are kept raw here and parsed by the transformer.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _TokkoModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class TokkoLocation(_TokkoModel):
    id: int | None = None
    name: str = ""
    full_location: str = ""
    short_location: str = ""
    zip_code: str | None = None


class TokkoPropertyType(_TokkoModel):
    id: int | None = None
    name: str = ""
    code: str = ""


class TokkoPhoto(_TokkoModel):
    image: str = ""
    description: str | None = None
    order: int = 0


class TokkoBranch(_TokkoModel):
    name: str = ""
    display_name: str = ""
    email: str = ""
    phone: str = ""
    phone_area: str = ""
    address: str = ""
    logo: str | None = None
    contact_time: str | None = None


class TokkoProducer(_TokkoModel):
    name: str = ""
    email: str = ""
    phone: str | None = None
    cellphone: str | None = None
    picture: str | None = None
    position: str | None = None


class TokkoTag(_TokkoModel):
    id: int | None = None
    name: str


class TokkoExtraAttribute(_TokkoModel):
    name: str
    value: str | None = None
    is_measure: bool = False
    is_expenditure: bool = False


class TokkoPrice(_TokkoModel):
    currency: str = "USD"
    period: int = 0
    price: float = 0


class TokkoOperation(_TokkoModel):
    operation_id: int = 0
    operation_type: str = ""
    prices: list[TokkoPrice] = Field(default_factory=list)


class TokkoProperty(_TokkoModel):
    """A property as returned by ``/property/`` and ``/property/<id>/``."""

    id: int
    publication_title: str | None = None
    reference_code: str | None = None
    description: str | None = None
    rich_description: str | None = None

    operations: list[TokkoOperation] = Field(default_factory=list)
    expenses: float | None = None

    surface: str | float | None = None
    roofed_surface: str | float | None = None
    unroofed_surface: str | float | None = None
    total_surface: str | float | None = None

    room_amount: int | None = None
    bathroom_amount: int | None = None
    toilet_amount: int | None = None
    suite_amount: int | None = None
    parking_lot_amount: int | None = None
    floors_amount: int | None = None

    address: str | None = None
    real_address: str | None = None
    geo_lat: str | float | None = None
    geo_long: str | float | None = None
    location: TokkoLocation | None = None

    type: TokkoPropertyType | None = None
    age: int | None = None
    orientation: str | None = None
    property_condition: str | None = None
    situation: str | None = None
    zonification: str | None = None

    photos: list[TokkoPhoto] = Field(default_factory=list)
    videos: list[dict[str, Any]] = Field(default_factory=list)

    branch: TokkoBranch | None = None
    producer: TokkoProducer | None = None

    is_starred_on_web: bool | None = None
    tags: list[TokkoTag] = Field(default_factory=list)
    extra_attributes: list[TokkoExtraAttribute] = Field(default_factory=list)

    created_at: str | None = None
    deleted_at: str | None = None

    status: int | None = None
    transaction_requirements: str | None = None
    has_temporary_rent: bool | None = None
    public_url: str | None = None


class TokkoMeta(_TokkoModel):
    total_count: int = 0
    limit: int | None = None
    offset: int | None = None
    next: str | None = None
    previous: str | None = None


class TokkoListResponse(_TokkoModel):
    """Paginated list envelope used by every collection endpoint."""

    objects: list[TokkoProperty] = Field(default_factory=list)
    meta: TokkoMeta = Field(default_factory=TokkoMeta)


class TokkoNamedItem(_TokkoModel):
    """Reference data entry (property types, locations)."""

    id: int
    name: str
    code: str | None = None
    full_location: str | None = None


class TokkoNamedItemList(_TokkoModel):
    objects: list[TokkoNamedItem] = Field(default_factory=list)
    meta: TokkoMeta = Field(default_factory=TokkoMeta)


class OriginQuery(BaseModel):
    """Filters accepted by the origin ``/property/`` listing."""

    model_config = ConfigDict(frozen=True)

    property_type: str | None = None
    location: str | None = None
    min_price: float | None = None
    max_price: float | None = None
    min_surface: float | None = None
    max_surface: float | None = None
    operation: str | None = None
    limit: int | None = Field(default=None, ge=1)
    offset: int | None = Field(default=None, ge=0)

    def to_params(self) -> dict[str, object]:
        """Translate to the origin's query parameter names."""
        mapping = {
            "property_type": self.property_type,
            "location": self.location,
            "price_from": self.min_price,
            "price_to": self.max_price,
            "surface_from": self.min_surface,
            "surface_to": self.max_surface,
            "operation_type": self.operation,
            "limit": self.limit,
            "offset": self.offset,
        }
        return {k: v for k, v in mapping.items() if v is not None}
