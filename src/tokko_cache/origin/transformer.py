"""Map TokkoBroker payloads onto the internal Property shape."""

from typing import Final

from tokko_cache.models import (
    AgentContact,
    BranchContact,
    Contact,
    Coordinates,
    ExtraAttribute,
    MediaRef,
    Property,
    PropertyFeatures,
    PropertyLocation,
    PropertyPrice,
)
from tokko_cache.origin.models import TokkoProperty

OPERATION_NAMES: Final[dict[str, str]] = {
    "Sale": "Venta",
    "Rent": "Alquiler",
    "Temporary Rent": "Alquiler Temporal",
    "Commercial Rent": "Alquiler Comercial",
    "Auction": "Subasta",
    "Exchange": "Permuta",
}

CURRENCY_SYMBOLS: Final[dict[str, str]] = {
    "USD": "US$",
    "ARS": "$",
    "EUR": "€",
}

DEFAULT_TITLE: Final = "Propiedad Industrial"
DEFAULT_TYPE: Final = "Industrial"
CONSULT_OPERATION: Final = "Consultar"
CONSULT_PRICE: Final = "Consulte precio"
SALE_OPERATION: Final = OPERATION_NAMES["Sale"]


def map_operation_type(operation_type: str) -> str:
    """Translate an origin operation type to its Spanish label."""
    return OPERATION_NAMES.get(operation_type, operation_type)


def format_price(price: float, currency: str = "USD", period: int = 0) -> str:
    """Format a price the way listings display it (es-AR grouping).

    >>> format_price(150000, "USD")
    'US$ 150.000'
    >>> format_price(1200, "ARS", 1)
    '$ 1.200/mes'
    """
    if not price:
        return CONSULT_PRICE
    symbol = CURRENCY_SYMBOLS.get(currency, currency)
    amount = f"{round(price):,}".replace(",", ".")
    formatted = f"{symbol} {amount}"
    if period == 1:
        return f"{formatted}/mes"
    if period == 12:
        return f"{formatted}/año"
    return formatted


def format_phone(area_code: str | None, phone: str | None) -> str:
    """Prefix the Argentine country code when an area code is known."""
    if not phone:
        return ""
    if not area_code:
        return phone
    return f"+54 {area_code} {phone}"


def _parse_float(value: str | float | None) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_surface(value: str | float | None) -> float:
    parsed = _parse_float(value)
    return parsed if parsed is not None and parsed >= 0 else 0.0


def _parse_coordinates(lat: str | float | None, lng: str | float | None) -> Coordinates:
    parsed_lat = _parse_float(lat)
    parsed_lng = _parse_float(lng)
    if parsed_lat is None or parsed_lng is None:
        return Coordinates()
    if not (-90 <= parsed_lat <= 90 and -180 <= parsed_lng <= 180):
        return Coordinates()
    return Coordinates(lat=parsed_lat, lng=parsed_lng)


def _build_prices(raw: TokkoProperty) -> list[PropertyPrice]:
    prices = [
        PropertyPrice(
            operation=map_operation_type(operation.operation_type),
            operation_id=operation.operation_id,
            price=price.price,
            currency=price.currency,
            period=price.period,
            formatted=format_price(price.price, price.currency, price.period),
        )
        for operation in raw.operations
        for price in operation.prices
        if price.price > 0
    ]
    if not prices:
        prices.append(
            PropertyPrice(
                operation=CONSULT_OPERATION,
                operation_id=0,
                price=0,
                currency="USD",
                period=0,
                formatted=CONSULT_PRICE,
            )
        )
    return prices


def transform_tokko_property(raw: TokkoProperty) -> Property:
    """Convert an origin property to the internal shape.

    Sale prices win as the main price; everything else falls back to the
    first price. Missing counters default to 0 (floors to 1).
    """
    prices = _build_prices(raw)
    main_price = next((p for p in prices if p.operation == SALE_OPERATION), prices[0])

    if raw.operations:
        available_operations = [map_operation_type(op.operation_type) for op in raw.operations]
    else:
        available_operations = [p.operation for p in prices]

    surface = _parse_surface(raw.surface)
    total_surface = _parse_surface(raw.total_surface) or surface

    location = raw.location
    branch = raw.branch
    producer = raw.producer
    type_info = raw.type

    return Property(
        id=raw.id,
        title=raw.publication_title or (type_info.name if type_info else "") or DEFAULT_TITLE,
        reference_code=raw.reference_code or f"REF-{raw.id}",
        description=raw.description or "",
        rich_description=raw.rich_description or "",
        prices=tuple(prices),
        main_price=main_price,
        available_operations=tuple(available_operations),
        surface=surface,
        covered_surface=_parse_surface(raw.roofed_surface),
        uncovered_surface=_parse_surface(raw.unroofed_surface),
        total_surface=total_surface,
        location=PropertyLocation(
            name=location.name if location else "",
            full_location=location.full_location if location else "",
            short_location=location.short_location if location else "",
            address=raw.address or "",
            real_address=raw.real_address or raw.address or "",
            coordinates=_parse_coordinates(raw.geo_lat, raw.geo_long),
        ),
        type=(type_info.name if type_info else "") or DEFAULT_TYPE,
        type_code=type_info.code if type_info else "",
        operation=main_price.operation,
        age=raw.age,
        condition=raw.property_condition or "",
        situation=raw.situation or "",
        zonification=raw.zonification or "",
        rooms=raw.room_amount or 0,
        bathrooms=raw.bathroom_amount or 0,
        toilets=raw.toilet_amount or 0,
        suites=raw.suite_amount or 0,
        parking_spaces=raw.parking_lot_amount or 0,
        floors=raw.floors_amount or 1,
        images=tuple(
            MediaRef(url=photo.image, description=photo.description or "")
            for photo in sorted(raw.photos, key=lambda p: p.order)
            if photo.image
        ),
        videos=tuple(
            MediaRef(
                url=str(video.get("url") or video.get("video") or ""),
                description=str(video.get("description") or ""),
            )
            for video in raw.videos
        ),
        features=PropertyFeatures(
            orientation=raw.orientation or "",
            amenities=tuple(tag.name for tag in raw.tags),
            extra_attributes=tuple(
                ExtraAttribute(
                    name=attr.name,
                    value=attr.value or "",
                    is_measure=attr.is_measure,
                    is_expenditure=attr.is_expenditure,
                )
                for attr in raw.extra_attributes
            ),
        ),
        contact=Contact(
            branch=BranchContact(
                name=branch.name if branch else "",
                display_name=branch.display_name if branch else "",
                email=branch.email if branch else "",
                phone=format_phone(branch.phone_area, branch.phone) if branch else "",
                address=branch.address if branch else "",
                logo=branch.logo if branch else None,
                contact_time=branch.contact_time if branch else None,
            ),
            agent=AgentContact(
                name=producer.name if producer else "",
                email=producer.email if producer else "",
                phone=(producer.phone or "") if producer else "",
                cellphone=(producer.cellphone or "") if producer else "",
                picture=producer.picture if producer else None,
                position=(producer.position or "") if producer else "",
            ),
        ),
        featured=bool(raw.is_starred_on_web),
        status=raw.status or 0,
        transaction_requirements=raw.transaction_requirements or "",
        has_temporary_rent=bool(raw.has_temporary_rent),
        expenses=raw.expenses or 0,
        created_at=raw.created_at,
        deleted_at=raw.deleted_at,
        public_url=raw.public_url,
    )


def format_available_operations(operations: list[str] | tuple[str, ...]) -> str:
    if not operations:
        return CONSULT_OPERATION
    return " | ".join(operations)


def format_multiple_prices(prices: list[PropertyPrice] | tuple[PropertyPrice, ...]) -> str:
    if not prices:
        return CONSULT_PRICE
    if len(prices) == 1:
        return prices[0].formatted
    return " | ".join(f"{p.formatted} ({p.operation})" for p in prices)


def _format_number(value: float) -> str:
    if value == int(value):
        return f"{int(value):,}".replace(",", ".")
    return f"{value:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")


def get_property_summary(prop: Property) -> dict[str, str]:
    """Short strings used by listing cards."""
    surface = f"{_format_number(prop.surface)} m²"
    if prop.covered_surface > 0:
        surface += f" ({_format_number(prop.covered_surface)} m² cubiertos)"
    return {
        "title": prop.title,
        "prices": format_multiple_prices(prop.prices),
        "location": f"{prop.location.address}, {prop.location.name}",
        "surface": surface,
        "rooms": f"{prop.rooms} ambientes" if prop.rooms > 0 else "",
        "reference": prop.reference_code,
    }


def extract_key_features(prop: Property) -> list[str]:
    """Human-readable highlights: surfaces, rooms, measured attributes, age."""
    features: list[str] = []
    if prop.surface > 0:
        features.append(f"{_format_number(prop.surface)} m² total")
    if prop.covered_surface > 0:
        features.append(f"{_format_number(prop.covered_surface)} m² cubiertos")
    if prop.rooms > 0:
        features.append(f"{prop.rooms} ambientes")
    if prop.bathrooms > 0:
        features.append(f"{prop.bathrooms} baños")
    for attr in prop.features.extra_attributes:
        if attr.is_measure and attr.value:
            features.append(f"{attr.name}: {attr.value}")
    if prop.age and prop.age > 0:
        features.append(f"{prop.age} años")
    return features
