"""Shared row-mapping utilities for database modules."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

import aiosqlite
from pydantic import TypeAdapter

from tokko_cache.models import (
    Checkpoint,
    CheckpointStatus,
    Contact,
    Coordinates,
    ImageStatus,
    MediaRef,
    ProcessType,
    Property,
    PropertyFeatures,
    PropertyImage,
    PropertyLocation,
    PropertyPrice,
)

_PRICES = TypeAdapter(tuple[PropertyPrice, ...])
_MEDIA = TypeAdapter(tuple[MediaRef, ...])


def _load(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    return json.loads(raw)


def build_property_columns(prop: Property) -> tuple[list[str], list[Any]]:
    """Build INSERT column names and values for a Property.

    Returns (columns, values) lists that are guaranteed to stay in sync.
    Sync bookkeeping columns are left to the caller.
    """
    row: dict[str, Any] = {
        "tokko_id": prop.id,
        "title": prop.title,
        "reference_code": prop.reference_code,
        "description": prop.description,
        "rich_description": prop.rich_description,
        "prices": _PRICES.dump_json(prop.prices).decode(),
        "main_price": prop.main_price.model_dump_json(),
        "main_price_amount": prop.main_price.price,
        "main_currency": prop.main_price.currency,
        "available_operations": json.dumps(list(prop.available_operations)),
        "operation": prop.operation,
        "surface": prop.surface,
        "covered_surface": prop.covered_surface,
        "uncovered_surface": prop.uncovered_surface,
        "total_surface": prop.total_surface,
        "location_name": prop.location.name,
        "full_location": prop.location.full_location,
        "short_location": prop.location.short_location,
        "address": prop.location.address,
        "real_address": prop.location.real_address,
        "coordinates": prop.location.coordinates.model_dump_json(),
        "property_type": prop.type,
        "property_type_code": prop.type_code,
        "age": prop.age,
        "condition": prop.condition,
        "situation": prop.situation,
        "zonification": prop.zonification,
        "rooms": prop.rooms,
        "bathrooms": prop.bathrooms,
        "toilets": prop.toilets,
        "suites": prop.suites,
        "parking_spaces": prop.parking_spaces,
        "floors": prop.floors,
        "videos": _MEDIA.dump_json(prop.videos).decode(),
        "features": prop.features.model_dump_json(),
        "tags": json.dumps(list(prop.features.amenities)),
        "contact": prop.contact.model_dump_json(),
        "featured": int(prop.featured),
        "status": prop.status,
        "transaction_requirements": prop.transaction_requirements,
        "has_temporary_rent": int(prop.has_temporary_rent),
        "expenses": prop.expenses,
        "origin_created_at": prop.created_at,
        "origin_deleted_at": prop.deleted_at,
        "public_url": prop.public_url,
    }
    return list(row), list(row.values())


def row_to_property(row: aiosqlite.Row, images: list[PropertyImage] | None = None) -> Property:
    """Convert a properties_cache row (plus its image rows) to a Property.

    Processed WebP URLs replace origin URLs where an image has been processed.
    """
    location = PropertyLocation(
        name=row["location_name"] or "",
        full_location=row["full_location"] or "",
        short_location=row["short_location"] or "",
        address=row["address"] or "",
        real_address=row["real_address"] or "",
        coordinates=Coordinates.model_validate(_load(row["coordinates"], {})),
    )
    return Property(
        id=row["tokko_id"],
        title=row["title"],
        reference_code=row["reference_code"],
        description=row["description"] or "",
        rich_description=row["rich_description"] or "",
        prices=_PRICES.validate_python(_load(row["prices"], [])),
        main_price=PropertyPrice.model_validate_json(row["main_price"]),
        available_operations=tuple(_load(row["available_operations"], [])),
        surface=row["surface"] or 0,
        covered_surface=row["covered_surface"] or 0,
        uncovered_surface=row["uncovered_surface"] or 0,
        total_surface=row["total_surface"] or 0,
        location=location,
        type=row["property_type"] or "",
        type_code=row["property_type_code"] or "",
        operation=row["operation"] or "",
        age=row["age"],
        condition=row["condition"] or "",
        situation=row["situation"] or "",
        zonification=row["zonification"] or "",
        rooms=row["rooms"] or 0,
        bathrooms=row["bathrooms"] or 0,
        toilets=row["toilets"] or 0,
        suites=row["suites"] or 0,
        parking_spaces=row["parking_spaces"] or 0,
        floors=row["floors"] if row["floors"] is not None else 1,
        images=tuple(
            MediaRef(url=img.display_url, description=img.description) for img in images or []
        ),
        videos=_MEDIA.validate_python(_load(row["videos"], [])),
        features=PropertyFeatures.model_validate(_load(row["features"], {})),
        contact=Contact.model_validate(_load(row["contact"], {})),
        featured=bool(row["featured"]),
        status=row["status"] or 0,
        transaction_requirements=row["transaction_requirements"] or "",
        has_temporary_rent=bool(row["has_temporary_rent"]),
        expenses=row["expenses"] or 0,
        created_at=row["origin_created_at"],
        deleted_at=row["origin_deleted_at"],
        public_url=row["public_url"],
    )


def row_to_image(row: aiosqlite.Row) -> PropertyImage:
    return PropertyImage(
        id=row["id"],
        property_id=row["property_id"],
        original_url=row["original_url"],
        description=row["description"] or "",
        display_order=row["display_order"],
        webp_url=row["webp_url"],
        thumbnail_url=row["thumbnail_url"],
        width=row["width"],
        height=row["height"],
        file_size_original=row["file_size_original"],
        file_size_webp=row["file_size_webp"],
        processing_status=ImageStatus(row["processing_status"]),
        processing_error=row["processing_error"],
    )


def row_to_checkpoint(row: aiosqlite.Row) -> Checkpoint:
    return Checkpoint(
        id=row["id"],
        process_type=ProcessType(row["process_type"]),
        process_id=row["process_id"],
        status=CheckpointStatus(row["status"]),
        total_items=row["total_items"],
        processed_items=row["processed_items"],
        failed_items=row["failed_items"],
        current_batch=row["current_batch"],
        last_processed_tokko_id=row["last_processed_tokko_id"],
        checkpoint_data=_load(row["checkpoint_data"], {}),
        error_log=_load(row["error_log"], []),
        started_at=datetime.fromisoformat(row["started_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        completed_at=(
            datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None
        ),
    )
