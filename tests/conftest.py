"""Shared pytest fixtures."""

import gc
import os
import sys
import threading
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from hypothesis import HealthCheck, settings

from tokko_cache.config import Settings
from tokko_cache.db.storage import CacheStorage
from tokko_cache.models import MediaRef, Property, PropertyFeatures, PropertyPrice

API_KEY = "a1b2c3d4e5f6a7b8c9d0a1b2c3d4e5f6a7b8c9d0"
BASE_URL = "https://tokko.test/api/v1"


def pytest_configure(config: pytest.Config) -> None:
    """Force line-buffered stdout when piped."""
    if hasattr(sys.stdout, "reconfigure") and not sys.stdout.isatty():
        sys.stdout.reconfigure(line_buffering=True)
    if hasattr(sys.stderr, "reconfigure") and not sys.stderr.isatty():
        sys.stderr.reconfigure(line_buffering=True)


# Hypothesis settings profiles for different environments
settings.register_profile("fast", max_examples=10)
settings.register_profile(
    "ci",
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))


@pytest.fixture(autouse=True)
def _isolate_settings_from_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent the local .env file from leaking into test Settings instances."""
    monkeypatch.setattr(
        Settings,
        "model_config",
        {**Settings.model_config, "env_file": None},
    )


@pytest.fixture(autouse=True)
def _cleanup_aiosqlite_threads():
    """Safety net: detect and stop leaked aiosqlite worker threads.

    aiosqlite creates a non-daemon worker thread per connection. If a test
    leaks a connection, the thread prevents clean process exit.
    """
    yield

    from aiosqlite.core import _STOP_RUNNING_SENTINEL, Connection

    leaked = False

    gc.collect()
    for obj in gc.get_objects():
        if isinstance(obj, Connection) and obj._connection is not None:
            leaked = True
            obj.stop()

    for thread in threading.enumerate():
        if "_connection_worker_thread" in (thread.name or "") and thread.is_alive():
            leaked = True
            tx = getattr(thread, "_args", (None,))[0]
            if tx is not None and hasattr(tx, "put_nowait"):
                tx.put_nowait((None, lambda: _STOP_RUNNING_SENTINEL))
                thread.join(timeout=1.0)

    if leaked:
        import warnings

        warnings.warn(
            "Test leaked aiosqlite connection(s); add 'await storage.close()' to fixture teardown",
            ResourceWarning,
            stacklevel=1,
        )


@pytest.fixture
def app_settings(tmp_path: Path) -> Settings:
    """Settings pointing at a temp data dir with no real backends."""
    return Settings(
        tokko_api_key=API_KEY,
        tokko_base_url=BASE_URL,
        database_path=str(tmp_path / "tokko_cache.db"),
        sync_batch_delay_seconds=0,
        sync_error_delay_seconds=0,
        warming_enabled=False,
    )


@pytest_asyncio.fixture
async def storage() -> AsyncGenerator[CacheStorage, None]:
    """In-memory warm-tier storage."""
    s = CacheStorage(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def make_property() -> Callable[..., Property]:
    """Factory for Property instances with sensible defaults and auto-incrementing IDs."""
    _counter = 0

    def _make(
        price: float = 150000,
        operation: str = "Venta",
        images: int = 2,
        tags: tuple[str, ...] = (),
        **overrides: Any,
    ) -> Property:
        nonlocal _counter
        _counter += 1
        prop_id = overrides.pop("id", 1000 + _counter)
        main_price = PropertyPrice(
            operation=operation,
            operation_id=1,
            price=price,
            currency="USD",
            formatted=f"US$ {price:,.0f}".replace(",", "."),
        )
        defaults: dict[str, Any] = {
            "id": prop_id,
            "title": f"Nave industrial {_counter}",
            "reference_code": f"REF-{prop_id}",
            "description": "Nave con oficinas y playa de maniobras",
            "prices": (main_price,),
            "main_price": main_price,
            "available_operations": (operation,),
            "operation": operation,
            "surface": 1200,
            "covered_surface": 900,
            "total_surface": 1200,
            "type": "Galpón",
            "type_code": "WA",
            "images": tuple(
                MediaRef(url=f"https://static.tokko.test/{prop_id}/{i}.jpg") for i in range(images)
            ),
            "features": PropertyFeatures(amenities=tags),
        }
        defaults.update(overrides)
        return Property(**defaults)

    return _make


@pytest.fixture
def make_tokko_payload() -> Callable[..., dict[str, Any]]:
    """Factory for origin JSON payloads as returned by /property/<id>/."""

    def _make(prop_id: int = 4321, **overrides: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": prop_id,
            "publication_title": "Galpón en Parque Industrial Pilar",
            "reference_code": f"PIL{prop_id}",
            "description": "Galpón de 2000 m2 con 3 portones",
            "operations": [
                {
                    "operation_id": 2,
                    "operation_type": "Rent",
                    "prices": [{"currency": "USD", "period": 1, "price": 8500}],
                },
                {
                    "operation_id": 1,
                    "operation_type": "Sale",
                    "prices": [{"currency": "USD", "period": 0, "price": 1250000}],
                },
            ],
            "surface": "2000.00",
            "roofed_surface": "1800.50",
            "unroofed_surface": "199.50",
            "total_surface": "2000.00",
            "address": "Ruta 8 km 60",
            "geo_lat": "-34.4587",
            "geo_long": "-58.9142",
            "location": {
                "name": "Pilar",
                "full_location": "Argentina | GBA Norte | Pilar",
                "short_location": "GBA Norte | Pilar",
            },
            "type": {"id": 14, "name": "Galpón", "code": "WA"},
            "photos": [
                {"image": "https://static.tokko.test/p/2.jpg", "description": "Frente", "order": 1},
                {"image": "https://static.tokko.test/p/1.jpg", "description": "Acceso", "order": 0},
            ],
            "videos": [{"url": "https://youtube.test/watch?v=abc"}],
            "branch": {
                "name": "Casa Central",
                "display_name": "Industrial Propiedades",
                "email": "info@industrial.test",
                "phone": "4444-5555",
                "phone_area": "11",
                "address": "Av. Libertador 1000",
            },
            "producer": {
                "name": "Ana Pérez",
                "email": "ana@industrial.test",
                "cellphone": "15-1234",
            },
            "is_starred_on_web": True,
            "tags": [{"id": 1, "name": "Seguridad 24hs"}, {"id": 2, "name": "Grúa puente"}],
            "extra_attributes": [
                {"name": "Altura libre", "value": "12 m", "is_measure": True},
                {"name": "Expensas", "value": "30000", "is_expenditure": True},
            ],
            "age": 5,
            "unknown_origin_field": {"ignored": True},
        }
        payload.update(overrides)
        return payload

    return _make
