"""Request bodies accepted by the JSON API."""

from pydantic import BaseModel, ConfigDict, Field

from tokko_cache.models import ProcessType, SyncMode


class SyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mode: SyncMode = SyncMode.INCREMENTAL
    limit: int = Field(default=100, ge=1, le=1000)
    process_id: str | None = Field(
        default=None, min_length=1, max_length=100, alias="processId"
    )


class InitialSyncRequest(BaseModel):
    threshold: int = Field(default=10, ge=1)
    limit: int = Field(default=20, ge=1, le=1000)


class WarmRequest(BaseModel):
    limit: int = Field(default=50, ge=1, le=1000)


class InvalidateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    property_id: int = Field(ge=1, alias="propertyId")


class PauseCheckpointRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    process_type: ProcessType = Field(alias="processType")
    process_id: str = Field(min_length=1, alias="processId")


class StopCheckpointRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    process_id: str = Field(min_length=1, alias="processId")


class ImageProcessRequest(BaseModel):
    limit: int = Field(default=50, ge=1, le=500)
