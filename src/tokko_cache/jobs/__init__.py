"""Checkpointed batch jobs and the background task runner."""

from tokko_cache.jobs.images import ImageProcessingJob
from tokko_cache.jobs.runner import BackgroundJobs
from tokko_cache.jobs.sync import PropertySyncJob, new_process_id

__all__ = ["BackgroundJobs", "ImageProcessingJob", "PropertySyncJob", "new_process_id"]
