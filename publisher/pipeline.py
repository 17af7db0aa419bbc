"""
Publishing pipeline: ingest -> encode -> publish, one source at a time.

Each stage takes the MediaServicesClient explicitly. The driver turns stage
failures into StageError values on the PublishResult and applies the
abort/continue policy from PipelineOptions.
"""
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Callable, Iterable, Optional

from django.conf import settings

from .blobs import BlobRef
from .errors import JobCancelledError, JobFailedError, JobTimeoutError, StageError, parse_exception
from .mediaservices import (
    AccessPermissions,
    Asset,
    AssetCreationOptions,
    Job,
    JobState,
    LocatorType,
    MediaServicesClient,
)

logger = logging.getLogger(__name__)

JobCallback = Callable[[Job], None]
UploadCallback = Callable[[str, float], None]
AssetCallback = Callable[[Asset], None]


@dataclass
class PipelineOptions:
    asset_name: str = "NewAsset_Test"
    copy_content: bool = False
    encoder: str = "Media Encoder Standard"
    preset: str = "H264 Multiple Bitrate 720p"
    output_asset_name: str = "Adaptive Bitrate MP4"
    creation_options: AssetCreationOptions = AssetCreationOptions.NONE
    poll_interval: float = 5.0
    timeout: float = 0.0  # 0 -> no limit
    on_demand: bool = True
    file_ext: str = ""
    write_policy_hours: int = 24
    read_locator_days: int = 30
    continue_on_error: bool = False

    @classmethod
    def from_settings(cls, **overrides) -> "PipelineOptions":
        values = dict(
            asset_name=settings.INGEST_ASSET_NAME,
            copy_content=settings.INGEST_COPY_BLOB,
            encoder=settings.ENCODER_NAME,
            preset=settings.ENCODING_PRESET,
            output_asset_name=settings.OUTPUT_ASSET_NAME,
            poll_interval=settings.JOB_POLL_INTERVAL_SECONDS,
            timeout=settings.JOB_TIMEOUT_SECONDS,
            write_policy_hours=settings.WRITE_POLICY_HOURS,
            read_locator_days=settings.READ_LOCATOR_DAYS,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class PublishResult:
    name: str
    input_asset: Optional[Asset] = None
    encoded_asset: Optional[Asset] = None
    urls: list = field(default_factory=list)
    error: Optional[StageError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# -----------------------------------------------------
# Ingest
# -----------------------------------------------------
def create_asset_from_blob(media: MediaServicesClient, blob: BlobRef, *,
                           asset_name: str = "NewAsset_Test",
                           copy_content: bool = False,
                           write_policy_hours: int = 24) -> Asset:
    """
    Register `blob` as a new asset with one primary file of the blob's size.
    The write policy and locator are always deleted before returning.
    """
    asset = media.create_asset(asset_name, AssetCreationOptions.NONE)
    policy = media.create_access_policy("writePolicy", timedelta(hours=write_policy_hours), AccessPermissions.WRITE)
    locator = media.create_locator(LocatorType.SAS, asset, policy)
    try:
        if copy_content:
            media.copy_blob_to_asset(blob, asset, locator)
        asset_file = media.create_asset_file(asset, blob.name)
        asset_file.content_file_size = blob.length
        asset_file.is_primary = True
        media.update_asset(asset)
    finally:
        media.delete_locator(locator)
        media.delete_access_policy(policy)
    return asset


def upload_file_to_asset(media: MediaServicesClient, path, *,
                         options: AssetCreationOptions = AssetCreationOptions.NONE,
                         on_progress: Optional[UploadCallback] = None,
                         on_created: Optional[AssetCallback] = None,
                         write_policy_hours: int = 24) -> Asset:
    """
    Create an asset from a local file, reporting upload percentage.
    s3transfer invokes the progress callback from its worker threads.
    """
    path = Path(path)
    size = os.path.getsize(path)
    asset = media.create_asset(path.name, options)
    policy = media.create_access_policy("writePolicy", timedelta(hours=write_policy_hours), AccessPermissions.WRITE)
    locator = media.create_locator(LocatorType.SAS, asset, policy)

    sent = 0
    lock = threading.Lock()

    def _callback(chunk: int) -> None:
        nonlocal sent
        with lock:
            sent += chunk
            if on_progress:
                on_progress(path.name, 100.0 * sent / size if size else 100.0)

    try:
        media.upload_to_asset(asset, locator, path, callback=_callback)
        asset_file = media.create_asset_file(asset, path.name)
        asset_file.content_file_size = size
        asset_file.is_primary = True
        media.update_asset(asset)
    finally:
        media.delete_locator(locator)
        media.delete_access_policy(policy)
    if on_created:
        on_created(asset)
    return asset


# -----------------------------------------------------
# Encode
# -----------------------------------------------------
def wait_for_job(media: MediaServicesClient, job: Job, *,
                 poll_interval: float = 5.0,
                 timeout: float = 0.0,
                 on_progress: Optional[JobCallback] = None,
                 cancel_event: Optional[threading.Event] = None) -> Job:
    """
    Poll until the job reaches a terminal state. Setting `cancel_event`
    or running past `timeout` (when > 0) cancels the remote job.
    """
    cancel_event = cancel_event or threading.Event()
    deadline = time.monotonic() + timeout if timeout > 0 else None
    while True:
        job = media.refresh_job(job)
        if on_progress:
            on_progress(job)
        if job.state.is_terminal:
            return job
        if deadline is not None and time.monotonic() >= deadline:
            media.cancel_job(job)
            raise JobTimeoutError(job, timeout)
        if cancel_event.wait(poll_interval):
            media.cancel_job(job)
            raise JobCancelledError(job)


def encode_to_adaptive_bitrate_mp4s(media: MediaServicesClient, asset: Asset,
                                    options: AssetCreationOptions = AssetCreationOptions.NONE, *,
                                    encoder: str = "Media Encoder Standard",
                                    preset: str = "H264 Multiple Bitrate 720p",
                                    output_asset_name: str = "Adaptive Bitrate MP4",
                                    poll_interval: float = 5.0,
                                    timeout: float = 0.0,
                                    on_progress: Optional[JobCallback] = None,
                                    cancel_event: Optional[threading.Event] = None) -> Asset:
    job = media.create_job_with_single_task(
        f"Encode {asset.name} to {preset}",
        encoder,
        preset,
        asset,
        output_asset_name,
        options,
    )
    job = wait_for_job(
        media, job,
        poll_interval=poll_interval,
        timeout=timeout,
        on_progress=on_progress,
        cancel_event=cancel_event,
    )
    if job.state != JobState.FINISHED:
        raise JobFailedError(job)

    output_asset = media.get_asset(job.output_asset_ids[0])
    return media.sync_asset_files(output_asset)


# -----------------------------------------------------
# Publish
# -----------------------------------------------------
def publish_asset_urls(media: MediaServicesClient, asset: Asset, on_demand_url: bool = True,
                       file_ext: str = "", *, locator_days: int = 30) -> list:
    """
    Adaptive streaming URLs (smooth, HLS, DASH) through an origin locator, or
    with on_demand_url=False one download URL per file ending in `file_ext`.
    """
    duration = timedelta(days=locator_days)
    if on_demand_url:
        locator = media.create_locator(LocatorType.ON_DEMAND_ORIGIN, asset,
                                       permissions=AccessPermissions.READ, duration=duration)
        return media.get_streaming_uris(asset, locator).as_list()

    locator = media.create_locator(LocatorType.SAS, asset, permissions=AccessPermissions.READ, duration=duration)
    suffix = file_ext.lower()
    matching = [f for f in asset.files if f.name.lower().endswith(suffix)]
    return [media.get_sas_uri(asset, f, locator) for f in matching]


# -----------------------------------------------------
# Driver
# -----------------------------------------------------
def publish_one(media: MediaServicesClient, source, options: PipelineOptions, *,
                on_job_progress: Optional[JobCallback] = None,
                on_upload_progress: Optional[UploadCallback] = None,
                on_asset_uploaded: Optional[AssetCallback] = None,
                cancel_event: Optional[threading.Event] = None) -> PublishResult:
    """Run every stage for one blob (BlobRef) or local file (path)."""
    is_blob = isinstance(source, BlobRef)
    result = PublishResult(name=source.name if is_blob else Path(source).name)
    stage = "ingest"
    try:
        if is_blob:
            result.input_asset = create_asset_from_blob(
                media, source,
                asset_name=options.asset_name,
                copy_content=options.copy_content,
                write_policy_hours=options.write_policy_hours,
            )
        else:
            result.input_asset = upload_file_to_asset(
                media, source,
                options=options.creation_options,
                on_progress=on_upload_progress,
                on_created=on_asset_uploaded,
                write_policy_hours=options.write_policy_hours,
            )

        stage = "encode"
        result.encoded_asset = encode_to_adaptive_bitrate_mp4s(
            media, result.input_asset, options.creation_options,
            encoder=options.encoder,
            preset=options.preset,
            output_asset_name=options.output_asset_name,
            poll_interval=options.poll_interval,
            timeout=options.timeout,
            on_progress=on_job_progress,
            cancel_event=cancel_event,
        )

        stage = "publish"
        result.urls = publish_asset_urls(
            media, result.encoded_asset, options.on_demand, options.file_ext,
            locator_days=options.read_locator_days,
        )
    except Exception as e:
        result.error = StageError(stage, result.name, parse_exception(e))
        logger.info("%s", result.error)
    return result


def run_pipeline(media: MediaServicesClient, sources: Iterable, options: PipelineOptions,
                 **hooks) -> Iterable:
    """
    Yield a PublishResult per source, in order. The first failure ends the
    run unless options.continue_on_error is set.
    """
    cancel_event = hooks.get("cancel_event")
    for source in sources:
        result = publish_one(media, source, options, **hooks)
        yield result
        if not result.ok and not options.continue_on_error:
            logger.info("Aborting remaining sources after %s failed", result.name)
            return
        if cancel_event is not None and cancel_event.is_set():
            return
