"""
Media platform client.

Assets, access policies and locators are catalog documents in the media bucket
(under `_catalog/`); an asset's files live under `assets/<asset-id>/` in the
same bucket. Encoding jobs run on AWS Elemental MediaConvert.
"""
import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Callable, Optional

from botocore.exceptions import ClientError
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone

from . import s3
from .errors import MediaServicesError
from .presets import DASH_DIR, HLS_DIR, build_job_settings

logger = logging.getLogger(__name__)

CATALOG_PREFIX = "_catalog"
ASSETS_PREFIX = "assets"

# SigV4 presigned URLs are capped at seven days.
MAX_PRESIGN_SECONDS = 7 * 24 * 60 * 60

SUPPORTED_ENCODERS = {"Media Encoder Standard"}

REQUIRED_SETTINGS = (
    "MEDIA_SERVICES_ACCOUNT_NAME",
    "MEDIA_SERVICES_ACCOUNT_KEY",
    "MEDIACONVERT_ENDPOINT_URL",
    "MEDIACONVERT_ROLE_ARN",
    "MEDIA_BUCKET",
    "STREAMING_ENDPOINT",
)


class AssetCreationOptions(str, Enum):
    NONE = "None"
    STORAGE_ENCRYPTED = "StorageEncrypted"


class AccessPermissions(str, Enum):
    READ = "Read"
    WRITE = "Write"


class LocatorType(str, Enum):
    SAS = "Sas"
    ON_DEMAND_ORIGIN = "OnDemandOrigin"


class JobState(str, Enum):
    QUEUED = "Queued"
    PROCESSING = "Processing"
    FINISHED = "Finished"
    ERROR = "Error"
    CANCELED = "Canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.FINISHED, JobState.ERROR, JobState.CANCELED)


# MediaConvert job status -> platform job state
MEDIACONVERT_STATES = {
    "SUBMITTED": JobState.QUEUED,
    "PROGRESSING": JobState.PROCESSING,
    "COMPLETE": JobState.FINISHED,
    "ERROR": JobState.ERROR,
    "CANCELED": JobState.CANCELED,
}


@dataclass
class AssetFile:
    name: str
    content_file_size: int = 0
    is_primary: bool = False


@dataclass
class Asset:
    id: str
    name: str
    options: AssetCreationOptions = AssetCreationOptions.NONE
    files: list = field(default_factory=list)
    created_at: str = ""

    @property
    def storage_prefix(self) -> str:
        return f"{ASSETS_PREFIX}/{self.id}/"

    @classmethod
    def from_doc(cls, doc: dict) -> "Asset":
        return cls(
            id=doc["id"],
            name=doc["name"],
            options=AssetCreationOptions(doc.get("options", "None")),
            files=[AssetFile(**f) for f in doc.get("files", [])],
            created_at=doc.get("created_at", ""),
        )


@dataclass
class AccessPolicy:
    id: str
    name: str
    duration_seconds: float
    permissions: AccessPermissions

    @classmethod
    def from_doc(cls, doc: dict) -> "AccessPolicy":
        return cls(
            id=doc["id"],
            name=doc["name"],
            duration_seconds=doc["duration_seconds"],
            permissions=AccessPermissions(doc["permissions"]),
        )


@dataclass
class Locator:
    id: str
    type: LocatorType
    asset_id: str
    access_policy_id: str
    permissions: AccessPermissions
    expires_at: str
    path: str

    @property
    def expiry(self) -> datetime:
        return datetime.fromisoformat(self.expires_at)

    @classmethod
    def from_doc(cls, doc: dict) -> "Locator":
        return cls(
            id=doc["id"],
            type=LocatorType(doc["type"]),
            asset_id=doc["asset_id"],
            access_policy_id=doc["access_policy_id"],
            permissions=AccessPermissions(doc["permissions"]),
            expires_at=doc["expires_at"],
            path=doc["path"],
        )


@dataclass
class Job:
    id: str
    name: str
    state: JobState = JobState.QUEUED
    progress: float = 0.0
    output_asset_ids: list = field(default_factory=list)
    error_code: str = ""
    error_message: str = ""


@dataclass
class StreamingUris:
    smooth: str
    hls: str
    dash: str

    def as_list(self) -> list:
        return [self.smooth, self.hls, self.dash]


def _json_default(value):
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Not JSON serializable: {type(value).__name__}")


def _new_id() -> str:
    return uuid.uuid4().hex


class MediaServicesClient:
    """Explicit handle on the media platform; pass it into every stage."""

    def __init__(self, *, s3_client, presign_client, mediaconvert_client,
                 bucket: str, role_arn: str, streaming_endpoint: str):
        self.s3 = s3_client
        self.presign = presign_client
        self.mediaconvert = mediaconvert_client
        self.bucket = bucket
        self.role_arn = role_arn
        self.streaming_endpoint = streaming_endpoint.rstrip("/")

    @classmethod
    def from_settings(cls) -> "MediaServicesClient":
        missing = [name for name in REQUIRED_SETTINGS if not getattr(settings, name, None)]
        if missing:
            raise ImproperlyConfigured(f"Missing media services settings: {', '.join(missing)}")
        return cls(
            s3_client=s3.get_media_s3_client(),
            presign_client=s3.get_presign_client(),
            mediaconvert_client=s3.get_mediaconvert_client(),
            bucket=settings.MEDIA_BUCKET,
            role_arn=settings.MEDIACONVERT_ROLE_ARN,
            streaming_endpoint=settings.STREAMING_ENDPOINT,
        )

    # -----------------------------------------------------
    # Catalog documents
    # -----------------------------------------------------
    def _prefix(self, kind: str, scope: Optional[str] = None) -> str:
        # locators are filed under their asset so lookups stay per-asset
        return f"{CATALOG_PREFIX}/{kind}/{scope}/" if scope else f"{CATALOG_PREFIX}/{kind}/"

    def _key(self, kind: str, obj_id: str, scope: Optional[str] = None) -> str:
        return f"{self._prefix(kind, scope)}{obj_id}.json"

    def _put(self, kind: str, obj, scope: Optional[str] = None) -> None:
        self.s3.put_object(
            Bucket=self.bucket,
            Key=self._key(kind, obj.id, scope),
            Body=json.dumps(asdict(obj), default=_json_default).encode("utf-8"),
            ContentType="application/json",
        )
        logger.debug("Stored %s %s", kind, obj.id)

    def _get(self, kind: str, obj_id: str) -> dict:
        try:
            resp = self.s3.get_object(Bucket=self.bucket, Key=self._key(kind, obj_id))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise MediaServicesError("ResourceNotFound", f"No {kind[:-1]} with id {obj_id}") from e
            raise
        return json.loads(resp["Body"].read())

    def _delete(self, kind: str, obj_id: str, scope: Optional[str] = None) -> None:
        self.s3.delete_object(Bucket=self.bucket, Key=self._key(kind, obj_id, scope))
        logger.debug("Deleted %s %s", kind, obj_id)

    def _list(self, kind: str, scope: Optional[str] = None) -> list:
        docs = []
        paginator = self.s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=self._prefix(kind, scope)):
            for obj in page.get("Contents", []):
                body = self.s3.get_object(Bucket=self.bucket, Key=obj["Key"])["Body"].read()
                docs.append(json.loads(body))
        return docs

    # -----------------------------------------------------
    # Assets
    # -----------------------------------------------------
    def create_asset(self, name: str, options: AssetCreationOptions = AssetCreationOptions.NONE) -> Asset:
        asset = Asset(id=_new_id(), name=name, options=options, created_at=timezone.now().isoformat())
        self._put("assets", asset)
        logger.info("Created asset %s (%s)", asset.id, name)
        return asset

    def get_asset(self, asset_id: str) -> Asset:
        return Asset.from_doc(self._get("assets", asset_id))

    def list_assets(self) -> list:
        return [Asset.from_doc(d) for d in self._list("assets")]

    def update_asset(self, asset: Asset) -> None:
        self._put("assets", asset)

    def create_asset_file(self, asset: Asset, name: str) -> AssetFile:
        """Registers a file on the asset; persisted by the next update_asset()."""
        asset_file = AssetFile(name=name)
        asset.files.append(asset_file)
        return asset_file

    def sync_asset_files(self, asset: Asset) -> Asset:
        """Rebuild the asset's file list from what sits in its storage."""
        files = []
        paginator = self.s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=asset.storage_prefix):
            for obj in page.get("Contents", []):
                files.append(AssetFile(
                    name=obj["Key"][len(asset.storage_prefix):],
                    content_file_size=obj.get("Size", 0),
                ))
        asset.files = files
        self.update_asset(asset)
        return asset

    def _extra_args(self, asset: Asset) -> dict:
        if asset.options == AssetCreationOptions.STORAGE_ENCRYPTED:
            return {"ServerSideEncryption": "AES256"}
        return {}

    def _require_write(self, locator: Locator, asset: Asset) -> None:
        if locator.asset_id != asset.id or locator.permissions != AccessPermissions.WRITE:
            raise MediaServicesError("AccessDenied", f"Locator {locator.id} does not grant write on asset {asset.id}")
        if locator.expiry <= timezone.now():
            raise MediaServicesError("LocatorExpired", f"Locator {locator.id} expired at {locator.expires_at}")

    def copy_blob_to_asset(self, blob, asset: Asset, locator: Locator, file_name: Optional[str] = None) -> None:
        """Server-side copy of a storage blob into the asset's storage."""
        self._require_write(locator, asset)
        self.s3.copy_object(
            Bucket=self.bucket,
            Key=asset.storage_prefix + (file_name or blob.name),
            CopySource={"Bucket": blob.container, "Key": blob.name},
            **self._extra_args(asset),
        )
        logger.info("Copied %s/%s into asset %s", blob.container, blob.name, asset.id)

    def upload_to_asset(self, asset: Asset, locator: Locator, path: str,
                        callback: Optional[Callable[[int], None]] = None) -> None:
        self._require_write(locator, asset)
        extra = self._extra_args(asset)
        self.s3.upload_file(
            str(path),
            self.bucket,
            asset.storage_prefix + Path(path).name,
            ExtraArgs=extra or None,
            Callback=callback,
        )

    # -----------------------------------------------------
    # Access policies & locators
    # -----------------------------------------------------
    def create_access_policy(self, name: str, duration: timedelta, permissions: AccessPermissions) -> AccessPolicy:
        policy = AccessPolicy(
            id=_new_id(),
            name=name,
            duration_seconds=duration.total_seconds(),
            permissions=permissions,
        )
        self._put("policies", policy)
        return policy

    def delete_access_policy(self, policy: AccessPolicy) -> None:
        self._delete("policies", policy.id)

    def list_access_policies(self) -> list:
        return [AccessPolicy.from_doc(d) for d in self._list("policies")]

    def create_locator(self, locator_type: LocatorType, asset: Asset, policy: Optional[AccessPolicy] = None, *,
                       permissions: Optional[AccessPermissions] = None,
                       duration: Optional[timedelta] = None) -> Locator:
        """
        Create a locator from an existing policy, or from permissions + duration,
        in which case a policy is created for it.
        """
        if policy is None:
            if permissions is None or duration is None:
                raise ValueError("Either a policy or permissions and duration are required")
            policy = self.create_access_policy(f"{locator_type.value} policy", duration, permissions)
        if locator_type == LocatorType.ON_DEMAND_ORIGIN:
            if policy.permissions != AccessPermissions.READ:
                raise MediaServicesError("InvalidLocator", "Origin locators must be read-only")
            path = f"{self.streaming_endpoint}/{asset.storage_prefix}"
        else:
            path = s3.s3_uri(self.bucket, asset.storage_prefix)

        locator = Locator(
            id=_new_id(),
            type=locator_type,
            asset_id=asset.id,
            access_policy_id=policy.id,
            permissions=policy.permissions,
            expires_at=(timezone.now() + timedelta(seconds=policy.duration_seconds)).isoformat(),
            path=path,
        )
        self._put("locators", locator, scope=asset.id)
        logger.info("Created %s locator %s on asset %s", locator_type.value, locator.id, asset.id)
        return locator

    def delete_locator(self, locator: Locator) -> None:
        self._delete("locators", locator.id, scope=locator.asset_id)

    def list_locators(self, asset: Optional[Asset] = None) -> list:
        scope = asset.id if asset is not None else None
        return [Locator.from_doc(d) for d in self._list("locators", scope)]

    def _is_usable(self, locator: Locator, asset: Asset, locator_type: LocatorType) -> bool:
        return (
            locator.asset_id == asset.id
            and locator.type == locator_type
            and locator.permissions == AccessPermissions.READ
            and locator.expiry > timezone.now()
        )

    def _active_locator(self, asset: Asset, locator_type: LocatorType,
                        locator: Optional[Locator] = None) -> Locator:
        """The given locator if it is usable, else the longest-lived one on the asset."""
        if locator is not None and self._is_usable(locator, asset, locator_type):
            return locator
        candidates = [loc for loc in self.list_locators(asset) if self._is_usable(loc, asset, locator_type)]
        if not candidates:
            raise MediaServicesError(
                "LocatorNotFound",
                f"Asset {asset.id} has no active {locator_type.value} read locator",
            )
        return max(candidates, key=lambda loc: loc.expiry)

    # -----------------------------------------------------
    # URLs
    # -----------------------------------------------------
    def get_sas_uri(self, asset: Asset, asset_file: AssetFile, locator: Optional[Locator] = None) -> str:
        locator = self._active_locator(asset, LocatorType.SAS, locator)
        remaining = int((locator.expiry - timezone.now()).total_seconds())
        return s3.create_presigned_get(
            self.presign,
            self.bucket,
            asset.storage_prefix + asset_file.name,
            max(1, min(remaining, MAX_PRESIGN_SECONDS)),
        )

    def get_streaming_uris(self, asset: Asset, locator: Optional[Locator] = None) -> StreamingUris:
        locator = self._active_locator(asset, LocatorType.ON_DEMAND_ORIGIN, locator)
        manifest = next((f.name for f in asset.files if f.name.lower().endswith(".ism")), None)
        if manifest is None:
            raise MediaServicesError("ManifestNotFound", f"Asset {asset.id} has no streaming manifest")
        stem = PurePosixPath(manifest).stem
        return StreamingUris(
            smooth=f"{locator.path}{manifest}/Manifest",
            hls=f"{locator.path}{HLS_DIR}/{stem}.m3u8",
            dash=f"{locator.path}{DASH_DIR}/{stem}.mpd",
        )

    # -----------------------------------------------------
    # Jobs
    # -----------------------------------------------------
    def _primary_file(self, asset: Asset) -> AssetFile:
        for f in asset.files:
            if f.is_primary:
                return f
        if asset.files:
            return asset.files[0]
        raise MediaServicesError("InvalidInput", f"Asset {asset.id} has no files to encode")

    def create_job_with_single_task(self, name: str, encoder: str, preset: str, input_asset: Asset,
                                    output_asset_name: str,
                                    options: AssetCreationOptions = AssetCreationOptions.NONE) -> Job:
        """Submit one encoding task; the output asset is created up front."""
        if encoder not in SUPPORTED_ENCODERS:
            raise MediaServicesError("ProcessorNotFound", f"Unknown media processor: {encoder}")

        source = self._primary_file(input_asset)
        output_asset = self.create_asset(output_asset_name, options)
        job_settings = build_job_settings(
            preset,
            input_uri=s3.s3_uri(self.bucket, input_asset.storage_prefix + source.name),
            destination=s3.s3_uri(self.bucket, output_asset.storage_prefix),
            stem=PurePosixPath(source.name).stem,
        )
        resp = self.mediaconvert.create_job(
            Role=self.role_arn,
            Settings=job_settings,
            UserMetadata={
                "job_name": name,
                "input_asset_id": input_asset.id,
                "output_asset_ids": output_asset.id,
            },
        )
        job = self._job_from_response(resp["Job"])
        logger.info("Submitted job %s for asset %s", job.id, input_asset.id)
        return job

    def _job_from_response(self, data: dict) -> Job:
        meta = data.get("UserMetadata", {})
        state = MEDIACONVERT_STATES.get(data.get("Status"), JobState.QUEUED)
        progress = float(data.get("JobPercentComplete", 0))
        if state == JobState.FINISHED:
            progress = 100.0
        outputs = [i for i in meta.get("output_asset_ids", "").split(",") if i]
        return Job(
            id=data["Id"],
            name=meta.get("job_name", ""),
            state=state,
            progress=progress,
            output_asset_ids=outputs,
            error_code=str(data.get("ErrorCode", "") or ""),
            error_message=data.get("ErrorMessage", ""),
        )

    def refresh_job(self, job: Job) -> Job:
        return self._job_from_response(self.mediaconvert.get_job(Id=job.id)["Job"])

    def cancel_job(self, job: Job) -> None:
        self.mediaconvert.cancel_job(Id=job.id)
        logger.info("Cancelled job %s", job.id)
