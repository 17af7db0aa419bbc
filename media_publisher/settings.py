from pathlib import Path
import os
from dotenv import load_dotenv
from django.core.exceptions import ImproperlyConfigured

# -----------------------------------------------------
# Helpers
# -----------------------------------------------------
def env(name: str, default=None, *, required: bool = False):
    val = os.getenv(name, default)
    if required and (val is None or (isinstance(val, str) and val.strip() == "")):
        raise ImproperlyConfigured(f"Missing required environment variable: {name}")
    return val

def env_bool(name: str, default: bool = False) -> bool:
    return str(os.getenv(name, str(default))).lower() in {"1", "true", "yes", "on"}

# -----------------------------------------------------
# Paths & basics
# -----------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

DEBUG = env_bool("DEBUG", False)

# Nothing here signs cookies or sessions; Django still insists on a value.
SECRET_KEY = env("DJANGO_SECRET_KEY", "media-publisher-cli")

# -----------------------------------------------------
# Applications
# -----------------------------------------------------
INSTALLED_APPS = [
    "publisher",
]

# No local state: the media platform owns assets, jobs and locators.
DATABASES = {}

TIME_ZONE = "UTC"
USE_TZ = True

# -----------------------------------------------------
# Logging
# -----------------------------------------------------
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "loggers": {
        "publisher": {
            "handlers": ["console"],
            "level": env("LOG_LEVEL", "WARNING"),
            "propagate": False,
        },
        "botocore": {"handlers": ["console"], "level": "WARNING"},
    },
}

# -----------------------------------------------------
# S3 / MinIO storage account (env-driven; no hardcoded secrets)
# -----------------------------------------------------
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL") or None  # None -> AWS default endpoint
S3_PUBLIC_ENDPOINT = os.getenv("S3_PUBLIC_ENDPOINT", S3_ENDPOINT_URL)
S3_REGION = os.getenv("S3_REGION", "us-east-1")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY")
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY")

# Container holding the raw uploads to publish
SOURCE_CONTAINER = os.getenv("SOURCE_CONTAINER", "newvideos")

# -----------------------------------------------------
# Media services account
# -----------------------------------------------------
MEDIA_SERVICES_ACCOUNT_NAME = os.getenv("MEDIA_SERVICES_ACCOUNT_NAME")
MEDIA_SERVICES_ACCOUNT_KEY = os.getenv("MEDIA_SERVICES_ACCOUNT_KEY")
MEDIA_SERVICES_REGION = os.getenv("MEDIA_SERVICES_REGION", S3_REGION)
MEDIACONVERT_ENDPOINT_URL = os.getenv("MEDIACONVERT_ENDPOINT_URL")  # account-specific endpoint
MEDIACONVERT_ROLE_ARN = os.getenv("MEDIACONVERT_ROLE_ARN")
MEDIA_BUCKET = os.getenv("MEDIA_BUCKET")
STREAMING_ENDPOINT = os.getenv("STREAMING_ENDPOINT")  # origin/CDN in front of MEDIA_BUCKET

# -----------------------------------------------------
# Pipeline
# -----------------------------------------------------
INGEST_ASSET_NAME = os.getenv("INGEST_ASSET_NAME", "NewAsset_Test")
INGEST_COPY_BLOB = env_bool("INGEST_COPY_BLOB", False)

ENCODER_NAME = os.getenv("ENCODER_NAME", "Media Encoder Standard")
ENCODING_PRESET = os.getenv("ENCODING_PRESET", "H264 Multiple Bitrate 720p")
OUTPUT_ASSET_NAME = os.getenv("OUTPUT_ASSET_NAME", "Adaptive Bitrate MP4")

JOB_POLL_INTERVAL_SECONDS = float(env("JOB_POLL_INTERVAL_SECONDS", "5"))
JOB_TIMEOUT_SECONDS = float(env("JOB_TIMEOUT_SECONDS", "0"))  # 0 -> wait forever

WRITE_POLICY_HOURS = int(env("WRITE_POLICY_HOURS", "24"))
READ_LOCATOR_DAYS = int(env("READ_LOCATOR_DAYS", "30"))
