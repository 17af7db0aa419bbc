import boto3
from botocore.config import Config as BotoConfig
from django.conf import settings


def _storage_session():
    return boto3.session.Session(
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
    )


def _media_session():
    return boto3.session.Session(
        aws_access_key_id=settings.MEDIA_SERVICES_ACCOUNT_NAME,
        aws_secret_access_key=settings.MEDIA_SERVICES_ACCOUNT_KEY,
        region_name=settings.MEDIA_SERVICES_REGION,
    )


def _s3_config():
    return BotoConfig(
        s3={"addressing_style": "path"},
        signature_version="s3v4",
    )


def get_s3_client():
    """
    SDK client for the storage account holding the source containers.
    """
    return _storage_session().client(
        "s3",
        endpoint_url=settings.S3_ENDPOINT_URL,  # e.g. http://127.0.0.1:9000
        config=_s3_config(),
    )


def get_media_s3_client():
    """
    Client for the media bucket: asset storage plus the platform catalog.
    """
    return _media_session().client(
        "s3",
        endpoint_url=settings.S3_ENDPOINT_URL,
        config=_s3_config(),
    )


def get_presign_client():
    """
    Separate client for generating presigned URLs that players and browsers will call.
    Uses S3_PUBLIC_ENDPOINT so the URL host matches what the client reaches.
    """
    return _media_session().client(
        "s3",
        endpoint_url=settings.S3_PUBLIC_ENDPOINT,
        config=_s3_config(),
    )


def get_mediaconvert_client():
    """
    MediaConvert requires the account-specific endpoint (DescribeEndpoints).
    """
    return _media_session().client(
        "mediaconvert",
        endpoint_url=settings.MEDIACONVERT_ENDPOINT_URL,
    )


def create_presigned_get(client, bucket: str, key: str, expires: int) -> str:
    """
    Create a presigned GET URL to download an object.
    """
    return client.generate_presigned_url(
        ClientMethod="get_object",
        Params={"Bucket": bucket, "Key": key},
        ExpiresIn=expires,
        HttpMethod="GET",
    )


def s3_uri(bucket: str, key: str) -> str:
    return f"s3://{bucket}/{key}"
