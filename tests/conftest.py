import pytest

from publisher.mediaservices import MediaServicesClient
from tests.fakes import FakeMediaConvert, FakeS3Client

MEDIA_BUCKET = "media"
SOURCE_CONTAINER = "newvideos"
STREAMING_ENDPOINT = "https://stream.example.test/"
ROLE_ARN = "arn:aws:iam::123456789012:role/MediaConvertRole"


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def mediaconvert(s3_client):
    return FakeMediaConvert(s3_client)


@pytest.fixture
def media(s3_client, mediaconvert):
    return MediaServicesClient(
        s3_client=s3_client,
        presign_client=s3_client,
        mediaconvert_client=mediaconvert,
        bucket=MEDIA_BUCKET,
        role_arn=ROLE_ARN,
        streaming_endpoint=STREAMING_ENDPOINT,
    )
