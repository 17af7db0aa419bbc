import threading

import pytest

from publisher.blobs import BlobRef
from publisher.errors import JobCancelledError, JobFailedError, JobTimeoutError, MediaServicesError, StageError
from publisher.mediaservices import JobState
from publisher.pipeline import (
    PipelineOptions,
    create_asset_from_blob,
    encode_to_adaptive_bitrate_mp4s,
    publish_asset_urls,
    run_pipeline,
    upload_file_to_asset,
)

from tests.conftest import MEDIA_BUCKET, SOURCE_CONTAINER
from tests.fakes import FakeMediaConvert

CLIP = BlobRef(name="clip.mp4", length=4096, container=SOURCE_CONTAINER)


@pytest.fixture
def options():
    return PipelineOptions(poll_interval=0)


def _encoded(media):
    asset = create_asset_from_blob(media, CLIP)
    return encode_to_adaptive_bitrate_mp4s(media, asset, poll_interval=0)


class TestIngest:
    def test_one_asset_one_file_no_leftover_credentials(self, media, s3_client):
        asset = create_asset_from_blob(media, CLIP)

        assert [a.id for a in media.list_assets()] == [asset.id]
        stored = media.get_asset(asset.id)
        assert stored.name == "NewAsset_Test"
        assert len(stored.files) == 1
        assert (stored.files[0].name, stored.files[0].content_file_size) == ("clip.mp4", 4096)
        assert stored.files[0].is_primary
        assert media.list_locators() == []
        assert media.list_access_policies() == []
        # metadata only by default
        assert s3_client.keys(MEDIA_BUCKET, asset.storage_prefix) == []

    def test_copy_content_moves_the_bytes(self, media, s3_client):
        s3_client.add_object(SOURCE_CONTAINER, "clip.mp4", b"v" * 4096)

        asset = create_asset_from_blob(media, CLIP, copy_content=True)

        assert s3_client.keys(MEDIA_BUCKET, asset.storage_prefix) == [f"assets/{asset.id}/clip.mp4"]
        assert media.list_locators() == []

    def test_credentials_are_cleaned_up_on_failure(self, media, monkeypatch):
        def _boom(asset):
            raise MediaServicesError("InternalError", "catalog unavailable")

        monkeypatch.setattr(media, "update_asset", _boom)

        with pytest.raises(MediaServicesError):
            create_asset_from_blob(media, CLIP)

        assert media.list_locators() == []
        assert media.list_access_policies() == []

    def test_upload_reports_progress(self, media, s3_client, tmp_path):
        path = tmp_path / "intro.mov"
        path.write_bytes(b"m" * 100)
        progress = []

        asset = upload_file_to_asset(media, path, on_progress=lambda name, pct: progress.append((name, pct)))

        assert progress == [("intro.mov", 50.0), ("intro.mov", 100.0)]
        assert asset.name == "intro.mov"
        assert media.get_asset(asset.id).files[0].content_file_size == 100
        assert s3_client.keys(MEDIA_BUCKET, asset.storage_prefix) == [f"assets/{asset.id}/intro.mov"]
        assert media.list_locators() == []

    def test_upload_progress_from_transfer_threads(self, media, s3_client, tmp_path):
        s3_client.upload_workers = 8
        path = tmp_path / "intro.mov"
        path.write_bytes(b"m" * 400)
        progress = []

        upload_file_to_asset(media, path, on_progress=lambda name, pct: progress.append(pct))

        assert len(progress) == 400
        assert progress == sorted(progress)
        assert progress[-1] == 100.0

    def test_upload_announces_the_asset_once_stored(self, media, tmp_path):
        path = tmp_path / "intro.mov"
        path.write_bytes(b"m" * 10)
        created = []

        asset = upload_file_to_asset(media, path, on_created=created.append)

        assert created == [asset]
        assert media.get_asset(asset.id).files[0].name == "intro.mov"


class TestEncode:
    def test_returns_the_first_output_with_its_files(self, media, mediaconvert):
        asset = create_asset_from_blob(media, CLIP)
        seen = []

        encoded = encode_to_adaptive_bitrate_mp4s(
            media, asset, poll_interval=0, on_progress=lambda job: seen.append((job.state, job.progress))
        )

        assert seen == [(JobState.PROCESSING, 50.0), (JobState.FINISHED, 100.0)]
        meta = mediaconvert.submitted[0]["UserMetadata"]
        assert encoded.id == meta["output_asset_ids"]
        assert "H264 Multiple Bitrate 720p" in meta["job_name"]
        names = {f.name for f in encoded.files}
        assert {"clip_720p_3400.mp4", "hls/clip.m3u8", "dash/clip.mpd", "smooth/clip.ism"} <= names

    def test_zero_outputs_is_a_lookup_error(self, media, s3_client):
        media.mediaconvert = FakeMediaConvert(s3_client, drop_outputs=True)
        asset = create_asset_from_blob(media, CLIP)

        with pytest.raises(IndexError):
            encode_to_adaptive_bitrate_mp4s(media, asset, poll_interval=0)

    def test_error_state_raises(self, media, s3_client):
        media.mediaconvert = FakeMediaConvert(s3_client, scripts=[["PROGRESSING", "ERROR"]])
        asset = create_asset_from_blob(media, CLIP)

        with pytest.raises(JobFailedError) as excinfo:
            encode_to_adaptive_bitrate_mp4s(media, asset, poll_interval=0)

        assert excinfo.value.job.state == JobState.ERROR
        assert "Input file could not be opened" in str(excinfo.value)

    def test_timeout_cancels_the_remote_job(self, media, s3_client):
        media.mediaconvert = convert = FakeMediaConvert(s3_client, default_script=["PROGRESSING"])
        asset = create_asset_from_blob(media, CLIP)

        with pytest.raises(JobTimeoutError):
            encode_to_adaptive_bitrate_mp4s(media, asset, poll_interval=0.001, timeout=0.01)

        assert convert.cancelled == ["job-1"]

    def test_cancellation_cancels_the_remote_job(self, media, s3_client):
        media.mediaconvert = convert = FakeMediaConvert(s3_client, default_script=["PROGRESSING"])
        asset = create_asset_from_blob(media, CLIP)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(JobCancelledError):
            encode_to_adaptive_bitrate_mp4s(media, asset, poll_interval=0, cancel_event=cancel)

        assert convert.cancelled == ["job-1"]


class TestPublish:
    def test_adaptive_urls(self, media):
        encoded = _encoded(media)

        urls = publish_asset_urls(media, encoded)

        base = f"https://stream.example.test/assets/{encoded.id}/"
        assert urls == [base + "smooth/clip.ism/Manifest", base + "hls/clip.m3u8", base + "dash/clip.mpd"]

    def test_download_urls_match_suffix_case_insensitively(self, media):
        encoded = _encoded(media)

        urls = publish_asset_urls(media, encoded, on_demand_url=False, file_ext=".MP4")

        assert len(urls) == 3
        assert all(".mp4?X-Amz-Expires=" in u for u in urls)

    def test_download_with_no_matches_is_empty(self, media):
        encoded = _encoded(media)

        assert publish_asset_urls(media, encoded, on_demand_url=False, file_ext=".webm") == []

    def test_urls_come_from_the_new_locator_without_catalog_reads(self, media, s3_client):
        for _ in range(20):
            publish_asset_urls(media, _encoded(media), on_demand_url=False)
        encoded = _encoded(media)
        s3_client.get_object_calls = 0

        urls = publish_asset_urls(media, encoded, on_demand_url=False, file_ext=".mp4")
        urls += publish_asset_urls(media, encoded)

        assert len(urls) == 6
        assert s3_client.get_object_calls == 0


class TestRunPipeline:
    BLOBS = [CLIP, BlobRef("second.mp4", 10, SOURCE_CONTAINER), BlobRef("third.mp4", 10, SOURCE_CONTAINER)]

    def test_all_succeed(self, media, options):
        results = list(run_pipeline(media, self.BLOBS, options))

        assert [r.name for r in results] == ["clip.mp4", "second.mp4", "third.mp4"]
        assert all(r.ok and len(r.urls) == 3 for r in results)

    def test_first_failure_aborts_the_rest(self, media, s3_client, options):
        media.mediaconvert = convert = FakeMediaConvert(s3_client, scripts=[["COMPLETE"], ["ERROR"]])

        results = list(run_pipeline(media, self.BLOBS, options))

        assert [r.ok for r in results] == [True, False]
        failed = results[1]
        assert isinstance(failed.error, StageError)
        assert failed.error.stage == "encode"
        assert failed.urls == []
        assert len(convert.submitted) == 2

    def test_continue_on_error(self, media, s3_client):
        media.mediaconvert = FakeMediaConvert(s3_client, scripts=[["ERROR"]])
        options = PipelineOptions(poll_interval=0, continue_on_error=True)

        results = list(run_pipeline(media, self.BLOBS, options))

        assert [r.ok for r in results] == [False, True, True]

    def test_upload_sources(self, media, mediaconvert, options, tmp_path):
        path = tmp_path / "intro.mov"
        path.write_bytes(b"m" * 10)
        events = []

        (result,) = run_pipeline(
            media, [str(path)], options,
            on_asset_uploaded=lambda asset: events.append(("created", len(mediaconvert.submitted))),
            on_job_progress=lambda job: events.append(("job", job.state)),
        )

        assert events[0] == ("created", 0)
        assert events[1:] == [("job", JobState.PROCESSING), ("job", JobState.FINISHED)]
        assert result.ok
        assert result.input_asset.name == "intro.mov"

    def test_options_from_settings(self, settings):
        settings.INGEST_ASSET_NAME = "Ingested"
        settings.JOB_TIMEOUT_SECONDS = 600.0

        options = PipelineOptions.from_settings(file_ext=".mp4", timeout=None)

        assert options.asset_name == "Ingested"
        assert options.timeout == 600.0
        assert options.file_ext == ".mp4"
        assert options.read_locator_days == 30
