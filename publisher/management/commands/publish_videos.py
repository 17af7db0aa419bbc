import signal
import threading

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError

from publisher.blobs import list_block_blobs
from publisher.errors import StageError, parse_exception
from publisher.mediaservices import JobState, MediaServicesClient
from publisher.pipeline import PipelineOptions, run_pipeline
from publisher.s3 import get_s3_client


class Command(BaseCommand):
    help = (
        "Encode every video in the source container to adaptive bitrate MP4s "
        "and print streaming (or download) URLs."
    )

    def add_arguments(self, parser):
        parser.add_argument("--container", help="Container to publish (default: SOURCE_CONTAINER).")
        parser.add_argument(
            "--upload", action="append", default=[], metavar="PATH",
            help="Publish a local file instead of the container contents. Repeatable.",
        )
        parser.add_argument(
            "--download", action="store_true",
            help="Print progressive download URLs instead of adaptive streaming URLs.",
        )
        parser.add_argument("--file-ext", default="", help="Only files ending with this suffix (download mode).")
        parser.add_argument("--poll-interval", type=float, help="Seconds between job status polls.")
        parser.add_argument("--timeout", type=float, help="Give up on a job after this many seconds (0 = never).")
        parser.add_argument(
            "--continue-on-error", action="store_true",
            help="Carry on with the next video when one fails.",
        )
        parser.add_argument(
            "--noinput", "--no-input", action="store_false", dest="interactive",
            help="Do not wait for Enter before exiting.",
        )

    def handle(self, *args, **options):
        try:
            media = MediaServicesClient.from_settings()
        except ImproperlyConfigured as e:
            raise CommandError(str(e))

        pipeline_options = PipelineOptions.from_settings(
            on_demand=not options["download"],
            file_ext=options["file_ext"],
            poll_interval=options["poll_interval"],
            timeout=options["timeout"],
            continue_on_error=options["continue_on_error"],
        )

        cancel_event = threading.Event()

        def _interrupt(signum, frame):
            if cancel_event.is_set():
                raise KeyboardInterrupt
            self.stderr.write("Cancelling current job... (Ctrl-C again to quit)")
            cancel_event.set()

        # signal handlers can only be installed from the main thread
        in_main_thread = threading.current_thread() is threading.main_thread()
        previous = signal.signal(signal.SIGINT, _interrupt) if in_main_thread else None
        try:
            self._publish(media, pipeline_options, cancel_event, options)
        finally:
            if in_main_thread:
                signal.signal(signal.SIGINT, previous)
            if options["interactive"]:
                try:
                    input()
                except EOFError:
                    pass

    def _publish(self, media, pipeline_options, cancel_event, options):
        if options["upload"]:
            sources = options["upload"]
        else:
            container = options["container"] or settings.SOURCE_CONTAINER
            try:
                sources = list_block_blobs(container, get_s3_client())
            except Exception as e:
                self.stderr.write(str(StageError("enumerate", None, parse_exception(e))))
                return
            self.stdout.write(f"Found {len(sources)} block blob(s) in '{container}'.")

        results = run_pipeline(
            media, sources, pipeline_options,
            on_job_progress=self._job_progress,
            on_upload_progress=self._upload_progress,
            on_asset_uploaded=self._asset_uploaded,
            cancel_event=cancel_event,
        )
        for result in results:
            if not result.ok:
                self.stderr.write(str(result.error))
                continue
            if pipeline_options.on_demand:
                self.stdout.write("Use the following URLs for adaptive streaming:")
            else:
                self.stdout.write("Use the following URLs for progressive download.")
            for url in result.urls:
                self.stdout.write(url)
            self.stdout.write("")

    def _job_progress(self, job):
        self.stdout.write(f"Job state: {job.state.value}")
        self.stdout.write(f"Job progress: {job.progress:.2f}%")
        if job.state == JobState.FINISHED:
            self.stdout.write("Transcoding job finished.")

    def _upload_progress(self, name, percent):
        self.stdout.write(f"Uploading '{name}' - Progress: {percent:.2f}%")

    def _asset_uploaded(self, asset):
        self.stdout.write(f"Asset {asset.id} created.")
