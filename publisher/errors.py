import re
import xml.etree.ElementTree as ET

from botocore.exceptions import ClientError


class PublisherError(Exception):
    """Base class for everything the publishing pipeline raises."""


class MediaServicesError(PublisherError):
    """An error reported by the media platform, reduced to code + message."""

    def __init__(self, code: str, message: str):
        super().__init__(f"{code}: {message}" if code else message)
        self.code = code
        self.message = message


class JobFailedError(MediaServicesError):
    def __init__(self, job):
        super().__init__(
            job.error_code or "JobFailed",
            job.error_message or f"Job {job.id} ended in state {job.state.value}",
        )
        self.job = job


class JobTimeoutError(PublisherError):
    def __init__(self, job, timeout: float):
        super().__init__(f"Job {job.id} still {job.state.value} after {timeout:g}s")
        self.job = job
        self.timeout = timeout


class JobCancelledError(PublisherError):
    def __init__(self, job):
        super().__init__(f"Job {job.id} was cancelled")
        self.job = job


class StageError(PublisherError):
    """A pipeline stage failed for one blob; `cause` is already parsed."""

    def __init__(self, stage: str, blob_name, cause: BaseException):
        target = f" for '{blob_name}'" if blob_name else ""
        super().__init__(f"{stage} failed{target}: {cause}")
        self.stage = stage
        self.blob_name = blob_name
        self.cause = cause


# Start of an XML document or of an <error>/<m:error> element
_XML_START = re.compile(r"<\?xml|<(?:\w+:)?error[\s>]", re.IGNORECASE)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].lower()


def _parse_xml_error(text: str):
    """
    Pull (code, message) out of an XML error payload, or None.
    Handles S3-style <Error><Code/><Message/></Error> and OData
    <m:error><m:code/><m:message/></m:error> bodies.
    """
    match = _XML_START.search(text)
    if not match:
        return None
    try:
        root = ET.fromstring(text[match.start():].strip())
    except ET.ParseError:
        return None

    code = message = None
    for el in root.iter():
        name = _local(el.tag)
        if name == "code" and code is None:
            code = (el.text or "").strip()
        elif name == "message" and message is None:
            message = (el.text or "").strip()
    if message is None:
        return None
    return code or "", message


def parse_exception(exc: BaseException) -> BaseException:
    """
    Rewrite a platform exception into a cleaner MediaServicesError when
    possible. Walks the __cause__ chain; anything unrecognised comes back as-is.
    """
    current = exc
    seen = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, PublisherError):
            return current
        if isinstance(current, ClientError):
            err = current.response.get("Error", {})
            code = err.get("Code", "")
            message = err.get("Message") or str(current)
            parsed = _parse_xml_error(message)
            if parsed:
                code, message = parsed
            return MediaServicesError(code, message)
        parsed = _parse_xml_error(str(current))
        if parsed:
            return MediaServicesError(*parsed)
        current = current.__cause__ or current.__context__
    return exc
