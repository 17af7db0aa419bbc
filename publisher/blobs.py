from dataclasses import dataclass

from . import s3

# Objects in these classes need a restore before they can be read
ARCHIVE_STORAGE_CLASSES = {"GLACIER", "DEEP_ARCHIVE"}


@dataclass(frozen=True)
class BlobRef:
    name: str
    length: int
    container: str

    @property
    def uri(self) -> str:
        return s3.s3_uri(self.container, self.name)


def is_block_blob(obj: dict) -> bool:
    """Plain readable objects; directory markers and archived objects are not."""
    if obj["Key"].endswith("/"):
        return False
    return obj.get("StorageClass", "STANDARD") not in ARCHIVE_STORAGE_CLASSES


def list_block_blobs(container: str, client=None) -> list:
    """
    Block blobs at the top level of `container`, in listing order.
    A single listing call; sub-"directories" come back as common prefixes and are skipped.
    """
    client = client or s3.get_s3_client()
    resp = client.list_objects_v2(Bucket=container, Delimiter="/")
    return [
        BlobRef(name=obj["Key"], length=obj["Size"], container=container)
        for obj in resp.get("Contents", [])
        if is_block_blob(obj)
    ]
