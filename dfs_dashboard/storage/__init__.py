from .blob_store import DiskBlobStore  # noqa: F401
from .record_store import InMemoryRecordStore, build_record_store  # noqa: F401
