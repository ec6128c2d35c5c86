from common.events import StreamSink
from common.ids import generate_id
from common.jsonio import JsonDocumentError, atomic_write_json, load_json

__all__ = [
    "StreamSink",
    "generate_id",
    "JsonDocumentError",
    "load_json",
    "atomic_write_json",
]
