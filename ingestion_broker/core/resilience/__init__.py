from .resource_retry import (
    AttemptRecord,
    UploadResult,
    post_to_queue_with_retries,
    resource_action_with_retries,
    upload_local_file_with_retries,
    upload_stream_to_blob_with_retries,
)

__all__ = [
    "AttemptRecord",
    "UploadResult",
    "post_to_queue_with_retries",
    "resource_action_with_retries",
    "upload_local_file_with_retries",
    "upload_stream_to_blob_with_retries",
]
