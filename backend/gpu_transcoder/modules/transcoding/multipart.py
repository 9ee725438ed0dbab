"""Multipart request construction for video uploads.

The client only depends on MultipartRequestBuilder; HttpxMultipartBuilder
produces the ``data``/``files`` arguments httpx expects. Other runtimes can
supply their own builder without touching the orchestration code.
"""

import io
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Union

# What callers may pass as an upload body
UploadFile = Union[bytes, bytearray, memoryview, BinaryIO]

DEFAULT_FILENAME = "video.mp4"
DEFAULT_CONTENT_TYPE = "video/mp4"
UPLOAD_FIELD = "video"


@dataclass
class MultipartPayload:
    """Form fields and file parts of a multipart request."""
    data: dict[str, str] = field(default_factory=dict)
    files: dict[str, tuple[str, Any, str]] = field(default_factory=dict)


def ensure_upload_file(file: Any) -> UploadFile:
    """Check that ``file`` is raw bytes or an open binary handle.

    Raises:
        TypeError: For paths, text handles, or anything else
    """
    if isinstance(file, (bytes, bytearray, memoryview)):
        return file
    if isinstance(file, io.TextIOBase):
        raise TypeError("Upload file must be opened in binary mode")
    if callable(getattr(file, "read", None)):
        return file
    raise TypeError(
        f"Upload file must be bytes or a binary file handle, got {type(file).__name__}"
    )


class MultipartRequestBuilder(ABC):
    """Builds the multipart body for an upload-and-transcode request."""

    @abstractmethod
    def build(
        self,
        file: UploadFile,
        fields: dict[str, str],
        filename: str = DEFAULT_FILENAME,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> MultipartPayload:
        """Assemble the request body.

        Args:
            file: Video bytes or binary handle
            fields: Plain form fields
            filename: File name reported to the worker
            content_type: MIME type of the upload

        Returns:
            MultipartPayload ready to hand to the HTTP layer
        """


class HttpxMultipartBuilder(MultipartRequestBuilder):
    """Builder producing httpx ``data=`` and ``files=`` arguments."""

    def build(
        self,
        file: UploadFile,
        fields: dict[str, str],
        filename: str = DEFAULT_FILENAME,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> MultipartPayload:
        body = ensure_upload_file(file)
        if isinstance(body, (bytearray, memoryview)):
            body = bytes(body)
        return MultipartPayload(
            data={key: str(value) for key, value in fields.items()},
            files={UPLOAD_FIELD: (filename, body, content_type)},
        )
