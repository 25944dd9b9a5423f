"""
Multipart body parsing for file-upload contracts.

Werkzeug's request.files swallows malformed bodies (silent parser), so the
body is parsed here with silent=False to tell "no files sent" apart from
"body could not be parsed".
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.formparser import parse_form_data
from werkzeug.wrappers import Request


MULTIPART_MIMETYPE = 'multipart/form-data'


@dataclass(frozen=True)
class UploadedFile:
    """One file taken from a multipart body."""
    field_name: str
    filename: str
    mime_type: str
    size_bytes: int
    content: bytes


class MultipartError(ValueError):
    """Raised when a request body is not a well-formed multipart form."""


def parse_multipart(
    request: Request,
    max_content_length: Optional[int] = None,
) -> Tuple[List[UploadedFile], Dict[str, str]]:
    """
    Split a multipart request into uploaded files and string form fields.

    Every file part is returned, including empty file inputs; callers decide
    what counts as an upload. Repeated form fields keep their first value.

    Raises:
        MultipartError: wrong content type, missing boundary, malformed or
        oversized body
    """
    if request.mimetype != MULTIPART_MIMETYPE:
        raise MultipartError(f"Expected {MULTIPART_MIMETYPE} request body")
    if not request.mimetype_params.get('boundary'):
        raise MultipartError("Multipart boundary missing")

    try:
        _, form, files = parse_form_data(
            request.environ,
            max_content_length=max_content_length,
            silent=False,
        )
    except RequestEntityTooLarge:
        raise MultipartError("Request body too large")
    except ValueError as e:
        raise MultipartError(f"Malformed multipart body: {e}") from e

    uploads = []
    for field_name, storage in files.items(multi=True):
        content = storage.read()
        uploads.append(UploadedFile(
            field_name=field_name,
            filename=storage.filename or '',
            mime_type=storage.mimetype or 'application/octet-stream',
            size_bytes=len(content),
            content=content,
        ))

    return uploads, form.to_dict()
