"""
Small helpers shared by the broker.
"""

import html
from typing import NamedTuple

from ..domain.exceptions import InvalidFileIdError


class FileRef(NamedTuple):
    file_id: str
    instance_id: str
    version: str


def parse_file_id(file_ref: str) -> FileRef:
    """Split "<fileId>[_<instanceId>[_<version>]]" into its parts."""
    parts = str(file_ref).split("_")
    if len(parts) == 1:
        return FileRef(parts[0], "", "0")
    if len(parts) == 2:
        return FileRef(parts[0], parts[1], "0")
    if len(parts) == 3:
        return FileRef(parts[0], parts[1], parts[2] or "0")
    raise InvalidFileIdError(str(file_ref))


def sanitize_html(value: str) -> str:
    return html.escape(value, quote=True)
