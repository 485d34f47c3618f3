"""
Canopy Backend - Document Size Guard
======================================

What:  Measures the serialized subject document and refuses writes above the
       ceiling (15 MiB by default, under the store's 16 MiB record limit).
How:   Size is the byte length of compact UTF-8 JSON, the same encoding the
       store persists. Checked after every mutation, before the write.
"""

import json
from typing import Any, Mapping

from canopy.exceptions import EntityTooLargeError

DEFAULT_MAX_DOCUMENT_BYTES = 15 * 1024 * 1024


def serialized_size(document: Mapping[str, Any]) -> int:
    encoded = json.dumps(document, separators=(",", ":"), ensure_ascii=False)
    return len(encoded.encode("utf-8"))


class SizeGuard:
    """Hard ceiling on the size of one subject document."""

    def __init__(self, max_bytes: int = DEFAULT_MAX_DOCUMENT_BYTES):
        self.max_bytes = max_bytes

    def check(self, document: Mapping[str, Any]) -> int:
        """
        Return the serialized size, or raise EntityTooLargeError above the ceiling.

        No partial write or automatic pruning happens here; the caller simply
        does not persist the document it was about to write.
        """
        size = serialized_size(document)
        if size > self.max_bytes:
            raise EntityTooLargeError(size=size, limit=self.max_bytes)
        return size
