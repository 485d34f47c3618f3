"""
Canopy Backend - Size Guard Unit Tests
========================================

What we test:
    ✅ Size is the byte length of compact UTF-8 JSON
    ✅ A document at the ceiling passes, one byte over is rejected
    ✅ The default ceiling is 15 MiB
"""

import pytest

from canopy.exceptions import EntityTooLargeError
from canopy.ledger import SizeGuard, serialized_size
from canopy.ledger.size_guard import DEFAULT_MAX_DOCUMENT_BYTES


class TestSerializedSize:

    def test_compact_separators(self):
        assert serialized_size({"a": 1, "b": [1, 2]}) == len('{"a":1,"b":[1,2]}')

    def test_non_ascii_counts_encoded_bytes(self):
        # "é" is two bytes in UTF-8
        assert serialized_size({"n": "é"}) == len('{"n":""}') + 2


class TestSizeGuard:

    def test_default_ceiling(self):
        assert DEFAULT_MAX_DOCUMENT_BYTES == 15 * 1024 * 1024
        assert SizeGuard().max_bytes == DEFAULT_MAX_DOCUMENT_BYTES

    def test_at_ceiling_passes(self):
        document = {"notes": "x" * 20}
        size = serialized_size(document)
        assert SizeGuard(max_bytes=size).check(document) == size

    def test_over_ceiling_rejected(self):
        document = {"notes": "x" * 20}
        size = serialized_size(document)

        with pytest.raises(EntityTooLargeError) as exc_info:
            SizeGuard(max_bytes=size - 1).check(document)

        assert exc_info.value.size == size
        assert exc_info.value.limit == size - 1
