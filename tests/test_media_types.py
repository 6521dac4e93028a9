"""
Tests for media type constants.
"""
from __future__ import annotations

import pytest

from docker_registry_v2 import media_types
from docker_registry_v2.media_types import (
    MEDIATYPE_MANIFEST_V2,
    manifest_media_type_for_schema,
)


class TestMediaTypes:
    """Test the exported constants."""

    def test_exports_exist(self):
        """Test every name in __all__ is defined."""
        for name in media_types.__all__:
            assert hasattr(media_types, name), name

    def test_legacy_constants_not_exported(self):
        """Test no dropped constant is still exported."""
        assert "LIST_MEDIA_TYPES" not in media_types.__all__
        assert "MEDIATYPE_MANIFEST_V1_SIGNED" not in media_types.__all__

    @pytest.mark.parametrize("version,expected", [
        (1, "application/vnd.docker.distribution.manifest.v1+json"),
        (2, MEDIATYPE_MANIFEST_V2),
    ])
    def test_manifest_media_type_for_schema(self, version, expected):
        """Test the default upload media type per schema version."""
        assert manifest_media_type_for_schema(version) == expected
