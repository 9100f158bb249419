"""Tests for compression helpers and the native repository cache"""

import pytest

from pkgsolve.core.cache import (
    CACHE_MAGIC,
    fingerprint_packages,
    read_cache,
    read_cache_file,
    write_cache,
    write_cache_file,
)
from pkgsolve.core.compression import compress_bytes, decompress_bytes, detect_format, read_file
from pkgsolve.core.errors import IntegrityError, NotFound, ParseError
from pkgsolve.core.specs import PackageInfo

PACKAGES = [
    PackageInfo("A", "1.0", "h1", depends=("B>=2.0",)),
    PackageInfo("B", "1.0", "h2", constrains=("C<3",)),
]


class TestCompression:
    """Tests for format detection and decompression."""

    def test_detect_format(self):
        assert detect_format(compress_bytes(b"data")) == "zstd"
        assert detect_format(b"\x1f\x8b\x08") == "gzip"
        assert detect_format(b"BZh91AY") == "bzip2"
        assert detect_format(b"{}") == "plain"

    def test_zstd_round_trip(self):
        assert decompress_bytes(compress_bytes(b"hello" * 100)) == b"hello" * 100

    def test_gzip(self):
        import gzip
        assert decompress_bytes(gzip.compress(b"payload")) == b"payload"

    def test_plain_passthrough(self):
        assert decompress_bytes(b'{"a": 1}') == b'{"a": 1}'

    def test_corrupt_data(self):
        with pytest.raises(ParseError):
            decompress_bytes(b"\x1f\x8bnot really gzip")

    def test_read_missing_file(self, tmp_path):
        with pytest.raises(NotFound):
            read_file(tmp_path / "missing.json")


class TestNativeCache:
    """Tests for cache blobs."""

    def test_round_trip(self):
        blob = write_cache("abc123", PACKAGES)
        assert blob.startswith(CACHE_MAGIC)
        fingerprint, packages = read_cache(blob, expected="abc123")
        assert fingerprint == "abc123"
        assert packages == PACKAGES

    def test_without_expected_fingerprint(self):
        fingerprint, _ = read_cache(write_cache("abc123", PACKAGES))
        assert fingerprint == "abc123"

    def test_fingerprint_mismatch(self):
        blob = write_cache("abc123", PACKAGES)
        with pytest.raises(IntegrityError) as excinfo:
            read_cache(blob, expected="def456")
        assert excinfo.value.expected == "def456"
        assert excinfo.value.actual == "abc123"

    def test_bad_magic(self):
        with pytest.raises(ParseError):
            read_cache(b"NOTACACHE")

    def test_truncated_blob(self):
        blob = write_cache("abc123", PACKAGES)
        with pytest.raises(ParseError):
            read_cache(blob[:len(CACHE_MAGIC) + 8])

    def test_payload_not_json(self):
        with pytest.raises(ParseError):
            read_cache(CACHE_MAGIC + compress_bytes(b"garbage"))

    def test_file_round_trip(self, tmp_path):
        path = write_cache_file(tmp_path / "cache" / "main.solv", "fp", PACKAGES)
        assert path.exists()
        assert not path.with_name(path.name + ".tmp").exists()
        assert read_cache_file(path, expected="fp") == ("fp", PACKAGES)

    def test_fingerprint_packages(self):
        assert fingerprint_packages(PACKAGES) == fingerprint_packages(list(PACKAGES))
        assert fingerprint_packages(PACKAGES) != fingerprint_packages(PACKAGES[:1])
