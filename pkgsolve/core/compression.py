"""
Compression utilities for pkgsolve

Auto-detects and handles the formats repodata is published in:
- zstd (repodata.json.zst, native cache blobs)
- gzip
- xz/lzma
- bzip2
"""

import bz2
import gzip
import lzma
from pathlib import Path
from typing import Union

import zstandard as zstd

from .errors import NotFound, ParseError

# Magic bytes for format detection
MAGIC_ZSTD = b'\x28\xb5\x2f\xfd'
MAGIC_GZIP = b'\x1f\x8b'
MAGIC_XZ = b'\xfd7zXZ\x00'
MAGIC_BZ2 = b'BZh'

ZSTD_LEVEL = 10


def detect_format(data: bytes) -> str:
    """Detect compression format from magic bytes.

    Args:
        data: First 8+ bytes of the file

    Returns:
        Format name: 'zstd', 'gzip', 'xz', 'bzip2', or 'plain'
    """
    if data[:4] == MAGIC_ZSTD:
        return 'zstd'
    elif data[:2] == MAGIC_GZIP:
        return 'gzip'
    elif data[:6] == MAGIC_XZ:
        return 'xz'
    elif data[:3] == MAGIC_BZ2:
        return 'bzip2'
    else:
        return 'plain'


def decompress_bytes(data: bytes) -> bytes:
    """Decompress bytes, auto-detecting format.

    Args:
        data: Compressed data

    Returns:
        Decompressed bytes

    Raises:
        ParseError: If decompression fails
    """
    fmt = detect_format(data)

    try:
        if fmt == 'zstd':
            dctx = zstd.ZstdDecompressor()
            with dctx.stream_reader(data) as reader:
                return reader.read()
        elif fmt == 'gzip':
            return gzip.decompress(data)
        elif fmt == 'xz':
            return lzma.decompress(data)
        elif fmt == 'bzip2':
            return bz2.decompress(data)
    except (zstd.ZstdError, OSError, EOFError, lzma.LZMAError, ValueError) as e:
        raise ParseError(f"Corrupt {fmt} data: {e}") from e

    # Plain/uncompressed
    return data


def compress_bytes(data: bytes, level: int = ZSTD_LEVEL) -> bytes:
    """Compress bytes with zstd."""
    cctx = zstd.ZstdCompressor(level=level)
    return cctx.compress(data)


def read_file(filename: Union[str, Path]) -> bytes:
    """Read a possibly compressed file and return its raw bytes.

    Raises:
        NotFound: If the file does not exist
    """
    path = Path(filename)
    try:
        with open(path, 'rb') as f:
            return f.read()
    except FileNotFoundError as e:
        raise NotFound(f"No such file: {path}") from e
    except IsADirectoryError as e:
        raise NotFound(f"Not a file: {path}") from e
