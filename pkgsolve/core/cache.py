"""
Native repository cache for pkgsolve.

A cache blob stores the packages of one repository together with the
fingerprint of the metadata they were parsed from:

    b"PKGSOLV1" + zstd(json({"fingerprint": ..., "packages": [...]}))

Loading a blob with an expected fingerprint that does not match raises
IntegrityError, so stale caches are never mistaken for current metadata.
"""

import hashlib
import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from .compression import compress_bytes, decompress_bytes, read_file
from .errors import IntegrityError, ParseError
from .specs import PackageInfo

logger = logging.getLogger(__name__)

CACHE_MAGIC = b'PKGSOLV1'


def fingerprint_packages(packages: Iterable[PackageInfo]) -> str:
    """Fingerprint of an in-memory package list (order sensitive)."""
    digest = hashlib.sha256()
    for pkg in packages:
        digest.update(json.dumps(pkg.to_dict(), sort_keys=True).encode('utf-8'))
        digest.update(b'\n')
    return digest.hexdigest()


def write_cache(fingerprint: str, packages: Iterable[PackageInfo]) -> bytes:
    """Serialize packages and their source fingerprint.

    Args:
        fingerprint: Content fingerprint of the source metadata
        packages: Package facts

    Returns:
        Cache blob
    """
    document = {
        'fingerprint': fingerprint,
        'packages': [pkg.to_dict() for pkg in packages],
    }
    payload = json.dumps(document, separators=(',', ':'), sort_keys=True).encode('utf-8')
    return CACHE_MAGIC + compress_bytes(payload)


def read_cache(blob: bytes, expected: Optional[str] = None) -> Tuple[str, List[PackageInfo]]:
    """Deserialize a cache blob.

    Args:
        blob: Bytes produced by write_cache()
        expected: If given, the fingerprint the blob must carry

    Returns:
        Tuple of (fingerprint, packages)

    Raises:
        ParseError: If the blob is not a pkgsolve cache or is corrupt
        IntegrityError: If the stored fingerprint differs from expected
    """
    if not blob.startswith(CACHE_MAGIC):
        raise ParseError("Not a pkgsolve repository cache")

    payload = decompress_bytes(blob[len(CACHE_MAGIC):])
    try:
        document = json.loads(payload.decode('utf-8'))
        fingerprint = document['fingerprint']
        records = document['packages']
    except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as e:
        raise ParseError(f"Corrupt repository cache: {e}") from e

    if expected is not None and fingerprint != expected:
        raise IntegrityError(
            f"Repository cache fingerprint mismatch: expected {expected}, found {fingerprint}",
            expected=expected,
            actual=fingerprint,
        )

    packages = [PackageInfo.from_dict(record) for record in records]
    return fingerprint, packages


def write_cache_file(path: Union[str, Path], fingerprint: str,
                     packages: Iterable[PackageInfo]) -> Path:
    """Write a cache blob to disk, atomically replacing any previous file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + '.tmp')
    tmp_path.write_bytes(write_cache(fingerprint, packages))
    tmp_path.replace(path)
    logger.debug("Wrote repository cache %s", path)
    return path


def read_cache_file(path: Union[str, Path],
                    expected: Optional[str] = None) -> Tuple[str, List[PackageInfo]]:
    """Read a cache blob from disk.

    Raises:
        NotFound: If the file does not exist
        ParseError: If the blob is corrupt
        IntegrityError: If the fingerprint does not match expected
    """
    return read_cache(read_file(path), expected=expected)
