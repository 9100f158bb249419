"""
Repository metadata parser for pkgsolve

Parses repodata.json files (optionally compressed) into PackageInfo facts.
Layout:

    {
      "info": {"subdir": "linux-64"},
      "packages": {"<filename>": {"name": ..., "version": ..., "build": ...,
                                  "depends": [...], "constrains": [...]}},
      "packages.conda": {...}
    }

Every load also computes a content fingerprint, used to key the native
cache so unchanged metadata is not parsed twice.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Union

from .compression import decompress_bytes, read_file
from .errors import ParseError
from .specs import PackageInfo

logger = logging.getLogger(__name__)

PACKAGE_SECTIONS = ('packages', 'packages.conda')


class RepodataParser(Enum):
    """Available metadata parsers."""
    JSON = "json"


@dataclass
class RepoMetadata:
    """Packages read from one repository source."""
    url: str
    fingerprint: str
    packages: List[PackageInfo] = field(default_factory=list)


def fingerprint_bytes(data: bytes) -> str:
    """Content fingerprint of raw (still compressed) metadata."""
    return hashlib.sha256(data).hexdigest()


def iter_packages(document: Dict[str, Any], url: str = "") -> Iterator[PackageInfo]:
    """Yield PackageInfo values from a decoded repodata document.

    Args:
        document: Decoded repodata.json content
        url: Channel url recorded on every package

    Yields:
        PackageInfo, "packages" section first, each section in filename order

    Raises:
        ParseError: On a malformed document or package record
    """
    if not isinstance(document, dict):
        raise ParseError("repodata root must be an object")

    info = document.get('info') or {}
    if not isinstance(info, dict):
        raise ParseError("repodata 'info' must be an object")
    subdir = str(info.get('subdir', ''))

    for section in PACKAGE_SECTIONS:
        records = document.get(section) or {}
        if not isinstance(records, dict):
            raise ParseError(f"repodata '{section}' must be an object")
        for filename in sorted(records):
            record = records[filename]
            yield PackageInfo.from_dict(
                record,
                filename=filename,
                channel=url,
                subdir=str(record.get('subdir', subdir)) if isinstance(record, dict) else subdir,
            )


def parse_repodata_bytes(data: bytes, url: str = "") -> RepoMetadata:
    """Parse raw repodata bytes.

    Args:
        data: File content, plain or compressed
        url: Channel url

    Returns:
        RepoMetadata with fingerprint and packages
    """
    fingerprint = fingerprint_bytes(data)
    raw = decompress_bytes(data)
    try:
        document = json.loads(raw.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ParseError(f"Invalid repodata JSON for {url or '<memory>'}: {e}") from e

    packages = list(iter_packages(document, url))
    return RepoMetadata(url=url, fingerprint=fingerprint, packages=packages)


def load_repodata(path: Union[str, Path], url: str = "",
                  parser: RepodataParser = RepodataParser.JSON) -> RepoMetadata:
    """Load repodata from a local file.

    Args:
        path: Path to repodata.json (or .json.zst / .json.gz / .json.bz2)
        url: Channel url the file was fetched from
        parser: Metadata parser selection

    Returns:
        RepoMetadata

    Raises:
        NotFound: If the file does not exist
        ParseError: If the content cannot be parsed
    """
    if parser is not RepodataParser.JSON:
        raise ParseError(f"Unsupported repodata parser: {parser}")

    data = read_file(path)
    metadata = parse_repodata_bytes(data, url=url or str(path))
    logger.debug("Parsed %d packages from %s (fingerprint %s)",
                 len(metadata.packages), path, metadata.fingerprint[:12])
    return metadata
