"""Tests for the repodata parser"""

import json

import pytest

from pkgsolve.core.compression import compress_bytes
from pkgsolve.core.errors import NotFound, ParseError
from pkgsolve.core.repodata import iter_packages, load_repodata, parse_repodata_bytes

REPODATA = {
    "info": {"subdir": "linux-64"},
    "packages": {
        "b-2.0-h1.tar.bz2": {"name": "b", "version": "2.0", "build": "h1"},
        "a-1.0-h0.tar.bz2": {"name": "a", "version": "1.0", "build": "h0",
                             "depends": ["b>=2.0"], "constrains": ["c<3"]},
    },
    "packages.conda": {
        "c-1.0-h0.conda": {"name": "c", "version": "1.0", "build": "h0", "subdir": "noarch"},
    },
}


class TestIterPackages:

    def test_order_and_fields(self):
        packages = list(iter_packages(REPODATA, url="https://example.org/main"))
        assert [p.name for p in packages] == ["a", "b", "c"]
        a = packages[0]
        assert a.depends == ("b>=2.0",)
        assert a.constrains == ("c<3",)
        assert a.filename == "a-1.0-h0.tar.bz2"
        assert a.channel == "https://example.org/main"
        assert a.subdir == "linux-64"
        assert packages[2].subdir == "noarch"

    def test_root_must_be_object(self):
        with pytest.raises(ParseError):
            list(iter_packages([]))

    def test_section_must_be_object(self):
        with pytest.raises(ParseError):
            list(iter_packages({"packages": "a.tar.bz2"}))

    def test_record_without_name(self):
        with pytest.raises(ParseError):
            list(iter_packages({"packages": {"x.tar.bz2": {"version": "1"}}}))


class TestLoadRepodata:

    def test_plain_file(self, tmp_path):
        path = tmp_path / "repodata.json"
        path.write_text(json.dumps(REPODATA))
        metadata = load_repodata(path, url="main")
        assert metadata.url == "main"
        assert len(metadata.packages) == 3
        assert len(metadata.fingerprint) == 64

    def test_compressed_file(self, tmp_path):
        path = tmp_path / "repodata.json.zst"
        path.write_bytes(compress_bytes(json.dumps(REPODATA).encode()))
        assert len(load_repodata(path).packages) == 3

    def test_fingerprint_tracks_content(self):
        raw = json.dumps(REPODATA).encode()
        same = parse_repodata_bytes(raw)
        other = parse_repodata_bytes(raw + b" ")
        assert same.fingerprint == parse_repodata_bytes(raw).fingerprint
        assert same.fingerprint != other.fingerprint

    def test_invalid_json(self):
        with pytest.raises(ParseError):
            parse_repodata_bytes(b"{not json")

    def test_missing_file(self, tmp_path):
        with pytest.raises(NotFound):
            load_repodata(tmp_path / "nope.json")
