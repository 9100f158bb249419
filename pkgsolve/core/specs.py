"""
Match specifications and package facts.

A MatchSpec selects packages by name, an optional version expression and an
optional build string pattern:

    "python"                    -> any python
    "python>=3.9"               -> python newer than or equal to 3.9
    "python 3.9"                -> python exactly 3.9 (bare version means ==)
    "python ==3.9 h12_0"        -> exact version and build
    "python >=3.9,<3.10.0a0"    -> both relations hold (',' binds tighter)
    "libblas 1.0|3.9"           -> either alternative holds
    "libblas 3.9.*"             -> any 3.9 release, i.e. >=3.9,<3.10
    "pyarrow ~=4.1"             -> compatible release, i.e. >=4.1,<5
"""

import fnmatch
import functools
import itertools
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .errors import ParseError

# name, optional relation + version expression, optional build
SPEC_REGEX = re.compile(
    r'^\s*([A-Za-z0-9_][\w.+-]*)'
    r'(?:\s*(==|>=|<=|!=|~=|=|>|<)\s*(\S+)|\s+(\S+))?'
    r'(?:\s+([^\s,|]+))?\s*$'
)

# One relation of a version expression
CLAUSE_REGEX = re.compile(r'^(==|>=|<=|!=|~=|=|>|<)?([A-Za-z0-9_.+!*-]+)$')

OPERATORS = ('==', '>=', '<=', '!=', '>', '<')

VERSION_SPLIT = re.compile(r'[._+-]')

Clause = Tuple[str, str]
# Disjunction of conjunctions of (op, version) relations
Alternatives = Tuple[Tuple[Clause, ...], ...]


def version_key(version: str) -> Tuple[Tuple[int, Any], ...]:
    """Sort key ordering "1.9" before "1.10".

    Numeric components compare as integers and sort after alphabetic ones
    at the same position, so "1.0a" < "1.0.1".
    """
    key = []
    for part in VERSION_SPLIT.split(version):
        if part.isdigit():
            key.append((1, int(part)))
        else:
            key.append((0, part))
    return tuple(key)


def _next_release(prefix: str, text: str) -> str:
    """"3.9" -> "3.10": the first version past every X.Y.* release."""
    parts = prefix.split('.')
    if not parts[-1].isdigit():
        raise ParseError(f"Cannot expand version glob: {text!r}")
    parts[-1] = str(int(parts[-1]) + 1)
    return '.'.join(parts)


def _expand_clause(clause: str, text: str) -> Alternatives:
    match = CLAUSE_REGEX.match(clause)
    if not match:
        raise ParseError(f"Invalid version expression: {text!r}")
    op, version = match.groups()
    op = '==' if op in (None, '=') else op

    if version == '*':
        return ((),)

    if op == '~=':
        if '*' in version or '.' not in version:
            raise ParseError(f"Invalid compatible release: {text!r}")
        prefix = version.rsplit('.', 1)[0]
        return ((('>=', version), ('<', _next_release(prefix, text))),)

    if version.endswith('*'):
        prefix = version.rstrip('*').rstrip('.')
        if not prefix or '*' in prefix:
            raise ParseError(f"Unsupported version glob: {text!r}")
        upper = _next_release(prefix, text)
        if op == '==':
            return ((('>=', prefix), ('<', upper)),)
        if op == '!=':
            return ((('<', prefix),), (('>=', upper),))
        return (((op, prefix),),)

    if '*' in version:
        raise ParseError(f"Unsupported version glob: {text!r}")
    return (((op, version),),)


@functools.lru_cache(maxsize=4096)
def parse_version_expression(text: str) -> Alternatives:
    """Expand a version expression into alternatives of relations.

    An empty alternative matches every version.

    Raises:
        ParseError: If the expression is malformed
    """
    alternatives = []
    for alternative in text.split('|'):
        if not alternative:
            raise ParseError(f"Invalid version expression: {text!r}")
        expanded = [_expand_clause(clause, text) for clause in alternative.split(',')]
        for combination in itertools.product(*expanded):
            alternatives.append(tuple(itertools.chain.from_iterable(combination)))
    return tuple(alternatives)


@dataclass(frozen=True)
class MatchSpec:
    """A parsed package selector.

    Single relations are kept as (op, version). Anything richer (ranges,
    alternatives, globs) is kept verbatim in `version` with an empty `op`.
    """
    name: str
    op: str = ""
    version: str = ""
    build: str = ""

    @classmethod
    def parse(cls, spec: str) -> "MatchSpec":
        """Parse a spec string.

        Args:
            spec: String like "libfoo", "libfoo>=1.0", "libfoo 1.0 h1_0"
                or "libfoo >=1.0,<2|3.*"

        Returns:
            MatchSpec

        Raises:
            ParseError: If the string is not a valid spec
        """
        if isinstance(spec, MatchSpec):
            return spec
        match = SPEC_REGEX.match(spec or "")
        if not match:
            raise ParseError(f"Invalid match spec: {spec!r}")

        name, op, version, bare_version, build = match.groups()
        expression = f"{op or ''}{version or bare_version or ''}"
        build = "" if build in (None, '*') else build
        if not expression:
            return cls(name=name, build=build)

        alternatives = parse_version_expression(expression)
        if any(not alternative for alternative in alternatives):
            if op and expression == op + '*':
                raise ParseError(f"Invalid match spec: {spec!r}")
            return cls(name=name, build=build)

        clause = CLAUSE_REGEX.match(expression)
        if clause and '*' not in expression and clause.group(1) != '~=':
            single_op = '==' if clause.group(1) in (None, '=') else clause.group(1)
            return cls(name=name, op=single_op, version=clause.group(2), build=build)
        return cls(name=name, version=expression, build=build)

    @property
    def alternatives(self) -> Alternatives:
        """Version relations as alternatives of conjunctions."""
        if not self.version:
            return ((),)
        if self.op:
            return (((self.op, self.version),),)
        return parse_version_expression(self.version)

    @property
    def is_simple(self) -> bool:
        """True when the spec only selects by name."""
        return not self.version and not self.build

    def matches_build(self, build_string: str) -> bool:
        if not self.build:
            return True
        return fnmatch.fnmatchcase(build_string, self.build)

    def __str__(self) -> str:
        text = self.name
        if self.version:
            text += f"{self.op}{self.version}" if self.op else f" {self.version}"
        if self.build:
            text += f" {self.build}"
        return text


@dataclass(frozen=True)
class PackageInfo:
    """An immutable package fact, as found in repository metadata."""
    name: str
    version: str = ""
    build_string: str = ""
    build_number: int = 0
    depends: Tuple[str, ...] = field(default_factory=tuple)
    constrains: Tuple[str, ...] = field(default_factory=tuple)
    channel: str = ""
    subdir: str = ""
    filename: str = ""

    @property
    def evr(self) -> str:
        """version-build, as shown in transactions."""
        if self.build_string:
            return f"{self.version}-{self.build_string}"
        return self.version

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'version': self.version,
            'build': self.build_string,
            'build_number': self.build_number,
            'depends': list(self.depends),
            'constrains': list(self.constrains),
            'channel': self.channel,
            'subdir': self.subdir,
            'fn': self.filename,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], filename: str = "",
                  channel: Optional[str] = None, subdir: Optional[str] = None) -> "PackageInfo":
        """Build a PackageInfo from a repodata style record.

        Raises:
            ParseError: If the record has no name or carries fields of the wrong type
        """
        if not isinstance(data, dict) or not data.get('name'):
            raise ParseError(f"Package record without a name: {filename or data!r}")
        depends = data.get('depends', [])
        constrains = data.get('constrains', [])
        if not isinstance(depends, list) or not isinstance(constrains, list):
            raise ParseError(f"Malformed dependency list in {filename or data['name']}")
        try:
            build_number = int(data.get('build_number', 0) or 0)
        except (TypeError, ValueError):
            raise ParseError(f"Invalid build_number in {filename or data['name']}")

        return cls(
            name=str(data['name']),
            version=str(data.get('version', '')),
            build_string=str(data.get('build', '')),
            build_number=build_number,
            depends=tuple(str(d) for d in depends),
            constrains=tuple(str(c) for c in constrains),
            channel=channel if channel is not None else str(data.get('channel', '')),
            subdir=subdir if subdir is not None else str(data.get('subdir', '')),
            filename=filename or str(data.get('fn', '')),
        )

    def __str__(self) -> str:
        if self.build_string:
            return f"{self.name}-{self.version}-{self.build_string}"
        return f"{self.name}-{self.version}"
