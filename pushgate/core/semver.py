"""Semantic versions and npm-style version ranges.

Release app versions are either an exact version (``1.2.3``) or a range
(``^1.2``, ``1.x``, ``>=1.0.0 <2.0.0``, ``1.0.0 - 1.4.0``, ``~1.2 || 2.x``).
Range semantics follow npm ``semver``, including its pre-release rule: a
pre-release version only satisfies a comparator set that explicitly names
a pre-release of the same ``major.minor.patch``. Build metadata is ignored
for comparison.
"""

from __future__ import annotations

import functools
import operator
import re

_NUM = r"0|[1-9]\d*"
_IDENT = r"[0-9A-Za-z-]+"
_PRERELEASE = rf"(?:-({_IDENT}(?:\.{_IDENT})*))"
_BUILD = rf"(?:\+({_IDENT}(?:\.{_IDENT})*))"

SEMVER_RE = re.compile(rf"^v?({_NUM})\.({_NUM})\.({_NUM}){_PRERELEASE}?{_BUILD}?$")

_XID = rf"{_NUM}|x|X|\*"
_PARTIAL_RE = re.compile(
    rf"^v?({_XID})(?:\.({_XID})(?:\.({_XID}){_PRERELEASE}?{_BUILD}?)?)?$"
)
_COMPARATOR_RE = re.compile(r"^(<=|>=|<|>|=)?(.*)$")
_HYPHEN_RE = re.compile(r"^(\S+)\s+-\s+(\S+)$")
# "> = 1.2", ">= 1.2", "~ 1.2" -> ">=1.2", "~1.2"
_OPERATOR_SPACE_RE = re.compile(r"(<=|>=|<|>|=|~>?|\^)\s+")


@functools.total_ordering
class Version:
    """A parsed ``major.minor.patch[-prerelease][+build]`` version."""

    __slots__ = ("major", "minor", "patch", "prerelease", "build")

    def __init__(
        self,
        major: int,
        minor: int,
        patch: int,
        prerelease: tuple = (),
        build: tuple = (),
    ) -> None:
        self.major = major
        self.minor = minor
        self.patch = patch
        self.prerelease = prerelease
        self.build = build

    @classmethod
    def parse(cls, text: str) -> Version:
        match = SEMVER_RE.match(str(text).strip())
        if not match:
            raise ValueError(f"Invalid version: {text!r}")
        major, minor, patch, pre, build = match.groups()
        prerelease = tuple(_parse_identifier(p) for p in pre.split(".")) if pre else ()
        if any(isinstance(p, str) and p.isdigit() for p in prerelease):
            # numeric identifiers must not carry leading zeros
            raise ValueError(f"Invalid version: {text!r}")
        return cls(
            int(major),
            int(minor),
            int(patch),
            prerelease,
            tuple(build.split(".")) if build else (),
        )

    @property
    def core(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def _key(self) -> tuple:
        return (self.core, _PrereleaseKey(self.prerelease))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: Version) -> bool:
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash((self.core, self.prerelease))

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(str(p) for p in self.prerelease)
        return text

    def __repr__(self) -> str:
        return f"Version({str(self)!r})"


def _parse_identifier(part: str) -> int | str:
    if part.isdigit() and (part == "0" or not part.startswith("0")):
        return int(part)
    return part


@functools.total_ordering
class _PrereleaseKey:
    """Orders pre-release tuples: a release sorts above all its pre-releases,
    numeric identifiers sort below alphanumeric ones."""

    __slots__ = ("parts",)

    def __init__(self, parts: tuple) -> None:
        self.parts = parts

    def __eq__(self, other: object) -> bool:
        return isinstance(other, _PrereleaseKey) and self.parts == other.parts

    def __lt__(self, other: _PrereleaseKey) -> bool:
        if not self.parts or not other.parts:
            return bool(self.parts) and not other.parts
        for a, b in zip(self.parts, other.parts):
            if a == b:
                continue
            a_num, b_num = isinstance(a, int), isinstance(b, int)
            if a_num and b_num:
                return a < b
            if a_num != b_num:
                return a_num
            return a < b
        return len(self.parts) < len(other.parts)


# ---------------------------------------------------------------------------
# Comparators and ranges
# ---------------------------------------------------------------------------


class Comparator:
    """``<op><version>``; ``version`` None is the match-anything comparator."""

    __slots__ = ("operator", "version")

    def __init__(self, operator: str, version: Version | None) -> None:
        self.operator = "" if operator == "=" else operator
        self.version = version

    @classmethod
    def parse(cls, text: str) -> Comparator:
        if text in ("", "*"):
            return cls("", None)
        match = _COMPARATOR_RE.match(text)
        return cls(match.group(1) or "", Version.parse(match.group(2)))

    def test(self, version: Version) -> bool:
        if self.version is None:
            return True
        op = self.operator
        if op == "":
            return version == self.version
        if op == "<":
            return version < self.version
        if op == "<=":
            return version <= self.version
        if op == ">":
            return version > self.version
        return version >= self.version

    def __str__(self) -> str:
        if self.version is None:
            return "*"
        return f"{self.operator}{self.version}"


class Range:
    """A union (``||``) of comparator sets; each set is an intersection."""

    def __init__(self, sets: list[list[Comparator]]) -> None:
        self.sets = sets

    @classmethod
    def parse(cls, text: str) -> Range:
        sets = []
        for part in str(text).split("||"):
            comparators = [Comparator.parse(c) for c in _expand_set(part.strip())]
            # drop match-anything comparators from non-trivial sets
            specific = [c for c in comparators if c.version is not None]
            sets.append(specific or [Comparator("", None)])
        return cls(sets)

    def test(self, version: Version) -> bool:
        return any(_test_set(s, version) for s in self.sets)

    def __str__(self) -> str:
        return "||".join(" ".join(str(c) for c in s) for s in self.sets)


def _test_set(comparators: list[Comparator], version: Version) -> bool:
    if not all(c.test(version) for c in comparators):
        return False
    if version.prerelease:
        for c in comparators:
            if c.version is not None and c.version.prerelease:
                if c.version.core == version.core:
                    return True
        return False
    return True


def _expand_set(text: str) -> list[str]:
    """Rewrite one comparator set into plain ``<op><version>`` comparators."""
    if not text:
        return ["*"]
    hyphen = _HYPHEN_RE.match(text)
    if hyphen:
        return _expand_hyphen(hyphen.group(1), hyphen.group(2))
    text = _OPERATOR_SPACE_RE.sub(lambda m: m.group(1), text)
    expanded: list[str] = []
    for token in text.split():
        if token.startswith("^"):
            expanded.extend(_expand_caret(token[1:]))
        elif token.startswith("~"):
            expanded.extend(_expand_tilde(token[2:] if token.startswith("~>") else token[1:]))
        else:
            expanded.extend(_expand_xrange(token))
    return expanded


def _partial(text: str) -> tuple:
    """Parse a possibly partial version into (major, minor, patch, pre).

    Wildcard or missing components are returned as None.
    """
    match = _PARTIAL_RE.match(text)
    if not match:
        raise ValueError(f"Invalid version range component: {text!r}")
    major, minor, patch, pre, _build = match.groups()

    def num(value: str | None) -> int | None:
        if value is None or value in ("x", "X", "*"):
            return None
        return int(value)

    m, n, p = num(major), num(minor), num(patch)
    if m is None:
        n = p = None
    elif n is None:
        p = None
    return m, n, p, (f"-{pre}" if pre and p is not None else "")


def _expand_tilde(text: str) -> list[str]:
    major, minor, patch, pre = _partial(text)
    if major is None:
        return ["*"]
    if minor is None:
        return [f">={major}.0.0", f"<{major + 1}.0.0-0"]
    if patch is None:
        return [f">={major}.{minor}.0", f"<{major}.{minor + 1}.0-0"]
    return [f">={major}.{minor}.{patch}{pre}", f"<{major}.{minor + 1}.0-0"]


def _expand_caret(text: str) -> list[str]:
    major, minor, patch, pre = _partial(text)
    if major is None:
        return ["*"]
    if minor is None:
        return [f">={major}.0.0", f"<{major + 1}.0.0-0"]
    if patch is None:
        if major == 0:
            return [f">=0.{minor}.0", f"<0.{minor + 1}.0-0"]
        return [f">={major}.{minor}.0", f"<{major + 1}.0.0-0"]
    lower = f">={major}.{minor}.{patch}{pre}"
    if major == 0:
        if minor == 0:
            return [lower, f"<0.0.{patch + 1}-0"]
        return [lower, f"<0.{minor + 1}.0-0"]
    return [lower, f"<{major + 1}.0.0-0"]


def _expand_xrange(token: str) -> list[str]:
    match = _COMPARATOR_RE.match(token)
    op, rest = match.group(1) or "", match.group(2)
    major, minor, patch, pre = _partial(rest)
    any_x = patch is None
    if op == "=" and any_x:
        op = ""

    if major is None:
        # "<*" and ">*" admit nothing
        return ["<0.0.0-0"] if op in ("<", ">") else ["*"]

    if op and any_x:
        minor_x = minor is None
        minor = minor or 0
        patch = 0
        if op == ">":
            op = ">="
            if minor_x:
                major, minor = major + 1, 0
            else:
                minor += 1
        elif op == "<=":
            op = "<"
            if minor_x:
                major += 1
            else:
                minor += 1
        suffix = "-0" if op == "<" else ""
        return [f"{op}{major}.{minor}.{patch}{suffix}"]

    if minor is None:
        return [f">={major}.0.0", f"<{major + 1}.0.0-0"]
    if patch is None:
        return [f">={major}.{minor}.0", f"<{major}.{minor + 1}.0-0"]
    return [f"{op}{major}.{minor}.{patch}{pre}"]


def _expand_hyphen(low: str, high: str) -> list[str]:
    l_major, l_minor, l_patch, l_pre = _partial(low)
    h_major, h_minor, h_patch, h_pre = _partial(high)
    result: list[str] = []

    if l_major is not None:
        result.append(f">={l_major}.{l_minor or 0}.{l_patch or 0}{l_pre}")

    if h_major is None:
        pass
    elif h_minor is None:
        result.append(f"<{h_major + 1}.0.0-0")
    elif h_patch is None:
        result.append(f"<{h_major}.{h_minor + 1}.0-0")
    else:
        result.append(f"<={h_major}.{h_minor}.{h_patch}{h_pre}")
    return result or ["*"]


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def parse_version(text: str) -> Version | None:
    try:
        return Version.parse(text)
    except (TypeError, ValueError):
        return None


def parse_range(text: str) -> Range | None:
    try:
        return Range.parse(text)
    except (TypeError, ValueError):
        return None


def valid(text: str | None) -> str | None:
    """Normalized form of an exact version, or None if ``text`` is not one."""
    if text is None:
        return None
    version = parse_version(text)
    return str(version) if version else None


def valid_range(text: str | None) -> str | None:
    """Normalized comparator string of a range, or None if invalid."""
    if text is None:
        return None
    parsed = parse_range(text)
    return str(parsed) if parsed else None


def satisfies(version: str, range_text: str) -> bool:
    parsed_version = parse_version(version)
    parsed_range = parse_range(range_text)
    if parsed_version is None or parsed_range is None:
        return False
    return parsed_range.test(parsed_version)


def ltr(version: str, range_text: str) -> bool:
    """True if ``version`` is lower than every version the range admits."""
    return _outside(version, range_text, "<")


def gtr(version: str, range_text: str) -> bool:
    """True if ``version`` is higher than every version the range admits."""
    return _outside(version, range_text, ">")


def _outside(version_text: str, range_text: str, hilo: str) -> bool:
    version = parse_version(version_text)
    parsed = parse_range(range_text)
    if version is None or parsed is None:
        return False
    if parsed.test(version):
        return False

    if hilo == ">":
        beyond, before_or_at, before = operator.gt, operator.le, operator.lt
        comp, ecomp = ">", ">="
    else:
        beyond, before_or_at, before = operator.lt, operator.ge, operator.gt
        comp, ecomp = "<", "<="

    floor = Version(0, 0, 0)
    for comparators in parsed.sets:
        high = low = None
        for c in comparators:
            if c.version is None:
                c = Comparator(">=", floor)
            if high is None:
                high = low = c
                continue
            if beyond(c.version, high.version):
                high = c
            elif before(c.version, low.version):
                low = c
        # the edge comparator points away from the version: not outside
        if high.operator in (comp, ecomp):
            return False
        if (not low.operator or low.operator == comp) and before_or_at(
            version, low.version
        ):
            return False
        if low.operator == ecomp and before(version, low.version):
            return False
    return True


def is_matching_app_version(base_app_version: str, new_app_version: str) -> bool:
    """Whether two release app versions target compatible binaries.

    An exact version matches a range it satisfies; two ranges match only
    when they normalize to the same comparator string.
    """
    if valid(base_app_version) is None:
        if valid(new_app_version) is None:
            return valid_range(new_app_version) == valid_range(base_app_version)
        return satisfies(new_app_version, base_app_version)
    return satisfies(base_app_version, new_app_version)
