"""Parsing and comparison of k0s versions such as ``v1.31.0+k0s.0``."""

from __future__ import annotations

import functools
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from capik0s.model import Machine

DEFAULT_SUFFIX = "k0s.0"

_VERSION_RE = re.compile(
    r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?"
    r"(?:-([0-9A-Za-z.-]+))?"
    r"(?:\+([0-9A-Za-z.-]+))?$"
)
_K0S_BUILD_RE = re.compile(r"^k0s\.(\d+)$")


class VersionError(ValueError):
    """A version string could not be parsed."""


def _compare_identifiers(left: str, right: str) -> int:
    left_num, right_num = left.isdigit(), right.isdigit()
    if left_num and right_num:
        a, b = int(left), int(right)
        return (a > b) - (a < b)
    if left_num:
        return -1
    if right_num:
        return 1
    return (left > right) - (left < right)


def _compare_prerelease(left: str, right: str) -> int:
    if left == right:
        return 0
    if not left:
        return 1
    if not right:
        return -1
    for a, b in zip(left.split("."), right.split(".")):
        result = _compare_identifiers(a, b)
        if result:
            return result
    la, lb = len(left.split(".")), len(right.split("."))
    return (la > lb) - (la < lb)


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class K0sVersion:
    """A semantic version with an optional k0s build suffix."""

    major: int
    minor: int = 0
    patch: int = 0
    prerelease: str = ""
    metadata: str = ""

    @property
    def k0s_build(self) -> int:
        """The k0s build number, or -1 when the version carries none."""
        match = _K0S_BUILD_RE.match(self.metadata)
        return int(match.group(1)) if match else -1

    def compare(self, other: K0sVersion) -> int:
        """Return -1, 0 or 1 as this version sorts before, with or after *other*."""
        mine = (self.major, self.minor, self.patch)
        theirs = (other.major, other.minor, other.patch)
        if mine != theirs:
            return -1 if mine < theirs else 1
        result = _compare_prerelease(self.prerelease, other.prerelease)
        if result:
            return result
        a, b = self.k0s_build, other.k0s_build
        return (a > b) - (a < b)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, K0sVersion):
            return NotImplemented
        return self.compare(other) == 0

    def __lt__(self, other: K0sVersion) -> bool:
        if not isinstance(other, K0sVersion):
            return NotImplemented
        return self.compare(other) < 0

    def __hash__(self) -> int:
        return hash((self.major, self.minor, self.patch, self.prerelease, self.k0s_build))

    def __str__(self) -> str:
        text = f"v{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        if self.metadata:
            text += f"+{self.metadata}"
        return text


def parse_version(text: str) -> K0sVersion:
    """Parse a version string, raising VersionError when it is malformed."""
    match = _VERSION_RE.match(text.strip()) if text else None
    if match is None:
        raise VersionError(f"malformed version: {text!r}")
    major, minor, patch, pre, meta = match.groups()
    return K0sVersion(
        major=int(major),
        minor=int(minor or 0),
        patch=int(patch or 0),
        prerelease=pre or "",
        metadata=meta or "",
    )


def version_suffix(version: str) -> str:
    """Return the build suffix after ``+``, or an empty string."""
    if "+" in version:
        return version.split("+")[1]
    return ""


def version_matches(machine: Machine, ver: str) -> bool:
    """Check whether the machine runs *ver*, allowing either side to lack the suffix."""
    if not machine.version:
        return False
    if machine.version == ver:
        return True

    machine_version = machine.version
    kcp_version = ver

    kcp_suffix = version_suffix(kcp_version)
    if not kcp_suffix:
        kcp_suffix = DEFAULT_SUFFIX
        kcp_version = f"{kcp_version}+{kcp_suffix}"

    if not version_suffix(machine_version):
        machine_version = f"{machine_version}+{kcp_suffix}"

    return parse_version(kcp_version) == parse_version(machine_version)


def _machines(machines: Mapping[str, Machine] | Iterable[Machine] | None) -> list[Machine]:
    if machines is None:
        return []
    if isinstance(machines, Mapping):
        return list(machines.values())
    return list(machines)


def min_version(machines: Mapping[str, Machine] | Iterable[Machine] | None) -> str:
    """Return the lowest version among the machines, or "" when there are none."""
    items = _machines(machines)
    if not items:
        return ""
    versions = []
    for machine in items:
        if machine.version is None:
            raise VersionError(f"machine {machine.name!r} has no version")
        try:
            versions.append(parse_version(machine.version))
        except VersionError as exc:
            raise VersionError(f"failed to parse version {machine.version}: {exc}") from exc
    return str(min(versions))