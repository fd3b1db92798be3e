import pytest

from capik0s.model import Machine
from capik0s.versions import (
    K0sVersion,
    VersionError,
    min_version,
    parse_version,
    version_matches,
    version_suffix,
)


@pytest.mark.parametrize(
    "machine_version, ver, want",
    [
        ("v1.31.0", "v1.31.0", True),
        ("v1.31.0", "v1.30.0", False),
        ("v1.31.0", "v1.31.0+k0s.0", True),
        ("v1.31.0+k0s.0", "v1.31.0", True),
        ("v1.31.0+k0s.0", "v1.31.0+k0s.0", True),
        (None, "v1.31.0+k0s.0", False),
        ("", "v1.31.0+k0s.0", False),
    ],
)
def test_version_matches(machine_version, ver, want):
    assert version_matches(Machine(version=machine_version), ver) is want


def test_version_matches_different_build():
    assert version_matches(Machine(version="v1.31.0+k0s.1"), "v1.31.0+k0s.0") is False


def test_version_matches_invalid_raises():
    with pytest.raises(VersionError):
        version_matches(Machine(version="garbage"), "v1.31.0")


def test_version_suffix():
    assert version_suffix("v1.31.0+k0s.0") == "k0s.0"
    assert version_suffix("v1.31.0") == ""


def test_parse_version_fields():
    v = parse_version("v1.27.9+k0s.0")
    assert (v.major, v.minor, v.patch) == (1, 27, 9)
    assert v.metadata == "k0s.0"
    assert v.k0s_build == 0
    assert str(v) == "v1.27.9+k0s.0"


def test_parse_version_round_trip():
    for text in ["v1.31.0", "v1.27.2-k0s.0", "v1.28.7+k0s.0"]:
        assert str(parse_version(text)) == text


def test_parse_version_errors():
    for bad in ["", "abc", "v1.x.0", "1.2.3+"]:
        with pytest.raises(VersionError):
            parse_version(bad)


def test_ordering():
    assert parse_version("v1.30.0") < parse_version("v1.31.0")
    assert parse_version("v1.31.0+k0s.0") < parse_version("v1.31.0+k0s.1")
    assert parse_version("v1.31.0-rc.1") < parse_version("v1.31.0")
    assert sorted([parse_version("v1.31.0"), parse_version("v1.9.0")])[0] == K0sVersion(1, 9, 0)


def test_min_version_empty():
    assert min_version({}) == ""
    assert min_version(None) == ""


def test_min_version_from_mapping():
    machines = {
        "machine1": Machine(name="machine1", version="v1.31.0"),
        "machine2": Machine(name="machine2", version="v1.30.0"),
    }
    assert min_version(machines) == "v1.30.0"


def test_min_version_keeps_suffix():
    machines = [Machine(version="v1.31.0+k0s.0"), Machine(version="v1.30.0+k0s.0")]
    assert min_version(machines) == "v1.30.0+k0s.0"


def test_min_version_invalid():
    with pytest.raises(VersionError, match="failed to parse version"):
        min_version([Machine(version="nope")])