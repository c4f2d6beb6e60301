import pytest

import stubsmith


def test_parse_version_returns_release_segments() -> None:
    version = stubsmith.parse_version("0.5.10587")

    assert version.release == (0, 5, 10587)
    assert version.pre is None
    assert str(version) == "0.5.10587"


def test_parse_version_accepts_parsed_version_unchanged() -> None:
    version = stubsmith.parse_version("1.2.3")

    assert stubsmith.parse_version(version) is version


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1.2.0rc1", ("rc", 1)),
        ("1.2.0b2", ("b", 2)),
        ("1.2.0a", ("a", 0)),
        ("1.2.0-rc3", ("rc", 3)),
    ],
)
def test_parse_version_reads_pre_release_suffix(raw: str, expected: tuple[str, int]) -> None:
    assert stubsmith.parse_version(raw).pre == expected


@pytest.mark.parametrize("value", ["", "foo", "0.5.x", "1..2", "1.2.3-beta"])
def test_parse_version_invalid_raises_unsupported_version(value: str) -> None:
    with pytest.raises(stubsmith.UnsupportedVersionError) as exc_info:
        stubsmith.parse_version(value)

    assert exc_info.value.code == "UNSUPPORTED_VERSION"
    assert exc_info.value.value == value
    assert isinstance(exc_info.value, stubsmith.ConfigError)


def test_parse_version_rejects_non_string_input() -> None:
    with pytest.raises(stubsmith.UnsupportedVersionError) as exc_info:
        stubsmith.parse_version(10587)  # type: ignore[arg-type]

    assert exc_info.value.value == 10587


def test_checker_version_ordering_is_numeric_per_segment() -> None:
    older = stubsmith.parse_version("0.5.10587")
    newer = stubsmith.parse_version("0.5.10588")

    assert older < newer
    assert older <= newer
    assert newer > older
    assert not (newer <= older)
    assert stubsmith.parse_version("0.5.9999") < stubsmith.parse_version("0.5.10000")


def test_checker_version_trailing_zeros_are_insignificant() -> None:
    assert stubsmith.parse_version("0.5") == stubsmith.parse_version("0.5.0")
    assert hash(stubsmith.parse_version("0.5")) == hash(stubsmith.parse_version("0.5.0"))
    assert stubsmith.parse_version("0.5") < stubsmith.parse_version("0.5.1")


def test_checker_version_pre_release_sorts_before_final() -> None:
    ordered = [
        stubsmith.parse_version(raw)
        for raw in ["1.0.0a1", "1.0.0b1", "1.0.0rc1", "1.0.0rc2", "1.0.0", "1.0.1a1"]
    ]

    assert ordered == sorted(ordered)
    assert sorted(reversed(ordered)) == ordered
