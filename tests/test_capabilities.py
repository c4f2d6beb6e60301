from pathlib import Path

import pytest

import stubsmith

Capability = stubsmith.Capability

ALL_CAPABILITIES = frozenset(Capability)


@pytest.mark.parametrize(
    ("version", "expected"),
    [
        ("0.0.1", frozenset()),
        ("0.5.10585", frozenset()),
        ("0.5.10587", frozenset({Capability.GENERIC_WEAK_COLLECTIONS})),
        ("0.5.10588", frozenset({Capability.GENERIC_WEAK_COLLECTIONS})),
        ("0.5.10780", frozenset({Capability.GENERIC_WEAK_COLLECTIONS})),
        (
            "0.5.10800",
            frozenset(
                {Capability.GENERIC_WEAK_COLLECTIONS, Capability.CLASS_TYPE_IN_UNION}
            ),
        ),
        ("0.5.10820", ALL_CAPABILITIES),
        ("0.5.10860", ALL_CAPABILITIES),
        ("99.0", ALL_CAPABILITIES),
    ],
)
def test_capabilities_for_default_cutoffs(
    version: str, expected: frozenset[stubsmith.Capability]
) -> None:
    assert stubsmith.capabilities_for(version) == expected


def test_capabilities_for_is_monotonic_in_version_order() -> None:
    versions = sorted(
        stubsmith.parse_version(raw)
        for raw in [
            "0.1",
            "0.5.10539",
            "0.5.10554",
            "0.5.10586",
            "0.5.10587",
            "0.5.10781",
            "0.5.10782",
            "0.5.10819",
            "0.5.10820",
            "0.6.0rc1",
            "1.0",
        ]
    )

    previous: frozenset[stubsmith.Capability] = frozenset()
    for version in versions:
        current = stubsmith.capabilities_for(version)
        assert previous <= current, f"capability lost at {version}"
        previous = current


def test_capabilities_for_accepts_parsed_and_raw_versions_equally() -> None:
    raw = "0.5.10800"

    assert stubsmith.capabilities_for(raw) == stubsmith.capabilities_for(
        stubsmith.parse_version(raw)
    )


def test_capabilities_for_invalid_version_raises() -> None:
    with pytest.raises(stubsmith.UnsupportedVersionError):
        stubsmith.capabilities_for("latest")


def test_capability_rule_revoked_at_is_exclusive_upper_bound() -> None:
    rule = stubsmith.CapabilityRule(
        Capability.GENERIC_WEAK_COLLECTIONS,
        stubsmith.parse_version("1.0"),
        stubsmith.parse_version("2.0"),
    )

    assert not rule.applies_to(stubsmith.parse_version("0.9"))
    assert rule.applies_to(stubsmith.parse_version("1.0"))
    assert rule.applies_to(stubsmith.parse_version("1.9.9"))
    assert not rule.applies_to(stubsmith.parse_version("2.0"))


def test_registry_with_rules_replaces_only_overridden_capabilities() -> None:
    override = stubsmith.CapabilityRule(
        Capability.CLASS_TYPE_IN_UNION, stubsmith.parse_version("0.1")
    )

    registry = stubsmith.DEFAULT_REGISTRY.with_rules((override,))

    assert len(registry.rules) == len(stubsmith.DEFAULT_CAPABILITY_RULES)
    assert registry.capabilities_for(stubsmith.parse_version("0.2")) == frozenset(
        {Capability.CLASS_TYPE_IN_UNION}
    )
    assert stubsmith.DEFAULT_REGISTRY.capabilities_for(
        stubsmith.parse_version("0.2")
    ) == frozenset()


def test_parse_capability_table_accepts_string_and_table_entries() -> None:
    rules = stubsmith.parse_capability_table(
        {
            "generic_weak_collections": "0.6.0",
            "class_type_in_union": {"introduced": "0.7.0", "revoked": "0.9.0"},
        }
    )

    assert rules == (
        stubsmith.CapabilityRule(
            Capability.GENERIC_WEAK_COLLECTIONS, stubsmith.parse_version("0.6.0")
        ),
        stubsmith.CapabilityRule(
            Capability.CLASS_TYPE_IN_UNION,
            stubsmith.parse_version("0.7.0"),
            stubsmith.parse_version("0.9.0"),
        ),
    )


@pytest.mark.parametrize(
    "table",
    [
        {"not_a_capability": "1.0"},
        {"class_type_in_union": 10},
        {"class_type_in_union": {"revoked": "1.0"}},
        {"class_type_in_union": {"introduced": "1.0", "revoked": 2}},
        ["generic_weak_collections"],
    ],
)
def test_parse_capability_table_rejects_malformed_entries(table: object) -> None:
    with pytest.raises(stubsmith.ConfigError) as exc_info:
        stubsmith.parse_capability_table(table)

    assert exc_info.value.code == "INVALID_CAPABILITIES_FILE"


def test_load_capability_registry_overrides_defaults_from_toml(tmp_path: Path) -> None:
    path = tmp_path / "capabilities.toml"
    path.write_text(
        "[capabilities]\n"
        'qualified_class_name_in_union = { introduced = "0.5.10900" }\n',
        encoding="utf-8",
    )

    registry = stubsmith.load_capability_registry(path)

    at_10860 = registry.capabilities_for(stubsmith.parse_version("0.5.10860"))
    assert Capability.QUALIFIED_CLASS_NAME_IN_UNION not in at_10860
    assert Capability.CLASS_TYPE_IN_UNION in at_10860
    assert registry.capabilities_for(stubsmith.parse_version("0.5.10900")) == (
        ALL_CAPABILITIES
    )


def test_load_capability_registry_without_section_keeps_defaults(tmp_path: Path) -> None:
    path = tmp_path / "capabilities.toml"
    path.write_text("# nothing to override\n", encoding="utf-8")

    registry = stubsmith.load_capability_registry(path)

    assert registry == stubsmith.DEFAULT_REGISTRY


def test_load_capability_registry_reports_toml_syntax_errors(tmp_path: Path) -> None:
    path = tmp_path / "capabilities.toml"
    path.write_text("[capabilities\n", encoding="utf-8")

    with pytest.raises(stubsmith.ConfigError) as exc_info:
        stubsmith.load_capability_registry(path)

    assert exc_info.value.code == "INVALID_CAPABILITIES_FILE"


def test_format_capabilities_table_lists_rules_in_cutoff_order() -> None:
    table = stubsmith.format_capabilities_table(
        stubsmith.DEFAULT_REGISTRY, stubsmith.parse_version("0.5.10800")
    )
    lines = table.splitlines()

    assert lines[0] == "Capabilities:"
    assert lines[2].split() == ["generic_weak_collections", "0.5.10587", "-", "yes"]
    assert lines[3].split() == ["class_type_in_union", "0.5.10782", "-", "yes"]
    assert lines[4].split() == ["qualified_class_name_in_union", "0.5.10820", "-", "no"]
    assert lines[-1] == "  Checker: 0.5.10800 (2 of 3 rules active)"
    assert table.endswith("\n")


def test_format_capabilities_table_without_version_omits_availability() -> None:
    table = stubsmith.format_capabilities_table(stubsmith.DEFAULT_REGISTRY)

    assert "yes" not in table
    assert "Checker:" not in table
