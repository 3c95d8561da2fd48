"""Tests for string table substitution and reference expansion."""

from conftest import SAMPLE_INF

from driverpack.inf.parser import get_section, parse_inf
from driverpack.inf.resolver import (
    build_strings_table,
    expand_file_list_directive,
    resolve_references,
    resolve_strings,
    substitute,
)


class TestSubstitute:
    """Tests for substitute function."""

    def test_known_token(self):
        assert substitute("%Model1%", {"model1": "LaserJet Pro"}) == ("LaserJet Pro", [])

    def test_tokens_are_case_insensitive(self):
        assert substitute("%MODEL1%", {"model1": "LaserJet Pro"})[0] == "LaserJet Pro"

    def test_unknown_token_left_in_place(self):
        value, unresolved = substitute("%Missing% driver", {})
        assert value == "%Missing% driver"
        assert unresolved == ["Missing"]

    def test_double_percent_is_literal(self):
        assert substitute("100%% black", {}) == ("100% black", [])

    def test_multiple_tokens(self):
        table = {"vendor": "HP", "model": "LaserJet"}
        assert substitute("%Vendor% %Model%", table)[0] == "HP LaserJet"

    def test_no_recursive_expansion(self):
        assert substitute("%A%", {"a": "%B%", "b": "x"})[0] == "%B%"


class TestResolveStrings:
    """Tests for resolve_strings function."""

    def test_every_occurrence_resolved(self):
        parsed = parse_inf(
            '[Models]\n%Model1% = Install, HWID1\n[Other]\nName = %Model1%\n'
            '[Strings]\nModel1 = "LaserJet Pro"\n'
        )
        resolve_strings(parsed)
        models = get_section(parsed, "Models")
        other = get_section(parsed, "Other")
        assert models is not None and other is not None
        assert models.entries[0].key == "LaserJet Pro"
        assert models.entries[0].raw_key == "%Model1%"
        assert other.entries[0].value == "LaserJet Pro"

    def test_unresolved_tokens_become_notices(self):
        parsed = parse_inf("[Version]\nProvider = %Missing%\n[Strings]\n")
        notices = resolve_strings(parsed)
        assert len(notices) == 1
        assert notices[0].text == "%Missing%"
        assert notices[0].line_number == 2
        assert notices[0] in parsed.notices
        assert get_section(parsed, "Version").entries[0].value == "%Missing%"

    def test_strings_keys_not_substituted(self):
        parsed = parse_inf("[Strings]\nA = x\n%A% = y\n")
        resolve_strings(parsed)
        assert [e.key for e in parsed.sections[0].entries] == ["A", "%A%"]

    def test_first_definition_wins(self):
        parsed = parse_inf("[Strings]\nA = first\n[Strings]\nA = second\n")
        assert build_strings_table(parsed) == {"a": "first"}

    def test_sample_descriptor(self):
        parsed = parse_inf(SAMPLE_INF)
        assert resolve_strings(parsed) == []
        version = get_section(parsed, "Version")
        assert version is not None
        assert [e.value for e in version.entries if e.key == "Provider"] == ["HP"]


class TestExpandFileListDirective:
    """Tests for expand_file_list_directive function."""

    def test_section_and_literal(self):
        parsed = parse_inf(SAMPLE_INF)
        files = expand_file_list_directive(parsed, "DriverFiles,@hpsample.gpd")
        assert files == ["unidrv.dll", "unidrvui.dll", "hpsample.gpd"]

    def test_keyed_entries_use_key(self):
        parsed = parse_inf("[Files]\nreal.dll = src.dl_,,,0x4\n")
        assert expand_file_list_directive(parsed, "Files") == ["real.dll"]

    def test_keyless_entries_use_first_field(self):
        parsed = parse_inf("[Files]\nfoo.dll,foo.dl_\n")
        assert expand_file_list_directive(parsed, "Files") == ["foo.dll"]

    def test_unknown_section_yields_nothing(self):
        parsed = parse_inf("[Files]\nfoo.dll\n")
        assert expand_file_list_directive(parsed, "Nope") == []


class TestResolveReferences:
    """Tests for resolve_references function."""

    def test_include_and_needs(self):
        parsed = parse_inf(
            "[Install]\nInclude = ntprint.inf, ntprint4.inf\nNeeds = UNIDRV.OEM\nCopyFiles=X\n"
        )
        assert resolve_references(parsed, "install") == ["ntprint.inf", "ntprint4.inf", "UNIDRV.OEM"]
