import pytest

from app.services.identity import clean_identity_name, extract_identity_name


def test_celebrity_line():
    description = "CELEBRITY: Jane Doe\nBIOMETRIC_SIGNATURE: oval face, wide-set eyes"
    assert extract_identity_name(description) == "Jane Doe"


@pytest.mark.parametrize("description", [
    "IDENTITY: Jane Doe",
    "name: Jane Doe.",
    "CELEBRITY: Jane Doe (actress)",
    "**CELEBRITY:** Jane Doe",
    "This is Jane Doe at a press event.",
    "The subject is recognized as Jane Doe",
])
def test_recognized_patterns(description):
    assert extract_identity_name(description) == "Jane Doe"


@pytest.mark.parametrize("placeholder", [
    "Unknown", "NONE", "Not recognized", "unidentified", "N/A", "Not a celebrity", "[Unknown]",
])
def test_placeholders_are_rejected(placeholder):
    assert extract_identity_name(f"CELEBRITY: {placeholder}\nBIOMETRIC_SIGNATURE: square jaw") is None


def test_short_names_are_rejected():
    assert extract_identity_name("CELEBRITY: Al") is None


def test_rejected_candidate_falls_through_to_later_pattern():
    description = "CELEBRITY: Unknown\nNAME: John Roe"
    assert extract_identity_name(description) == "John Roe"


def test_this_is_requires_capitalized_full_name():
    assert extract_identity_name("this is jane doe") is None
    assert extract_identity_name("This is Jane") is None


def test_no_description():
    assert extract_identity_name("") is None
    assert extract_identity_name(None) is None
    assert extract_identity_name("BIOMETRIC_SIGNATURE: narrow nose bridge, cleft chin") is None


def test_clean_identity_name():
    assert clean_identity_name("  Jane   Doe (singer); ") == "Jane Doe"
