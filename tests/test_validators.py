"""Tests for the validator library."""

import pytest

from pii_pseudonymizer import validators as v
from pii_pseudonymizer.types import EntityType


def _single_digit_mutations(value):
    for i, ch in enumerate(value):
        if ch.isdigit():
            yield value[:i] + str((int(ch) + 1) % 10) + value[i + 1:]


# ── Checksums ────────────────────────────────────────────────────────

def test_iban_valid_compact_and_grouped():
    assert v.is_valid_iban("CH9300762011623852957")
    assert v.is_valid_iban("CH93 0076 2011 6238 5295 7")
    assert v.is_valid_iban("DE89 3704 0044 0532 0130 00")


def test_iban_single_digit_mutations_fail():
    for mutated in _single_digit_mutations("CH9300762011623852957"):
        assert not v.is_valid_iban(mutated), mutated


def test_avs_valid():
    assert v.is_valid_avs("756.1234.5678.97")
    assert v.is_valid_avs("7561234567897")


def test_avs_broken_checksum():
    assert not v.is_valid_avs("756.1234.5678.99")


def test_avs_single_digit_mutations_fail():
    for mutated in _single_digit_mutations("756.1234.5678.97"):
        assert not v.is_valid_avs(mutated), mutated


def test_uid_valid_with_and_without_suffix():
    assert v.is_valid_uid("CHE-100.155.212")
    assert v.is_valid_uid("CHE-100.155.212 MWST")
    assert v.is_valid_uid("CHE100155212")


def test_uid_single_digit_mutations_fail():
    for mutated in _single_digit_mutations("CHE-100.155.212"):
        assert not v.is_valid_uid(mutated), mutated


def test_eu_vat():
    assert v.is_valid_eu_vat("DE136695976")
    assert not v.is_valid_eu_vat("DE136695978")


def test_tax_id_dispatch():
    assert v.is_valid_tax_id("CHE-100.155.212")
    assert v.is_valid_tax_id("DE136695976")
    assert not v.is_valid_tax_id("CHE-100.155.213")


# ── Phone ────────────────────────────────────────────────────────────

def test_phone_valid_formats():
    assert v.is_valid_phone("+41 21 345 67 89")
    assert v.is_valid_phone("021 345 67 89")
    assert v.is_valid_phone("0041 79 123 45 67")


def test_phone_rejects_repeated_digits():
    assert not v.is_valid_phone("+41 11 111 11 11")
    assert not v.is_valid_phone("000 000 00 00")
    assert not v.is_valid_phone("1111111111")


def test_phone_rejects_too_short():
    assert not v.is_valid_phone("+41 21")
    assert not v.is_valid_phone("021 345")


def test_phone_eu_numbers():
    assert v.is_valid_phone("+33 6 12 34 56 78")
    assert v.is_valid_phone("+32 470 12 34 56")
    assert v.is_valid_phone("+39 347 123 4567")


def test_phone_placeholder_with_foreign_country_code():
    assert not v.is_valid_phone("+49 111 1111111")
    assert not v.is_valid_phone("+33 6 66 66 66 66")


def test_phone_outside_numbering_plan():
    assert not v.is_valid_phone("+41 12 345 67 89")


# ── Other formats ────────────────────────────────────────────────────

def test_email():
    assert v.is_valid_email("jean.dupont@example.ch")
    assert not v.is_valid_email("jean..dupont@example.ch")
    assert not v.is_valid_email("no-at-sign.example.ch")


def test_date_calendar_checks():
    assert v.is_valid_date("29.02.2024")
    assert v.is_valid_date("2024-03-15")
    assert not v.is_valid_date("31.02.2024")
    assert not v.is_valid_date("15.03.1850")


def test_postal_locality():
    assert v.is_valid_postal_locality("1003 Lausanne")
    assert v.is_valid_postal_locality("CH-8001 Zürich")
    assert not v.is_valid_postal_locality("2024 Januar")
    assert not v.is_valid_postal_locality("0999 Nowhere")


def test_person_name():
    assert v.is_valid_person_name("Jean Dupont")
    assert not v.is_valid_person_name("Jean")
    assert not v.is_valid_person_name("Monsieur Dupont")


@pytest.mark.parametrize("fn", [
    v.is_valid_iban, v.is_valid_avs, v.is_valid_uid, v.is_valid_eu_vat,
    v.is_valid_phone, v.is_valid_email, v.is_valid_date, v.is_valid_postal_locality,
])
@pytest.mark.parametrize("value", [None, 12345, "", "   ", "garbage!!", "12.ab.2020"])
def test_validators_never_raise(fn, value):
    assert fn(value) is False


def test_clean_strips_separators():
    assert v.clean("756.1234.5678.97") == "7561234567897"
    assert v.clean("CH93 0076-2011") == "CH9300762011"


def test_validator_for_types():
    assert v.validator_for(EntityType.BANK_ACCOUNT) is v.is_valid_iban
    assert v.validator_for(EntityType.NATIONAL_ID) is v.is_valid_avs
    assert v.validator_for(EntityType.PERSON) is None
