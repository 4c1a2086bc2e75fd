"""Format and checksum validators.

Every check takes the raw matched string, strips formatting itself and
returns a plain bool.  Checksums come from python-stdnum:

  - IBAN:      ISO 13616 mod-97
  - AVS/AHV:   EAN-13 check digit (``stdnum.ch.ssn``)
  - CHE UID:   weighted mod-11 (``stdnum.ch.uid``)
  - EU VAT:    per-country schemes (``stdnum.eu.vat``)

Phone numbers are checked against the numbering plans in ``phonenumbers``.

Validators never raise.  Anything that is not a string, or that the
underlying library chokes on, is simply invalid.
"""

from __future__ import annotations
import datetime as _dt
import functools
import re
from typing import Callable

import phonenumbers
from phonenumbers import NumberParseException
from stdnum import iban as _iban
from stdnum.ch import ssn as _ch_ssn
from stdnum.ch import uid as _ch_uid
from stdnum.eu import vat as _eu_vat

from .types import EntityType

Validator = Callable[[str], bool]

_SEPARATORS = re.compile(r"[\s.\-'()/]")
_UID_SUFFIX = re.compile(r"\s*(?:MWST|TVA|IVA)$", re.IGNORECASE)
PHONE_REGION = "CH"
_EMAIL = re.compile(
    r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(?:\.[A-Za-z0-9\-]+)*\.[A-Za-z]{2,}$"
)
_POSTAL = re.compile(r"^(?:CH-)?(\d{4})\s+(\S.*)$")

# Words that follow a 4-digit number in running text but are not places.
_NOT_A_LOCALITY = frozenset({
    "januar", "februar", "märz", "april", "mai", "juni", "juli", "august",
    "september", "oktober", "november", "dezember",
    "janvier", "février", "mars", "avril", "juin", "juillet", "août",
    "septembre", "octobre", "novembre", "décembre",
    "january", "february", "march", "may", "june", "july", "october", "december",
    "chf", "eur", "usd", "francs", "franken", "mitarbeiter", "employés",
    "employees", "stück", "pièces", "total", "jahre", "ans", "years",
})

_NOT_A_NAME = frozenset({
    "monsieur", "madame", "mademoiselle", "herr", "frau", "mr", "mrs", "ms",
    "contact", "référence", "reference", "objet", "betreff", "subject",
    "rue", "route", "avenue", "chemin", "strasse", "via",
    "société", "company", "firma", "sa", "ag", "gmbh", "sàrl",
    "le", "la", "les", "der", "die", "das", "the", "and", "et", "und",
})


def _never_raises(fn: Validator) -> Validator:
    @functools.wraps(fn)
    def wrapper(value: str) -> bool:
        if not isinstance(value, str) or not value.strip():
            return False
        try:
            return bool(fn(value))
        except (ValueError, TypeError, ArithmeticError, LookupError):
            return False
    return wrapper


def clean(value: str) -> str:
    """Strip whitespace and common separators (``.``, ``-``, ``'`` ...)."""
    return _SEPARATORS.sub("", value)


# ── Structured identifiers ─────────────────────────────────────────

@_never_raises
def is_valid_iban(value: str) -> bool:
    return _iban.is_valid(clean(value).upper())


@_never_raises
def is_valid_avs(value: str) -> bool:
    """Swiss social security number, ``756.XXXX.XXXX.XC``."""
    return _ch_ssn.is_valid(clean(value))


@_never_raises
def is_valid_uid(value: str) -> bool:
    """Swiss company UID, ``CHE-123.456.789`` with optional MWST/TVA/IVA."""
    return _ch_uid.is_valid(clean(_UID_SUFFIX.sub("", value.strip())).upper())


@_never_raises
def is_valid_eu_vat(value: str) -> bool:
    return _eu_vat.is_valid(clean(value).upper())


@_never_raises
def is_valid_tax_id(value: str) -> bool:
    if value.strip().upper().startswith("CHE"):
        return is_valid_uid(value)
    return is_valid_eu_vat(value)


# ── Contact data ───────────────────────────────────────────────────

@_never_raises
def is_valid_phone(value: str) -> bool:
    """Number valid for its country, and not a placeholder like +49 111 1111111.

    Numbers without a country prefix are read as Swiss.
    """
    try:
        parsed = phonenumbers.parse(value, PHONE_REGION)
    except NumberParseException:
        return False
    if len(set(str(parsed.national_number))) == 1:
        return False
    return phonenumbers.is_valid_number(parsed)


@_never_raises
def is_valid_email(value: str) -> bool:
    value = value.strip()
    return bool(_EMAIL.match(value)) and ".." not in value


@_never_raises
def is_valid_date(value: str) -> bool:
    """Calendar-correct ``dd.mm.yyyy`` (or ``/``) and ISO ``yyyy-mm-dd``, 1900–2100."""
    value = value.strip()
    if re.match(r"^\d{4}-\d{1,2}-\d{1,2}$", value):
        year, month, day = (int(p) for p in value.split("-"))
    else:
        day, month, year = (int(p) for p in re.split(r"[./]", value))
    if not 1900 <= year <= 2100:
        return False
    _dt.date(year, month, day)   # ValueError on 31.02.
    return True


# ── Free-text shapes ───────────────────────────────────────────────

@_never_raises
def is_valid_postal_locality(value: str) -> bool:
    """``1003 Lausanne`` / ``CH-8001 Zürich``: Swiss postal code plus a place name."""
    m = _POSTAL.match(value.strip())
    if not m:
        return False
    if not 1000 <= int(m.group(1)) <= 9699:
        return False
    locality = m.group(2).split()[0]
    return locality[0].isupper() and locality.lower() not in _NOT_A_LOCALITY


@_never_raises
def is_valid_person_name(value: str) -> bool:
    words = value.split()
    if not 2 <= len(words) <= 4:
        return False
    for word in words:
        if len(word) < 2 or not word[0].isupper():
            return False
        if word.lower().rstrip(".") in _NOT_A_NAME:
            return False
    return True


# Default validator per type, used when re-validating candidates that
# did not come from a specific rule (e.g. recognizer hits).
_TYPE_VALIDATORS: dict[EntityType, Validator] = {
    EntityType.BANK_ACCOUNT: is_valid_iban,
    EntityType.NATIONAL_ID: is_valid_avs,
    EntityType.TAX_ID: is_valid_tax_id,
    EntityType.PHONE: is_valid_phone,
    EntityType.EMAIL: is_valid_email,
    EntityType.DATE: is_valid_date,
}


def validator_for(entity_type: EntityType) -> Validator | None:
    return _TYPE_VALIDATORS.get(entity_type)
