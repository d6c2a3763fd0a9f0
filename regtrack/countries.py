"""
regtrack.countries
==================

Country name → ISO‑3166 alpha‑2 lookup and the canonicalizer used to
compare entity display names such as ``"Parent Company (India)"`` and
``"Parent Company (IN)"``.

Unlike a plain ``dict.get(name, name)`` the lookup raises
:class:`~regtrack.errors.UnknownCountryError` on a miss, so callers have
to decide explicitly what an unmapped country means for them.
"""

from __future__ import annotations

import re
from typing import Dict, Optional, Tuple

from .errors import UnknownCountryError

COUNTRY_CODES: Dict[str, str] = {
    "United States": "US",
    "India": "IN",
    "United Kingdom": "GB",
    "Canada": "CA",
    "Australia": "AU",
    "Germany": "DE",
    "France": "FR",
    "Singapore": "SG",
    "Japan": "JP",
    "China": "CN",
    "Brazil": "BR",
    "Mexico": "MX",
    "South Africa": "ZA",
    "Nigeria": "NG",
    "Kenya": "KE",
    "Egypt": "EG",
    "UAE": "AE",
    "Saudi Arabia": "SA",
    "Israel": "IL",
    "Austria": "AT",
    "Hong Kong": "HK",
    "Netherlands": "NL",
    "Finland": "FI",
    "Greece": "GR",
    "Vietnam": "VN",
    "Myanmar": "MM",
    "Azerbaijan": "AZ",
    "Serbia": "RS",
    "Monaco": "MC",
    "Pakistan": "PK",
    "Philippines": "PH",
    "Jordan": "JO",
    "Georgia": "GE",
    "Belarus": "BY",
    "Armenia": "AM",
    "Bhutan": "BT",
    "Sri Lanka": "LK",
    "Russia": "RU",
    "Italy": "IT",
    "Spain": "ES",
    "Portugal": "PT",
    "Belgium": "BE",
    "Switzerland": "CH",
    "Sweden": "SE",
    "Norway": "NO",
    "Denmark": "DK",
    "Ireland": "IE",
    "New Zealand": "NZ",
    "South Korea": "KR",
    "Thailand": "TH",
    "Malaysia": "MY",
    "Indonesia": "ID",
    "Bangladesh": "BD",
    "Nepal": "NP",
}

# Common aliases seen in profile data
_ALIASES: Dict[str, str] = {
    "usa": "US",
    "united states of america": "US",
    "uk": "GB",
    "great britain": "GB",
    "united arab emirates": "AE",
    "korea": "KR",
}

_BY_LOWER = {name.lower(): code for name, code in COUNTRY_CODES.items()}
_KNOWN_CODES = set(COUNTRY_CODES.values())

# Local titles of the two verifying professions, keyed by country code
PROFESSIONAL_TITLES: Dict[str, Tuple[str, str]] = {
    "IN": ("CA", "CS"),
    "US": ("CPA", "Corporate Secretary"),
    "GB": ("Chartered Accountant", "Company Secretary"),
    "SG": ("Chartered Accountant", "Company Secretary"),
    "AU": ("Chartered Accountant", "Company Secretary"),
    "AE": ("Auditor", "Company Secretary"),
}
DEFAULT_TITLES: Tuple[str, str] = ("CA", "CS")

_ENTITY_NAME_RE = re.compile(r"^(.+?)\s*\((.+?)\)$")
PARENT_COMPANY = "Parent Company"


def country_code(country: str) -> str:
    """
    Return the 2-letter code for *country*.

    A value that already is a known code is returned upper-cased.

    Raises
    ------
    UnknownCountryError
        When neither the name, an alias nor a known code matches.
    """
    text = (country or "").strip()
    if text.upper() in _KNOWN_CODES:
        return text.upper()
    code = _BY_LOWER.get(text.lower()) or _ALIASES.get(text.lower())
    if code is None:
        raise UnknownCountryError(text)
    return code


def normalize_country_for_display(country: Optional[str]) -> str:
    """Code when the country is known, otherwise the stripped raw value."""
    if not country:
        return ""
    try:
        return country_code(country)
    except UnknownCountryError:
        return country.strip()


def canonical_entity_name(display_name: str, parent_country: Optional[str] = None) -> str:
    """
    Canonical form of an entity display name.

    ``"Parent Company (India)"`` and ``"Parent  Company (IN)"`` both become
    ``"Parent Company (IN)"``.  A bare ``"Parent Company"`` takes
    *parent_country* when one is given.  Other names without a
    ``(country)`` suffix come back with their whitespace collapsed.
    """
    text = " ".join((display_name or "").split())
    match = _ENTITY_NAME_RE.match(text)
    if not match:
        if parent_country and text.lower() == PARENT_COMPANY.lower():
            return f"{PARENT_COMPANY} ({normalize_country_for_display(parent_country)})"
        return text
    entity_type, country = match.groups()
    return f"{entity_type.strip()} ({normalize_country_for_display(country)})"


def professional_titles(code: Optional[str]) -> Tuple[str, str]:
    """(CA title, CS title) used as column labels for *code*."""
    return PROFESSIONAL_TITLES.get((code or "").upper(), DEFAULT_TITLES)
