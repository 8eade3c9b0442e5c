"""Patent number normalization.

Equivalent spellings of one publication ("US 10,123,456 B2", "us10123456b2",
"US-10123456-B2") collapse to a single canonical form "US-10123456-B2" so
that folder and workfile lists dedupe correctly.
"""
import re
from typing import Iterable, List

_PATENT_PATTERN = re.compile(r"^([A-Za-z]{2})([A-Za-z]?)(\d+)([A-Za-z]\d*)?$")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")

# Japanese era letter -> Western year offset
JP_ERA_OFFSETS = {"H": 1988, "S": 1925, "R": 2018}


def standardize_patent_number(patent_number: str) -> str:
    """Return CC-SERIAL[-KIND], or the input unchanged when it is not a patent number."""
    cleaned = _NON_ALNUM.sub("", patent_number)
    match = _PATENT_PATTERN.match(cleaned)
    if not match:
        return patent_number

    country = match.group(1).upper()
    era = match.group(2).upper()
    serial = match.group(3)
    kind = (match.group(4) or "").upper()
    suffix = f"-{kind}" if kind else ""

    if country == "JP" and era in JP_ERA_OFFSETS:
        year = JP_ERA_OFFSETS[era] + int(serial[:2])
        serial = f"{year}{serial[2:]}"

    return f"{country}-{serial}{suffix}"


def normalize_patent_ids(patent_ids: Iterable[str]) -> List[str]:
    """Standardize, drop blanks and dedupe while keeping first-seen order."""
    seen = set()
    result = []
    for raw in patent_ids:
        if raw is None:
            continue
        value = str(raw).strip()
        if not value:
            continue
        standardized = standardize_patent_number(value)
        if standardized not in seen:
            seen.add(standardized)
            result.append(standardized)
    return result
