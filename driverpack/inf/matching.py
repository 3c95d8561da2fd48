"""Heuristic selection of manufacturer model sections.

Vendors name their model sections freely (``[HP.NTamd64.6.1]``,
``[Models]``, ``[Brother]``), so selection is a score over the section
name. The heuristic over-matches unrelated sections that share the
manufacturer prefix and under-matches vendors whose section names carry no
recognisable marker.
"""

import re

from driverpack.inf.models import InfSection, ParsedInf

MANUFACTURER_PREFIX_LENGTH = 5

ARCHITECTURE_SUFFIX = re.compile(r"\.(nt|ntamd64|ntx86|ntarm)", re.IGNORECASE)

RESERVED_SECTIONS: frozenset[str] = frozenset(
    {
        "version",
        "strings",
        "manufacturer",
        "destinationdirs",
        "defaultinstall",
        "controlflags",
    }
)

RESERVED_PREFIXES: tuple[str, ...] = ("sourcedisksnames", "sourcedisksfiles", "strings.")

SCORE_MANUFACTURER_PREFIX = 2
SCORE_MODELS_KEYWORD = 2
SCORE_ARCHITECTURE_SUFFIX = 1


def manufacturer_prefix(manufacturer: str) -> str:
    prefix = manufacturer.strip().lower()[:MANUFACTURER_PREFIX_LENGTH]
    return "" if prefix == "unkno" else prefix


def score_model_section(section_name: str, manufacturer: str) -> int:
    """Score how likely ``section_name`` is to list models; 0 means no."""
    name = section_name.lower()
    if name in RESERVED_SECTIONS or name.startswith(RESERVED_PREFIXES):
        return 0

    score = 0
    prefix = manufacturer_prefix(manufacturer)
    if prefix and prefix in name:
        score += SCORE_MANUFACTURER_PREFIX
    if "models" in name:
        score += SCORE_MODELS_KEYWORD
    if ARCHITECTURE_SUFFIX.search(name):
        score += SCORE_ARCHITECTURE_SUFFIX
    return score


def find_model_sections(parsed: ParsedInf, manufacturer: str) -> list[InfSection]:
    """Sections with a positive score, in file order."""
    return [
        section
        for section in parsed.sections
        if score_model_section(section.name, manufacturer) > 0
    ]
