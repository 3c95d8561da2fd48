"""String table substitution and cross-section reference expansion."""

import logging
import re

from driverpack.inf.models import InfSection, ParsedInf, ParseNotice

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"%([^%]*)%")
STRINGS_SECTION = "strings"


def build_strings_table(parsed: ParsedInf) -> dict[str, str]:
    """Build a lower-cased token table from the ``[Strings]`` section(s).

    The first definition of a token wins.
    """
    table: dict[str, str] = {}
    for section in parsed.sections:
        if section.name.lower() != STRINGS_SECTION:
            continue
        for entry in section.entries:
            if entry.key:
                table.setdefault(entry.key.lower(), entry.value)
    return table


def substitute(value: str, table: dict[str, str]) -> tuple[str, list[str]]:
    """Replace ``%Token%`` references in ``value``.

    Returns the substituted text and the tokens that had no definition;
    those are left in place verbatim. ``%%`` yields a literal percent sign.
    """
    unresolved: list[str] = []

    def replace(match: re.Match[str]) -> str:
        token = match.group(1)
        if not token:
            return "%"
        replacement = table.get(token.lower())
        if replacement is None:
            unresolved.append(token)
            return match.group(0)
        return replacement

    return TOKEN_PATTERN.sub(replace, value), unresolved


def resolve_strings(parsed: ParsedInf) -> list[ParseNotice]:
    """Substitute string tokens in place across all sections.

    Values are substituted everywhere; keys are substituted outside
    ``[Strings]`` (the original spelling stays in ``raw_key``). Returns the
    notices for unresolved tokens, which are also appended to
    ``parsed.notices``.
    """
    table = build_strings_table(parsed)
    notices: list[ParseNotice] = []

    for section in parsed.sections:
        is_strings = section.name.lower() == STRINGS_SECTION
        for entry in section.entries:
            entry.value, missing = substitute(entry.value, table)
            if entry.key and not is_strings:
                entry.key, missing_in_key = substitute(entry.key, table)
                missing.extend(missing_in_key)
            for token in missing:
                notices.append(
                    ParseNotice(entry.line_number, "unresolved string token", f"%{token}%")
                )

    if notices:
        logger.debug(
            "%s: %d unresolved string token(s)", parsed.file_name or "<inf>", len(notices)
        )
    parsed.notices.extend(notices)
    return notices


def _sections_named(parsed: ParsedInf, name: str) -> list[InfSection]:
    wanted = name.lower()
    return [section for section in parsed.sections if section.name.lower() == wanted]


def expand_file_list_directive(parsed: ParsedInf, directive_value: str) -> list[str]:
    """Expand a ``CopyFiles=`` value into file names.

    ``@name`` is a literal file; anything else names a file-list section whose
    entries contribute their key, or their first value field when keyless.
    """
    files: list[str] = []
    for part in (p.strip() for p in directive_value.split(",")):
        if not part:
            continue
        if part.startswith("@"):
            if part[1:].strip():
                files.append(part[1:].strip())
            continue
        for section in _sections_named(parsed, part):
            for entry in section.entries:
                name = entry.key or entry.value.split(",")[0].strip()
                if name:
                    files.append(name)
    return files


def resolve_references(parsed: ParsedInf, section_name: str) -> list[str]:
    """List the ``Include=`` and ``Needs=`` targets of a section."""
    references: list[str] = []
    for section in _sections_named(parsed, section_name):
        for entry in section.entries:
            if entry.key.lower() in ("include", "needs"):
                references.extend(p.strip() for p in entry.value.split(",") if p.strip())
    return references
