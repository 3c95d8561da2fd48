"""Line-oriented parser for Windows INF descriptors.

Parsing is permissive: lines that cannot be understood are skipped and
recorded as notices on the result instead of raising.
"""

import codecs
import logging
import re
from pathlib import Path

from driverpack.inf.models import InfEntry, InfSection, ParsedInf, ParseNotice

logger = logging.getLogger(__name__)

SECTION_HEADER = re.compile(r"^\[([^\]]+)\]$")


def decode_inf_bytes(data: bytes) -> str:
    """Decode descriptor bytes, honouring UTF-16/UTF-8 byte order marks."""
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return data.decode("utf-16")
    if data.startswith(codecs.BOM_UTF8):
        return data.decode("utf-8-sig")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("cp1252", errors="replace")


def parse_inf_file(path: Path) -> ParsedInf:
    return parse_inf(decode_inf_bytes(path.read_bytes()), path.name)


def parse_inf(content: str, file_name: str | None = None) -> ParsedInf:
    """Parse descriptor text into ordered sections and entries."""
    sections: list[InfSection] = []
    notices: list[ParseNotice] = []
    current: InfSection | None = None

    lines = content.lstrip("\ufeff").splitlines()
    for line_number, text, comment in _logical_lines(lines):
        header = SECTION_HEADER.match(text)
        if header:
            if current:
                current.end_line = line_number - 1
                sections.append(current)
            name = header.group(1).strip()
            current = InfSection(name=name, start_line=line_number, end_line=line_number)
            continue

        if text.startswith("["):
            notices.append(ParseNotice(line_number, "malformed section header", text))
            continue

        if current is None:
            notices.append(ParseNotice(line_number, "entry outside of any section", text))
            continue

        entry = _parse_entry(text, line_number, comment)
        if entry is None:
            notices.append(ParseNotice(line_number, "unparseable entry", text))
            continue
        current.entries.append(entry)

    if current:
        current.end_line = max(len(lines), current.start_line)
        sections.append(current)

    if notices:
        logger.debug("%s: skipped %d line(s)", file_name or "<inf>", len(notices))

    return ParsedInf(sections=sections, raw_content=content, file_name=file_name, notices=notices)


def _logical_lines(lines: list[str]):
    """Yield (line_number, text, comment) with comments removed and continuations joined."""
    pending: list[str] = []
    pending_start = 0
    pending_comments: list[str] = []

    for index, raw_line in enumerate(lines, start=1):
        text, comment = _strip_comment(raw_line)
        text = text.strip()

        if not pending:
            pending_start = index
        if comment:
            pending_comments.append(comment)

        if text.endswith("\\"):
            pending.append(text[:-1].rstrip())
            continue

        pending.append(text)
        joined = " ".join(part for part in pending if part)
        joined_comment = " ".join(pending_comments) or None
        pending = []
        pending_comments = []

        if joined:
            yield pending_start, joined, joined_comment

    if pending:
        joined = " ".join(part for part in pending if part)
        if joined:
            yield pending_start, joined, " ".join(pending_comments) or None


def _strip_comment(line: str) -> tuple[str, str | None]:
    in_quotes = False
    for index, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == ";" and not in_quotes:
            return line[:index], line[index + 1 :].strip()
    return line, None


def _split_key_value(text: str) -> tuple[str, str] | None:
    in_quotes = False
    for index, char in enumerate(text):
        if char == '"':
            in_quotes = not in_quotes
        elif char == "=" and not in_quotes:
            return text[:index], text[index + 1 :]
    return None


def _unquote(text: str) -> str:
    if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
        return text[1:-1]
    return text


def _parse_entry(text: str, line_number: int, comment: str | None) -> InfEntry | None:
    split = _split_key_value(text)
    if split is None:
        # File-list sections hold bare values
        return InfEntry(
            key="",
            value=_unquote(text),
            raw_value=text,
            line_number=line_number,
            comment=comment,
        )

    raw_key, raw_value = split[0].strip(), split[1].strip()
    if not raw_key:
        return None

    key = _unquote(raw_key)
    return InfEntry(
        key=key,
        value=_unquote(raw_value),
        raw_value=raw_value,
        line_number=line_number,
        raw_key=key,
        comment=comment,
    )


def get_section(parsed: ParsedInf, name: str) -> InfSection | None:
    """Return the first section with the given name, ignoring case."""
    wanted = name.lower()
    for section in parsed.sections:
        if section.name.lower() == wanted:
            return section
    return None


def get_entry(section: InfSection, key: str) -> InfEntry | None:
    """Return the first entry in ``section`` with the given key, ignoring case."""
    wanted = key.lower()
    for entry in section.entries:
        if entry.key.lower() == wanted:
            return entry
    return None


def get_sections_matching(parsed: ParsedInf, pattern: str | re.Pattern[str]) -> list[InfSection]:
    """Return every section whose name matches ``pattern`` (searched, case-insensitive for strings)."""
    regex = re.compile(pattern, re.IGNORECASE) if isinstance(pattern, str) else pattern
    return [section for section in parsed.sections if regex.search(section.name)]
