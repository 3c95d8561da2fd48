"""Mapping between expanded and DOS-compressed (``name.ex_``) file names.

Expansion is heuristic: a truncated extension not in the known table is
rebuilt by repeating its last character, which is a guess.
"""

import os
from pathlib import Path

KNOWN_EXTENSIONS: dict[str, str] = {
    "dl": "dll",
    "ex": "exe",
    "sy": "sys",
    "in": "inf",
    "ca": "cat",
    "gp": "gpd",
    "pp": "ppd",
    "tx": "txt",
    "xm": "xml",
}


def _split_extension(name: str) -> tuple[str, str] | None:
    dot = name.rfind(".")
    if dot == -1:
        return None
    return name[:dot], name[dot + 1 :]


def is_compressed(name: str) -> bool:
    return name.endswith("_")


def compress(name: str) -> str:
    """``unidrv.dll`` -> ``unidrv.dl_``."""
    parts = _split_extension(name)
    if parts is None or not parts[1]:
        return name
    base, ext = parts
    return f"{base}.{ext[:-1]}_"


def expand(name: str) -> str:
    """``mxdwdrv.dl_`` -> ``mxdwdrv.dll``; best effort for unknown extensions."""
    parts = _split_extension(name)
    if parts is None or not parts[1].endswith("_"):
        return name
    base, ext = parts
    stem = ext[:-1]
    if not stem:
        return name

    known = KNOWN_EXTENSIONS.get(stem.lower())
    if known:
        return f"{base}.{known}"
    return f"{base}.{stem}{stem[-1]}"


def variants(name: str) -> list[str]:
    """Literal, compressed and expanded spellings of ``name``, without repeats."""
    result = [name]
    for candidate in (compress(name), expand(name)):
        if candidate not in result:
            result.append(candidate)
    return result


def find_variant(name: str, directory: Path) -> str | None:
    """Return the first of literal, compressed, expanded names present in ``directory``.

    The on-disk spelling is returned; names are compared case-insensitively.
    """
    listing = _listing(directory)
    if listing is None:
        return None
    for candidate in variants(name):
        found = listing.get(candidate.lower())
        if found:
            return found
    return None


def _listing(directory: Path) -> dict[str, str] | None:
    try:
        with os.scandir(directory) as entries:
            return {
                entry.name.lower(): entry.name
                for entry in entries
                if entry.is_file(follow_symlinks=False)
            }
    except FileNotFoundError:
        return None
    except NotADirectoryError:
        return None
