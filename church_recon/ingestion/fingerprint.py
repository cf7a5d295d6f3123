"""
Content materialization and structural fingerprinting.

Every extraction path works on the same materialized text: pages are
concatenated in source order, pre-tokenized rows become `;`-delimited
lines and space-aligned text becomes a virtual `;` grid.
"""

import hashlib
import re
from typing import Iterable, List, Optional, Sequence, Union

from ..models import FileModel, Fingerprint
from ..utils.text_normalizer import strip_accents
from .amounts import parse_amount

Content = Union[str, Sequence[str], Sequence[Sequence[str]]]

DELIMITER_CANDIDATES = [";", ",", "\t", "|"]
DEFAULT_DELIMITER = ";"

_MULTI_SPACE = re.compile(r"\s{2,}")
_TOPOLOGY_DATE = re.compile(r"^\d{1,4}[/-]\d{1,2}")


def _cell_text(cell) -> str:
    if cell is None:
        return ""
    # Embedded delimiters would shift columns
    return str(cell).replace(";", ",").replace("\n", " ").strip()


def materialize(content: Content) -> str:
    """
    Turn decoded content into one text document.

    Accepts a string, a list of page strings, or a list of rows (each a
    list of cells). Order is always preserved.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content

    lines: List[str] = []
    for item in content:
        if isinstance(item, str):
            lines.append(item)
        elif isinstance(item, (list, tuple)):
            lines.append(";".join(_cell_text(c) for c in item))
        elif item is not None:
            lines.append(str(item))
    return "\n".join(lines)


def normalize_raw_content(text: str) -> str:
    """
    Drop blank lines and convert space-aligned columns into a `;` grid.

    Lines that already carry `;` or tabs are left alone.
    """
    if not text:
        return ""

    lines = []
    for line in re.split(r"\r?\n", text):
        trimmed = line.strip()
        if not trimmed:
            continue
        if ";" not in trimmed and "\t" not in trimmed and "  " in trimmed:
            trimmed = _MULTI_SPACE.sub(";", trimmed)
        lines.append(trimmed)
    return "\n".join(lines)


def content_lines(text: str) -> List[str]:
    return [line for line in re.split(r"\r?\n", text or "") if line.strip()]


def detect_delimiter(lines: Union[str, Sequence[str]], sample_size: int = 20) -> str:
    """
    Pick the delimiter statistically.

    For a single line the most frequent candidate wins. For several lines a
    candidate scores by how many lines contain it with the modal count, so
    a comma inside amounts does not beat a consistent `;`.
    """
    if isinstance(lines, str):
        lines = [lines]
    sample = [line for line in lines[:sample_size] if line]
    if not sample:
        return DEFAULT_DELIMITER

    best, best_score = DEFAULT_DELIMITER, 0.0
    for candidate in DELIMITER_CANDIDATES:
        counts = [line.count(candidate) for line in sample]
        positive = [c for c in counts if c > 0]
        if not positive:
            continue
        modal = max(set(positive), key=lambda c: (positive.count(c), c))
        consistency = positive.count(modal) / len(sample)
        score = consistency * 100 + modal
        if score > best_score:
            best, best_score = candidate, score
    return best


def split_grid(lines: Iterable[str], delimiter: str) -> List[List[str]]:
    return [[cell.strip() for cell in line.split(delimiter)] for line in lines]


def _clean_header(line: str) -> str:
    return re.sub(r"[^A-Z0-9]", "", strip_accents(line).upper())


def _cell_kind(cell: str) -> str:
    value = re.sub(r"[R$\s]", "", cell.strip())
    if _TOPOLOGY_DATE.match(value):
        return "D"
    if not value:
        return "E"
    if parse_amount(value) is not None:
        return "N"
    return "S"


def _line_topology(line: str, delimiter: str) -> str:
    return "".join(_cell_kind(c) for c in line.split(delimiter))


def _digest(text: str, length: int = 16) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()[:length]


def generate_fingerprint(text: str) -> Optional[Fingerprint]:
    """
    Structural signature of materialized, normalized text.

    The header hash ignores everything but letters and digits, so the same
    header as CSV or as space-aligned text hashes identically.
    """
    lines = content_lines(text)
    if not lines:
        return None

    header = lines[0]
    delimiter = detect_delimiter(lines)
    column_count = len(header.split(delimiter))

    clean = _clean_header(header)
    header_hash = _digest(clean) if clean else None

    data_rows = lines[1:10]
    representative = next(
        (r for r in data_rows if len(r.split(delimiter)) >= 2),
        header,
    )
    topology = _line_topology(representative, delimiter)

    signature_body = clean + "||" + "|".join(
        _line_topology(line, delimiter) for line in lines[1:11]
    )

    return Fingerprint(
        column_count=column_count,
        delimiter=delimiter,
        header_hash=header_hash,
        data_topology=topology,
        canonical_signature=_digest(signature_body),
    )


def fingerprint_matches(model_fp: Fingerprint, file_fp: Fingerprint) -> bool:
    """Same width and header, or same delimiter and data shape."""
    if (
        model_fp.header_hash
        and model_fp.column_count == file_fp.column_count
        and model_fp.header_hash == file_fp.header_hash
    ):
        return True
    return (
        model_fp.delimiter == file_fp.delimiter
        and bool(model_fp.data_topology)
        and model_fp.data_topology == file_fp.data_topology
    )


def find_matching_models(
    fingerprint: Optional[Fingerprint],
    models: Iterable[FileModel],
) -> List[FileModel]:
    """
    Active models whose fingerprint matches, header matches first.

    Ties keep the caller's order.
    """
    if fingerprint is None:
        return []

    matches = [m for m in models if m.is_active and fingerprint_matches(m.fingerprint, fingerprint)]
    matches.sort(
        key=lambda m: 0 if (
            m.fingerprint.header_hash == fingerprint.header_hash
            and m.fingerprint.column_count == fingerprint.column_count
        ) else 1
    )
    return matches


def snippet(text: str, lines: int = 20) -> str:
    return "\n".join(content_lines(text)[:lines])
