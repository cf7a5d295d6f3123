"""
Groups free-text lines into logical records.

A line starting with a date always opens a new record. An amount opens one
only while no record is open yet. Everything else continues the current
record, so multi-line descriptions stay together. No line is dropped.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Sequence

from .dates import leading_date

AMOUNT_TOKEN = re.compile(
    r"(?<![\d/])(?:R\$\s*)?[-(]?\s*\d{1,3}(?:[.,]\d{3})*[.,]\d{2}\)?(?:\s?[DC]\b|-)?(?![\d/])"
)


class RecordTrigger(str, Enum):
    """What opened a grouped record."""
    DATE = "DATE"
    AMOUNT = "AMOUNT"
    HEADER = "HEADER"


@dataclass
class GroupedRecord:
    start_index: int
    end_index: int
    trigger: RecordTrigger
    lines: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return " ".join(line.strip() for line in self.lines)


def group_records(lines: Sequence[str], allow_multiline: bool = True) -> List[GroupedRecord]:
    """Group raw lines into records, preserving source order."""
    records: List[GroupedRecord] = []
    current: List[str] = []
    start = 0
    trigger = RecordTrigger.HEADER

    def flush(end: int) -> None:
        if current:
            records.append(GroupedRecord(start, end, trigger, list(current)))
            current.clear()

    last_index = 0
    for index, line in enumerate(lines):
        content = line.strip()
        if not content:
            continue

        new_trigger = None
        if leading_date(content):
            new_trigger = RecordTrigger.DATE
        elif AMOUNT_TOKEN.search(content) and (
            trigger == RecordTrigger.HEADER or not allow_multiline
        ):
            new_trigger = RecordTrigger.AMOUNT

        if new_trigger is not None and current:
            flush(last_index)

        if not current:
            start = index
            trigger = new_trigger or RecordTrigger.HEADER

        current.append(content)
        last_index = index

    flush(last_index)
    return records
