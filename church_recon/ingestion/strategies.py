"""
Extraction strategies.

Each strategy turns materialized text into parsed rows. Validity of a row
depends on the document kind: statements need a date and an amount,
contributor lists need a name and an amount.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence

import structlog

from ..models import DocumentKind, FileModel
from ..utils.text_normalizer import is_balance_row
from .amounts import parse_amount
from .columns import detect_columns
from .dates import leading_date, parse_date
from .fingerprint import content_lines, detect_delimiter, split_grid
from .grouping import AMOUNT_TOKEN, RecordTrigger, group_records

logger = structlog.get_logger()


@dataclass
class ParseContext:
    """Per-file parsing parameters shared by all strategies."""
    kind: DocumentKind = DocumentKind.STATEMENT
    anchor_year: Optional[int] = None
    date_format: Optional[str] = None
    decimal_separator: Optional[str] = None
    sample_rows: int = 100
    contribution_keywords: Optional[Sequence[str]] = None


@dataclass
class ParsedRow:
    """One candidate row with its raw and parsed values."""
    row_index: int
    description: str
    date_raw: str = ""
    amount_raw: str = ""
    type_raw: Optional[str] = None
    date: Optional[date] = None
    amount: Optional[Decimal] = None

    def is_valid(self, kind: DocumentKind) -> bool:
        if self.amount is None:
            return False
        if kind == DocumentKind.CONTRIBUTOR_LIST:
            return bool(self.description.strip())
        return self.date is not None

    @classmethod
    def build(
        cls,
        row_index: int,
        description: str,
        date_raw: str,
        amount_raw: str,
        ctx: ParseContext,
        type_raw: Optional[str] = None,
    ) -> "ParsedRow":
        return cls(
            row_index=row_index,
            description=(description or "").strip(),
            date_raw=(date_raw or "").strip(),
            amount_raw=(amount_raw or "").strip(),
            type_raw=(type_raw or "").strip() or None,
            date=parse_date(date_raw, ctx.anchor_year, ctx.date_format) if date_raw else None,
            amount=parse_amount(amount_raw, ctx.decimal_separator) if amount_raw else None,
        )


@dataclass
class StrategyOutcome:
    """Rows produced by one strategy over one file."""
    name: str
    rows: List[ParsedRow] = field(default_factory=list)
    kind: DocumentKind = DocumentKind.STATEMENT
    # Balance/total lines, kept out of `rows`
    balance_rows: List[int] = field(default_factory=list)

    @property
    def valid_rows(self) -> List[ParsedRow]:
        return [r for r in self.rows if r.is_valid(self.kind)]

    @property
    def invalid_rows(self) -> List[ParsedRow]:
        return [r for r in self.rows if not r.is_valid(self.kind)]

    @property
    def confidence(self) -> float:
        """Share of candidate rows that parsed cleanly."""
        if not self.rows:
            return 0.0
        return len(self.valid_rows) / len(self.rows)


def _cell(row: List[str], index: Optional[int]) -> str:
    if index is None or index < 0 or index >= len(row):
        return ""
    return row[index]


class ExtractionStrategy:
    """Base class for heuristic strategies."""

    name = "base"

    def parse(self, text: str, ctx: ParseContext) -> StrategyOutcome:
        raise NotImplementedError


class DelimitedStrategy(ExtractionStrategy):
    """
    Tabular parsing over a detected delimiter.

    Column roles are inferred from content, not headers: dates, the
    smallest-magnitude amount column, the most name-like text column and
    an optional contribution type column.
    """

    name = "delimited"

    def parse(self, text: str, ctx: ParseContext) -> StrategyOutcome:
        outcome = StrategyOutcome(name=self.name, kind=ctx.kind)

        lines = content_lines(text)
        if not lines:
            return outcome

        delimiter = detect_delimiter(lines)
        grid = split_grid(lines, delimiter)
        if max(len(r) for r in grid) < 2:
            return outcome

        columns = detect_columns(
            grid, sample_size=ctx.sample_rows, contribution_keywords=ctx.contribution_keywords,
        )
        if not columns.is_usable:
            return outcome
        if ctx.kind == DocumentKind.STATEMENT and columns.date_column < 0:
            return outcome

        logger.debug(
            "Delimited columns detected",
            delimiter=delimiter,
            date_column=columns.date_column,
            amount_column=columns.amount_column,
            description_column=columns.description_column,
            type_column=columns.type_column,
        )

        for index, row in enumerate(grid):
            description = _cell(row, columns.description_column)
            if is_balance_row(description):
                outcome.balance_rows.append(index)
                continue
            outcome.rows.append(ParsedRow.build(
                row_index=index,
                description=description,
                date_raw=_cell(row, columns.date_column),
                amount_raw=_cell(row, columns.amount_column),
                type_raw=_cell(row, columns.type_column),
                ctx=ctx,
            ))

        return outcome


class TextScanStrategy(ExtractionStrategy):
    """
    Date/amount pattern scanning over free text.

    Statement lines are grouped into records opened by a leading date. The
    movement is the last amount of a record, or the one before it when the
    record also ends in a running balance.
    """

    name = "text_scan"

    def parse(self, text: str, ctx: ParseContext) -> StrategyOutcome:
        outcome = StrategyOutcome(name=self.name, kind=ctx.kind)
        lines = content_lines(text)
        if not lines:
            return outcome

        # Contributor lists rarely wrap; every amount line is its own record
        multiline = ctx.kind == DocumentKind.STATEMENT
        for record in group_records(lines, allow_multiline=multiline):
            if record.trigger == RecordTrigger.HEADER:
                continue
            body = record.text
            if is_balance_row(body):
                outcome.balance_rows.append(record.start_index)
                continue

            date_raw = leading_date(body) or ""
            remainder = body.split(date_raw, 1)[1] if date_raw else body

            amounts = [m.group(0) for m in AMOUNT_TOKEN.finditer(remainder)]
            if not amounts:
                amount_raw = ""
            elif len(amounts) >= 2 and ctx.kind == DocumentKind.STATEMENT:
                amount_raw = amounts[-2]
            else:
                amount_raw = amounts[-1]

            description = AMOUNT_TOKEN.sub(" ", remainder)
            description = " ".join(description.replace(";", " ").split())

            outcome.rows.append(ParsedRow.build(
                row_index=record.start_index,
                description=description,
                date_raw=date_raw,
                amount_raw=amount_raw,
                ctx=ctx,
            ))

        return outcome


DEFAULT_STRATEGIES = (DelimitedStrategy(), TextScanStrategy())


def apply_model(text: str, model: FileModel, ctx: ParseContext) -> StrategyOutcome:
    """
    Apply a trained file model's mapping to materialized text.

    Skip rows are honored first, then rows containing any row-filter block
    are dropped. The model's date format and decimal separator override
    inference.
    """
    outcome = StrategyOutcome(name=f"model:{model.label}", kind=ctx.kind)
    model_ctx = ParseContext(
        kind=ctx.kind,
        anchor_year=ctx.anchor_year,
        date_format=model.parsing_rules.date_format or ctx.date_format,
        decimal_separator=model.parsing_rules.decimal_separator or ctx.decimal_separator,
        sample_rows=ctx.sample_rows,
        contribution_keywords=ctx.contribution_keywords,
    )

    lines = content_lines(text)
    mapping = model.mapping
    end = len(lines) - mapping.skip_rows_end if mapping.skip_rows_end else len(lines)
    filters = [f.upper() for f in model.parsing_rules.row_filters if f]

    for index in range(mapping.skip_rows_start, max(end, mapping.skip_rows_start)):
        line = lines[index]
        if filters and any(f in line.upper() for f in filters):
            continue
        row = [c.strip() for c in line.split(model.fingerprint.delimiter)]
        description = _cell(row, mapping.description_column)
        if is_balance_row(description):
            outcome.balance_rows.append(index)
            continue
        outcome.rows.append(ParsedRow.build(
            row_index=index,
            description=description,
            date_raw=_cell(row, mapping.date_column),
            amount_raw=_cell(row, mapping.amount_column),
            type_raw=_cell(row, mapping.type_column),
            ctx=model_ctx,
        ))

    return outcome
