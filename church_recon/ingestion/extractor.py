"""
Extraction strategy selector.

Runs the heuristic strategies in order, then trained file models matched
by fingerprint, and reports MODEL_REQUIRED when nothing applies. The async
path can fall back to an injected AI extractor.
"""

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

import structlog

from ..config import get_settings
from ..exceptions import AIExtractionError
from ..integrations.ai_extractor import AIExtractionClient, AIExtractor, ProgressCallback
from ..models import (
    Contributor,
    DocumentKind,
    ExtractionStatus,
    FileModel,
    Fingerprint,
    Transaction,
)
from ..utils.text_normalizer import (
    clean_description,
    is_balance_row,
    is_control_row,
    normalize,
    resolve_contribution_type,
)
from .dates import discover_anchor_year
from .fingerprint import (
    Content,
    content_lines,
    find_matching_models,
    generate_fingerprint,
    materialize,
    normalize_raw_content,
    snippet,
    split_grid,
)
from .strategies import (
    DEFAULT_STRATEGIES,
    ExtractionStrategy,
    ParseContext,
    ParsedRow,
    StrategyOutcome,
    apply_model,
)

logger = structlog.get_logger()

AI_METHOD = "ai"


@dataclass
class ExtractionResult:
    """Result of extracting one file."""
    file_name: str
    status: ExtractionStatus
    method: Optional[str] = None
    transactions: List[Transaction] = field(default_factory=list)
    contributors: List[Contributor] = field(default_factory=list)
    model_context: Optional[Dict[str, Any]] = None
    fingerprint: Optional[Fingerprint] = None
    model: Optional[FileModel] = None
    confidence: float = 0.0
    skipped_rows: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == ExtractionStatus.OK


def transaction_id(tx_date, description: str, amount, row_index: Optional[int]) -> str:
    """Deterministic id: unchanged files re-extract to the same ids."""
    key = f"{tx_date}|{description}|{amount}|{row_index}"
    return "tx-" + hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]


def _contribution_type(row: ParsedRow, contribution_keywords: Optional[Sequence[str]]) -> Optional[str]:
    if row.type_raw:
        return row.type_raw.upper()
    return resolve_contribution_type(row.description, contribution_keywords)


class ExtractionStrategySelector:
    """
    Picks the extraction path for a file.

    Order: heuristic strategies, then fingerprint-matched file models, then
    MODEL_REQUIRED. The first path with at least one valid row wins.
    """

    def __init__(
        self,
        strategies: Optional[Sequence[ExtractionStrategy]] = None,
        snippet_lines: Optional[int] = None,
        sample_rows: Optional[int] = None,
    ):
        settings = get_settings()
        self.strategies = list(strategies) if strategies is not None else list(DEFAULT_STRATEGIES)
        self.snippet_lines = snippet_lines or settings.snippet_lines
        self.sample_rows = sample_rows or settings.sample_rows

    def extract(
        self,
        content: Content,
        file_name: str,
        known_models: Iterable[FileModel] = (),
        cleaning_keywords: Sequence[str] = (),
        raw_binary_hint: Any = None,
        kind: DocumentKind = DocumentKind.STATEMENT,
        override_model: Optional[FileModel] = None,
        contribution_keywords: Optional[Sequence[str]] = None,
    ) -> ExtractionResult:
        """
        Extract transactions from decoded content.

        Args:
            content: Text, list of page texts, or tokenized rows
            file_name: Source file name (provenance only)
            known_models: File models visible to the caller
            cleaning_keywords: Keywords stripped from display labels
            raw_binary_hint: Untouched payload for the async AI fallback
            kind: Statement (date required) or contributor list
            override_model: Apply this model directly, skipping heuristics
            contribution_keywords: Contribution categories (DIZIMO, OFERTA, ...);
                None uses the built-in list

        Returns:
            ExtractionResult with status OK or MODEL_REQUIRED
        """
        text = normalize_raw_content(materialize(content))
        fingerprint = generate_fingerprint(text)
        ctx = ParseContext(
            kind=kind,
            anchor_year=discover_anchor_year(text),
            sample_rows=self.sample_rows,
            contribution_keywords=contribution_keywords,
        )

        if override_model is not None:
            outcome = apply_model(text, override_model, ctx)
            return self._finish(outcome, file_name, fingerprint, ctx, cleaning_keywords, override_model)

        for strategy in self.strategies:
            outcome = strategy.parse(text, ctx)
            logger.debug(
                "Strategy attempted",
                file_name=file_name,
                strategy=strategy.name,
                candidates=len(outcome.rows),
                valid=len(outcome.valid_rows),
            )
            if outcome.valid_rows:
                return self._finish(outcome, file_name, fingerprint, ctx, cleaning_keywords)

        for model in find_matching_models(fingerprint, known_models):
            outcome = apply_model(text, model, ctx)
            if outcome.valid_rows:
                return self._finish(outcome, file_name, fingerprint, ctx, cleaning_keywords, model)
            logger.info("Matched model produced no rows", file_name=file_name, model=model.label)

        logger.info("No extraction path for file", file_name=file_name)
        return ExtractionResult(
            file_name=file_name,
            status=ExtractionStatus.MODEL_REQUIRED,
            fingerprint=fingerprint,
            model_context=self._model_context(text, file_name, fingerprint),
        )

    def extract_contributors(
        self,
        content: Content,
        file_name: str,
        known_models: Iterable[FileModel] = (),
        cleaning_keywords: Sequence[str] = (),
        override_model: Optional[FileModel] = None,
        contribution_keywords: Optional[Sequence[str]] = None,
    ) -> ExtractionResult:
        """Extract a contributor list. The date column is optional."""
        return self.extract(
            content,
            file_name,
            known_models=known_models,
            cleaning_keywords=cleaning_keywords,
            kind=DocumentKind.CONTRIBUTOR_LIST,
            override_model=override_model,
            contribution_keywords=contribution_keywords,
        )

    async def extract_async(
        self,
        content: Content,
        file_name: str,
        known_models: Iterable[FileModel] = (),
        cleaning_keywords: Sequence[str] = (),
        raw_binary_hint: Any = None,
        kind: DocumentKind = DocumentKind.STATEMENT,
        ai_extractor: Optional[AIExtractor] = None,
        progress: Optional[ProgressCallback] = None,
        ai_client: Optional[AIExtractionClient] = None,
        contribution_keywords: Optional[Sequence[str]] = None,
    ) -> ExtractionResult:
        """
        Same as `extract`, with the AI extractor as the last resort.

        The AI path only runs when the sync pass needs a model and both an
        extractor and a binary hint are supplied. A failed AI call leaves
        the MODEL_REQUIRED result in place.
        """
        result = self.extract(
            content,
            file_name,
            known_models=known_models,
            cleaning_keywords=cleaning_keywords,
            raw_binary_hint=raw_binary_hint,
            kind=kind,
            contribution_keywords=contribution_keywords,
        )
        if result.ok or raw_binary_hint is None or (ai_extractor is None and ai_client is None):
            return result

        client = ai_client or AIExtractionClient(ai_extractor)
        try:
            raw_rows = await client.extract(raw_binary_hint, file_name, progress)
        except AIExtractionError as e:
            result.warnings.append(str(e))
            return result

        transactions = self._from_ai_rows(
            raw_rows,
            file_name,
            ParseContext(kind=kind, contribution_keywords=contribution_keywords),
            cleaning_keywords,
        )
        if not transactions:
            result.warnings.append(f"AI extractor returned no usable rows for {file_name}")
            return result

        logger.info("AI fallback used", file_name=file_name, rows=len(transactions))
        ai_result = ExtractionResult(
            file_name=file_name,
            status=ExtractionStatus.OK,
            method=AI_METHOD,
            transactions=transactions,
            fingerprint=result.fingerprint,
            confidence=len(transactions) / len(raw_rows),
            skipped_rows=len(raw_rows) - len(transactions),
        )
        return self._with_contributors(ai_result, kind, cleaning_keywords)

    def _with_contributors(
        self,
        result: ExtractionResult,
        kind: DocumentKind,
        cleaning_keywords: Sequence[str],
    ) -> ExtractionResult:
        if kind == DocumentKind.CONTRIBUTOR_LIST and result.ok:
            result.contributors = to_contributors(result.transactions, cleaning_keywords)
        return result

    def _finish(
        self,
        outcome: StrategyOutcome,
        file_name: str,
        fingerprint: Optional[Fingerprint],
        ctx: ParseContext,
        cleaning_keywords: Sequence[str],
        model: Optional[FileModel] = None,
    ) -> ExtractionResult:
        transactions = []
        for row in outcome.valid_rows:
            transactions.append(self._to_transaction(row, file_name, ctx, cleaning_keywords))

        skipped = outcome.invalid_rows
        for row in skipped:
            logger.debug(
                "Skipping malformed row",
                file_name=file_name,
                row=row.row_index,
                date_raw=row.date_raw,
                amount_raw=row.amount_raw,
            )
        if skipped:
            logger.warning(
                "Malformed rows skipped",
                file_name=file_name,
                method=outcome.name,
                count=len(skipped),
            )
        if outcome.balance_rows:
            logger.warning(
                "Balance rows skipped",
                file_name=file_name,
                method=outcome.name,
                rows=outcome.balance_rows,
            )

        logger.info(
            "File extracted",
            file_name=file_name,
            method=outcome.name,
            rows=len(transactions),
            control_rows=sum(1 for t in transactions if t.is_control),
            confidence=round(outcome.confidence, 3),
        )
        result = ExtractionResult(
            file_name=file_name,
            status=ExtractionStatus.OK,
            method=outcome.name,
            transactions=transactions,
            fingerprint=fingerprint,
            model=model,
            confidence=outcome.confidence,
            skipped_rows=len(skipped) + len(outcome.balance_rows),
        )
        return self._with_contributors(result, outcome.kind, cleaning_keywords)

    def _to_transaction(
        self,
        row: ParsedRow,
        file_name: str,
        ctx: ParseContext,
        cleaning_keywords: Sequence[str],
    ) -> Transaction:
        return Transaction(
            id=transaction_id(row.date, row.description, row.amount, row.row_index),
            date=row.date,
            description=row.description,
            amount=row.amount,
            cleaned_description=clean_description(row.description, cleaning_keywords),
            original_amount=row.amount_raw,
            contribution_type=_contribution_type(row, ctx.contribution_keywords),
            is_control=is_control_row(row.description),
            source_file=file_name,
            source_row=row.row_index,
        )

    def _from_ai_rows(
        self,
        raw_rows: List[Any],
        file_name: str,
        ctx: ParseContext,
        cleaning_keywords: Sequence[str],
    ) -> List[Transaction]:
        transactions = []
        for index, item in enumerate(raw_rows):
            if isinstance(item, Transaction):
                row = ParsedRow(
                    row_index=index,
                    description=item.description,
                    amount_raw=item.original_amount,
                    type_raw=item.contribution_type,
                    date=item.date,
                    amount=item.amount,
                )
            elif isinstance(item, dict):
                row = ParsedRow.build(
                    row_index=index,
                    description=str(item.get("description") or item.get("name") or ""),
                    date_raw=str(item.get("date") or ""),
                    amount_raw=str(item.get("amount") if item.get("amount") is not None else ""),
                    type_raw=item.get("contribution_type"),
                    ctx=ctx,
                )
            else:
                logger.warning("Ignoring AI row of unexpected type", row=index, type=type(item).__name__)
                continue

            if not row.is_valid(ctx.kind):
                logger.debug("Skipping malformed AI row", file_name=file_name, row=index)
                continue
            if is_balance_row(row.description):
                continue
            transactions.append(self._to_transaction(row, file_name, ctx, cleaning_keywords))
        return transactions

    def _model_context(
        self,
        text: str,
        file_name: str,
        fingerprint: Optional[Fingerprint],
    ) -> Dict[str, Any]:
        """Everything a training workflow needs to build a new file model."""
        lines = content_lines(text)
        delimiter = fingerprint.delimiter if fingerprint else ";"
        return {
            "file_name": file_name,
            "fingerprint": fingerprint.to_dict() if fingerprint else None,
            "delimiter": delimiter,
            "sample_rows": split_grid(lines[: self.sample_rows], delimiter),
            "snippet": snippet(text, self.snippet_lines),
        }


def to_contributors(
    transactions: Iterable[Transaction],
    cleaning_keywords: Sequence[str] = (),
) -> List[Contributor]:
    """Convert contributor-list rows into Contributor records."""
    contributors = []
    for tx in transactions:
        if tx.amount is None:
            continue
        contributors.append(Contributor(
            name=tx.description,
            amount=tx.amount,
            cleaned_name=clean_description(tx.description, cleaning_keywords),
            normalized_name=normalize(tx.description, cleaning_keywords),
            date=tx.date,
            original_amount=tx.original_amount,
            contribution_type=tx.contribution_type,
        ))
    return contributors
