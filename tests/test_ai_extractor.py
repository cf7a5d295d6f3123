"""
Tests for the AI extraction fallback.
"""

import pytest
from unittest.mock import AsyncMock
from datetime import date
from decimal import Decimal

from church_recon.exceptions import AIExtractionError
from church_recon.ingestion import AI_METHOD, ExtractionStrategySelector
from church_recon.integrations import AIExtractionClient
from church_recon.models import (
    AuditAction,
    ExtractionStatus,
    ReconciliationContext,
    ReconciliationInputs,
    SourceFile,
)
from church_recon.reconciliation import IncrementalReconciliationController

UNREADABLE = "Relatorio gerencial\nsem movimentos\nfim"

AI_ROWS = [
    {"date": "15/07/2024", "description": "PIX JOAO SILVA", "amount": "100,00"},
    {"date": "", "description": "SEM DATA", "amount": "10,00"},
]


def client_for(extractor, attempts=3):
    return AIExtractionClient(extractor, max_attempts=attempts, wait_min=0, wait_max=0)


class TestAIExtractionClient:
    """Retries and output validation."""

    @pytest.mark.asyncio
    async def test_returns_rows(self):
        extractor = AsyncMock(return_value=AI_ROWS)

        rows = await client_for(extractor).extract(b"%PDF", "extrato.pdf")

        assert rows == AI_ROWS
        extractor.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self):
        extractor = AsyncMock(side_effect=[ConnectionError("timeout"), AI_ROWS])

        rows = await client_for(extractor).extract(b"%PDF", "extrato.pdf")

        assert rows == AI_ROWS
        assert extractor.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        extractor = AsyncMock(side_effect=ConnectionError("down"))

        with pytest.raises(AIExtractionError):
            await client_for(extractor, attempts=2).extract(b"%PDF", "extrato.pdf")
        assert extractor.await_count == 2

    @pytest.mark.asyncio
    async def test_rejects_non_list_output(self):
        extractor = AsyncMock(return_value={"rows": []})

        with pytest.raises(AIExtractionError):
            await client_for(extractor).extract(b"%PDF", "extrato.pdf")


class TestAsyncExtraction:
    """AI as the last extraction resort."""

    @pytest.mark.asyncio
    async def test_fallback_used_when_model_required(self):
        selector = ExtractionStrategySelector()
        client = client_for(AsyncMock(return_value=AI_ROWS))

        result = await selector.extract_async(
            UNREADABLE, "extrato.pdf", raw_binary_hint=b"%PDF", ai_client=client,
        )

        assert result.status == ExtractionStatus.OK
        assert result.method == AI_METHOD
        assert len(result.transactions) == 1
        assert result.transactions[0].date == date(2024, 7, 15)
        assert result.transactions[0].amount == Decimal("100.00")
        assert result.skipped_rows == 1

    @pytest.mark.asyncio
    async def test_not_called_without_hint(self):
        extractor = AsyncMock(return_value=AI_ROWS)

        result = await ExtractionStrategySelector().extract_async(
            UNREADABLE, "extrato.pdf", ai_extractor=extractor,
        )

        assert result.status == ExtractionStatus.MODEL_REQUIRED
        extractor.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_downgrades_to_model_required(self):
        client = client_for(AsyncMock(side_effect=ConnectionError("down")), attempts=1)

        result = await ExtractionStrategySelector().extract_async(
            UNREADABLE, "extrato.pdf", raw_binary_hint=b"%PDF", ai_client=client,
        )

        assert result.status == ExtractionStatus.MODEL_REQUIRED
        assert result.warnings

    @pytest.mark.asyncio
    async def test_controller_records_ai_fallback(self, options):
        extractor = AsyncMock(return_value=AI_ROWS)
        controller = IncrementalReconciliationController()
        inputs = ReconciliationInputs(statement=SourceFile("extrato.pdf", UNREADABLE, raw_binary_hint=b"%PDF"))

        outcome = await controller.reconcile_async(
            [], inputs, ReconciliationContext(options=options), ai_extractor=extractor,
        )

        assert outcome.status == ExtractionStatus.OK
        assert outcome.extraction_methods == {"extrato.pdf": AI_METHOD}
        assert any(e.action == AuditAction.AI_FALLBACK_USED for e in outcome.audit_log)
        assert len(outcome.results) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
