"""
Shared fixtures for the reconciliation tests.
"""

import pytest
from datetime import date
from decimal import Decimal

from church_recon.models import (
    Church,
    Contributor,
    ContributorGroup,
    MatchOptions,
    Transaction,
)
from church_recon.utils.text_normalizer import normalize


@pytest.fixture
def church_centro():
    return Church(id="igreja-centro", name="Igreja Centro")


@pytest.fixture
def church_norte():
    return Church(id="igreja-norte", name="Igreja Norte")


@pytest.fixture
def options():
    return MatchOptions(similarity_threshold=55, day_tolerance=2, suggestion_floor=40)


@pytest.fixture
def make_tx():
    """Factory for bank transactions."""
    def _make(tx_id, description, amount, tx_date=date(2024, 7, 15)):
        return Transaction(
            id=tx_id,
            date=tx_date,
            description=description,
            amount=Decimal(amount) if amount is not None else None,
            cleaned_description=description,
            original_amount=str(amount),
        )
    return _make


@pytest.fixture
def make_contributor():
    """Factory for contributor list entries."""
    def _make(name, amount, entry_date=None, contribution_type=None):
        return Contributor(
            name=name,
            amount=Decimal(amount),
            cleaned_name=name,
            normalized_name=normalize(name),
            date=entry_date,
            original_amount=str(amount),
            contribution_type=contribution_type,
        )
    return _make


@pytest.fixture
def centro_group(church_centro, make_contributor):
    return ContributorGroup(
        unit=church_centro,
        contributors=[
            make_contributor("João Silva", "100.00", date(2024, 7, 15), "DIZIMO"),
            make_contributor("Maria Souza", "50.00", date(2024, 7, 16), "OFERTA"),
        ],
        file_name="centro.csv",
    )
