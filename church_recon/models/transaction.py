"""Transaction, contributor and church models."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional, List, Dict, Any

GHOST_PREFIX = "ghost-"
PLACEHOLDER_CHURCH_ID = "unidentified"
CENTS = Decimal("0.01")


def to_cents(value: Any) -> Optional[Decimal]:
    """Signed Decimal quantized to cents. Floats go through str to keep their printed value."""
    if value is None:
        return None
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS)


@dataclass(frozen=True)
class Church:
    """Organizational unit a contribution is attributed to."""
    id: str
    name: str
    address: str = ""
    pastor: str = ""
    logo_url: str = ""

    @property
    def is_placeholder(self) -> bool:
        """True for the reserved bucket of unassigned records."""
        return self.id == PLACEHOLDER_CHURCH_ID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "pastor": self.pastor,
            "logo_url": self.logo_url,
        }


# Never a real unit: excluded from capacity and per-church reporting,
# but still addressable so unidentified income can be grouped under it.
PLACEHOLDER_CHURCH = Church(id=PLACEHOLDER_CHURCH_ID, name="---")


@dataclass(frozen=True)
class Transaction:
    """
    A bank movement produced by extraction.

    `amount` is signed (positive=income, negative=expense) and quantized
    to cents. `date` or `amount` is None when the source row was malformed;
    such transactions are reported but never scored.
    """
    id: str
    date: Optional[date]
    description: str
    amount: Optional[Decimal]
    cleaned_description: str = ""
    original_amount: str = ""
    contribution_type: Optional[str] = None
    # Bank-generated line (fee, interest, redemption, ...)
    is_control: bool = False

    # Provenance
    source_file: Optional[str] = None
    source_row: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "amount", to_cents(self.amount))

    @property
    def is_ghost(self) -> bool:
        """Synthetic transaction standing in for an expected contribution."""
        return self.id.startswith(GHOST_PREFIX)

    @property
    def is_malformed(self) -> bool:
        return self.date is None or self.amount is None

    @property
    def is_income(self) -> bool:
        return self.amount is not None and self.amount > 0

    @property
    def is_expense(self) -> bool:
        return self.amount is not None and self.amount < 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "date": self.date.isoformat() if self.date else None,
            "description": self.description,
            "cleaned_description": self.cleaned_description,
            "amount": str(self.amount) if self.amount is not None else None,
            "original_amount": self.original_amount,
            "contribution_type": self.contribution_type,
            "is_control": self.is_control,
            "source_file": self.source_file,
            "source_row": self.source_row,
        }


@dataclass(frozen=True)
class Contributor:
    """An expected entry in a church's contributor list."""
    name: str
    amount: Decimal
    cleaned_name: str = ""
    normalized_name: str = ""
    date: Optional[date] = None
    original_amount: str = ""
    contribution_type: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "amount", to_cents(self.amount))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "cleaned_name": self.cleaned_name,
            "normalized_name": self.normalized_name,
            "amount": str(self.amount),
            "date": self.date.isoformat() if self.date else None,
            "original_amount": self.original_amount,
            "contribution_type": self.contribution_type,
        }


@dataclass
class ContributorGroup:
    """One contributor list, attributed to a single church."""
    unit: Church
    contributors: List[Contributor] = field(default_factory=list)
    file_name: Optional[str] = None
