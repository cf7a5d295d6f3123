"""Learned file model (column-mapping template) models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import uuid4

from .enums import ModelStatus


@dataclass(frozen=True)
class Fingerprint:
    """
    Structural signature of a tabular file layout.

    header_hash ignores spacing, punctuation and delimiters so the same
    header exported as CSV or as spaced text hashes identically.
    data_topology is one letter per cell of a representative data row:
    D=date, N=number, S=string, E=empty.
    """
    column_count: int
    delimiter: str
    header_hash: Optional[str]
    data_topology: str
    canonical_signature: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "column_count": self.column_count,
            "delimiter": self.delimiter,
            "header_hash": self.header_hash,
            "data_topology": self.data_topology,
            "canonical_signature": self.canonical_signature,
        }


@dataclass(frozen=True)
class ColumnMapping:
    """Positional column assignments recorded when a model is trained."""
    date_column: int
    description_column: int
    amount_column: int
    type_column: Optional[int] = None
    skip_rows_start: int = 0
    skip_rows_end: int = 0


@dataclass(frozen=True)
class ParsingRules:
    """Formatting rules applied together with the mapping."""
    row_filters: List[str] = field(default_factory=list)  # Rows containing these are dropped
    date_format: Optional[str] = None        # strptime format, e.g. "%Y%m%d"
    decimal_separator: Optional[str] = None  # "," or "." when known


@dataclass
class FileModel:
    """
    A learned column-mapping template.

    Versions of the same template share a lineage_id; only one version per
    lineage is active at a time. Refinements supersede, never delete.
    """
    name: str
    fingerprint: Fingerprint
    mapping: ColumnMapping
    id: str = field(default_factory=lambda: str(uuid4()))
    owner_id: Optional[str] = None
    version: int = 1
    lineage_id: str = field(default_factory=lambda: str(uuid4()))
    is_active: bool = True
    is_global: bool = False
    status: ModelStatus = ModelStatus.DRAFT
    parsing_rules: ParsingRules = field(default_factory=ParsingRules)
    snippet: str = ""
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_used_at: Optional[datetime] = None

    @property
    def label(self) -> str:
        return f"{self.name} v{self.version}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "version": self.version,
            "lineage_id": self.lineage_id,
            "is_active": self.is_active,
            "is_global": self.is_global,
            "status": self.status.value,
            "fingerprint": self.fingerprint.to_dict(),
            "mapping": {
                "date_column": self.mapping.date_column,
                "description_column": self.mapping.description_column,
                "amount_column": self.mapping.amount_column,
                "type_column": self.mapping.type_column,
                "skip_rows_start": self.mapping.skip_rows_start,
                "skip_rows_end": self.mapping.skip_rows_end,
            },
            "parsing_rules": {
                "row_filters": list(self.parsing_rules.row_filters),
                "date_format": self.parsing_rules.date_format,
                "decimal_separator": self.parsing_rules.decimal_separator,
            },
            "snippet": self.snippet,
            "created_at": self.created_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
        }
