"""
In-memory File Model Registry.

Owned by the session layer. Persistence stays outside: callers load models
into the registry and read them back with `to_list()`.
"""

from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

import structlog

from ..exceptions import (
    DuplicateLineageError,
    FileModelRegistryError,
    InvalidFingerprintError,
    ModelNotFoundError,
)
from ..ingestion.fingerprint import (
    Content,
    find_matching_models,
    generate_fingerprint,
    materialize,
    normalize_raw_content,
)
from ..models import FileModel, Fingerprint, ModelStatus

logger = structlog.get_logger()

# Fields a caller may not change through update()
_IMMUTABLE_FIELDS = {"id", "lineage_id", "version", "owner_id"}


class FileModelRegistry:
    """
    Versioned store of trained file models.

    At most one version per lineage is active. Writes validate before
    touching state, so a rejected write never disturbs any lineage. The
    fingerprint index is rebuilt lazily after every write.
    """

    def __init__(self, models: Iterable[FileModel] = ()):
        self._models: Dict[str, FileModel] = {}
        self._fingerprint_index: Optional[Dict[Tuple[int, Optional[str]], List[str]]] = None
        for model in models:
            self._models[model.id] = model

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._models

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_fingerprint(fingerprint: Fingerprint) -> None:
        if fingerprint is None or fingerprint.column_count < 1:
            raise InvalidFingerprintError("Fingerprint must describe at least one column")
        if not fingerprint.delimiter:
            raise InvalidFingerprintError("Fingerprint has no delimiter")

    def _lineage(self, lineage_id: str) -> List[FileModel]:
        return [m for m in self._models.values() if m.lineage_id == lineage_id]

    def _validate_lineage(self, model: FileModel) -> None:
        for existing in self._lineage(model.lineage_id):
            if existing.id == model.id:
                continue
            if existing.owner_id != model.owner_id:
                raise DuplicateLineageError(
                    f"Lineage {model.lineage_id} belongs to another owner"
                )
            if existing.version == model.version:
                raise DuplicateLineageError(
                    f"Lineage {model.lineage_id} already has version {model.version}"
                )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _deactivate_lineage(self, lineage_id: str, keep_id: str) -> None:
        """Store inactive copies of every other active version of a lineage."""
        for existing in self._lineage(lineage_id):
            if existing.id != keep_id and existing.is_active:
                self._models[existing.id] = replace(existing, is_active=False)
                logger.info(
                    "File model version deactivated",
                    model_id=existing.id,
                    lineage_id=existing.lineage_id,
                    version=existing.version,
                )

    def save(self, model: FileModel) -> FileModel:
        """
        Store a model as the active version of its lineage.

        Other versions of the lineage are deactivated first.

        Raises:
            InvalidFingerprintError: Fingerprint has no columns or delimiter
            DuplicateLineageError: Version already stored, or foreign lineage
        """
        self._validate_fingerprint(model.fingerprint)
        self._validate_lineage(model)

        self._deactivate_lineage(model.lineage_id, keep_id=model.id)
        model = model if model.is_active else replace(model, is_active=True)
        self._models[model.id] = model
        self._invalidate()

        logger.info(
            "File model saved",
            model_id=model.id,
            name=model.name,
            lineage_id=model.lineage_id,
            version=model.version,
            owner_id=model.owner_id,
        )
        return model

    def update(self, model_id: str, **changes) -> FileModel:
        """
        Apply a partial update to a stored model.

        Identity fields (id, lineage, version, owner) cannot change; use
        `refine` to create a new version. Activating a model deactivates
        the rest of its lineage.
        """
        current = self.get(model_id)

        forbidden = _IMMUTABLE_FIELDS.intersection(changes)
        if forbidden:
            raise FileModelRegistryError(
                f"Cannot change {', '.join(sorted(forbidden))} through update; use refine"
            )

        updated = replace(current, **changes)
        self._validate_fingerprint(updated.fingerprint)

        if updated.is_active and not current.is_active:
            self._deactivate_lineage(updated.lineage_id, keep_id=model_id)

        self._models[model_id] = updated
        self._invalidate()
        logger.info("File model updated", model_id=model_id, fields=sorted(changes))
        return updated

    def refine(self, model_id: str, **changes) -> FileModel:
        """
        Create version n+1 of a model's lineage with the given changes.

        The previous version is superseded (deactivated), never deleted.
        """
        current = self.get(model_id)
        latest = max(m.version for m in self._lineage(current.lineage_id))

        forbidden = {"id", "lineage_id", "version"}.intersection(changes)
        if forbidden:
            raise FileModelRegistryError(
                f"Cannot set {', '.join(sorted(forbidden))} on a refinement"
            )

        fields = {
            "id": str(uuid4()),
            "created_at": datetime.utcnow(),
            "last_used_at": None,
            "version": latest + 1,
            "status": ModelStatus.DRAFT,
        }
        fields.update(changes)
        refined = replace(current, **fields)
        return self.save(refined)

    def delete(self, model_id: str) -> FileModel:
        """Remove one version. Other versions of the lineage are untouched."""
        model = self.get(model_id)
        del self._models[model_id]
        self._invalidate()
        logger.info("File model deleted", model_id=model_id, lineage_id=model.lineage_id)
        return model

    def approve(self, model_id: str) -> FileModel:
        return self.update(model_id, status=ModelStatus.APPROVED)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, model_id: str) -> FileModel:
        try:
            return self._models[model_id]
        except KeyError:
            raise ModelNotFoundError(f"File model {model_id} not found") from None

    def list_for(self, owner_id: Optional[str]) -> List[FileModel]:
        """
        Models visible to an owner.

        Own models (every version) plus other owners' global models that
        are currently active.
        """
        visible = [
            m for m in self._models.values()
            if m.owner_id == owner_id or (m.is_global and m.is_active)
        ]
        visible.sort(key=lambda m: (m.name, m.lineage_id, m.version))
        return visible

    def lineage(self, lineage_id: str) -> List[FileModel]:
        return sorted(self._lineage(lineage_id), key=lambda m: m.version)

    def find_for_content(self, content: Content, owner_id: Optional[str] = None) -> List[FileModel]:
        """Active visible models whose fingerprint matches the content."""
        fingerprint = generate_fingerprint(normalize_raw_content(materialize(content)))
        if fingerprint is None:
            return []

        candidate_ids = set(self._index().get((fingerprint.column_count, fingerprint.header_hash), []))
        visible = self.list_for(owner_id)
        # Header-keyed candidates first, topology matches after
        ordered = [m for m in visible if m.id in candidate_ids] + [
            m for m in visible if m.id not in candidate_ids
        ]
        return find_matching_models(fingerprint, ordered)

    def to_list(self) -> List[FileModel]:
        return list(self._models.values())

    # ------------------------------------------------------------------
    # Fingerprint index
    # ------------------------------------------------------------------

    def _index(self) -> Dict[Tuple[int, Optional[str]], List[str]]:
        if self._fingerprint_index is None:
            index: Dict[Tuple[int, Optional[str]], List[str]] = {}
            for model in self._models.values():
                if not model.is_active:
                    continue
                key = (model.fingerprint.column_count, model.fingerprint.header_hash)
                index.setdefault(key, []).append(model.id)
            self._fingerprint_index = index
        return self._fingerprint_index

    def _invalidate(self) -> None:
        self._fingerprint_index = None
