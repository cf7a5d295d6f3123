"""
Tests for the File Model Registry.
"""

import pytest

from church_recon.exceptions import (
    DuplicateLineageError,
    FileModelRegistryError,
    InvalidFingerprintError,
    ModelNotFoundError,
)
from church_recon.ingestion import generate_fingerprint, normalize_raw_content
from church_recon.models import ColumnMapping, FileModel, Fingerprint, ModelStatus
from church_recon.registry import FileModelRegistry

PIPE_STATEMENT = "COD|DT|HIST|VLR\nA1|20240715|JOAO SILVA|100,00\nA2|20240716|MARIA SOUZA|50,00"


@pytest.fixture
def fingerprint():
    return generate_fingerprint(normalize_raw_content(PIPE_STATEMENT))


@pytest.fixture
def mapping():
    return ColumnMapping(date_column=1, description_column=2, amount_column=3, skip_rows_start=1)


@pytest.fixture
def registry():
    return FileModelRegistry()


@pytest.fixture
def saved_model(registry, fingerprint, mapping):
    return registry.save(FileModel(
        name="Banco X",
        fingerprint=fingerprint,
        mapping=mapping,
        owner_id="tesouraria",
    ))


class TestFileModelRegistry:
    """Versioned model storage."""

    def test_save_and_get(self, registry, saved_model):
        assert registry.get(saved_model.id) is saved_model
        assert saved_model.is_active
        assert len(registry) == 1

    def test_missing_model(self, registry):
        with pytest.raises(ModelNotFoundError):
            registry.get("nope")
        # Also usable as a KeyError
        with pytest.raises(KeyError):
            registry.get("nope")

    def test_invalid_fingerprint_rejected(self, registry, mapping):
        broken = Fingerprint(column_count=0, delimiter=";", header_hash=None, data_topology="")
        with pytest.raises(InvalidFingerprintError):
            registry.save(FileModel(name="Broken", fingerprint=broken, mapping=mapping))
        assert len(registry) == 0

    def test_refine_supersedes_previous_version(self, registry, saved_model):
        refined = registry.refine(saved_model.id, name="Banco X (ajustado)")

        assert refined.version == 2
        assert refined.lineage_id == saved_model.lineage_id
        assert refined.id != saved_model.id
        assert refined.status == ModelStatus.DRAFT
        assert refined.is_active
        assert not registry.get(saved_model.id).is_active
        assert [m.version for m in registry.lineage(saved_model.lineage_id)] == [1, 2]

    def test_save_leaves_caller_objects_untouched(self, registry, saved_model, fingerprint, mapping):
        draft = FileModel(
            name="Banco X v2",
            fingerprint=fingerprint,
            mapping=mapping,
            owner_id="tesouraria",
            lineage_id=saved_model.lineage_id,
            version=2,
            is_active=False,
        )
        stored = registry.save(draft)

        assert stored.is_active
        assert registry.get(draft.id).is_active
        assert not draft.is_active
        # The superseded version is replaced in storage, not flipped in place
        assert saved_model.is_active
        assert not registry.get(saved_model.id).is_active

    def test_duplicate_version_leaves_lineage_untouched(self, registry, saved_model, fingerprint, mapping):
        clash = FileModel(
            name="Clash",
            fingerprint=fingerprint,
            mapping=mapping,
            owner_id="tesouraria",
            lineage_id=saved_model.lineage_id,
            version=1,
        )
        with pytest.raises(DuplicateLineageError):
            registry.save(clash)

        assert registry.get(saved_model.id).is_active
        assert clash.id not in registry

    def test_foreign_lineage_rejected(self, registry, saved_model, fingerprint, mapping):
        with pytest.raises(DuplicateLineageError):
            registry.save(FileModel(
                name="Other",
                fingerprint=fingerprint,
                mapping=mapping,
                owner_id="someone-else",
                lineage_id=saved_model.lineage_id,
                version=2,
            ))

    def test_update_cannot_change_identity(self, registry, saved_model):
        with pytest.raises(FileModelRegistryError):
            registry.update(saved_model.id, version=7)

        updated = registry.update(saved_model.id, name="Renomeado")
        assert updated.name == "Renomeado"
        assert updated.version == 1

    def test_approve(self, registry, saved_model):
        assert registry.approve(saved_model.id).status == ModelStatus.APPROVED

    def test_delete_keeps_other_versions(self, registry, saved_model):
        refined = registry.refine(saved_model.id)
        registry.delete(refined.id)

        assert refined.id not in registry
        assert saved_model.id in registry

    def test_list_for_owner_and_global(self, registry, saved_model, fingerprint, mapping):
        shared = registry.save(FileModel(
            name="Modelo Global",
            fingerprint=fingerprint,
            mapping=mapping,
            owner_id="admin",
            is_global=True,
        ))
        registry.save(FileModel(
            name="Privado",
            fingerprint=fingerprint,
            mapping=mapping,
            owner_id="admin",
        ))

        visible = {m.id for m in registry.list_for("tesouraria")}
        assert visible == {saved_model.id, shared.id}

    def test_find_for_content(self, registry, saved_model):
        matches = registry.find_for_content(PIPE_STATEMENT, owner_id="tesouraria")
        assert [m.id for m in matches] == [saved_model.id]

        # Superseded versions no longer match
        refined = registry.refine(saved_model.id)
        matches = registry.find_for_content(PIPE_STATEMENT, owner_id="tesouraria")
        assert [m.id for m in matches] == [refined.id]

    def test_find_for_unrelated_content(self, registry, saved_model):
        assert registry.find_for_content("Nome;Valor\nJoao;10,00", owner_id="tesouraria") == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
