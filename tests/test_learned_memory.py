"""
Tests for the Learned Association Memory.
"""

import pytest

from church_recon.models import PLACEHOLDER_CHURCH, LearnedAssociation
from church_recon.reconciliation import LearnedAssociationMemory


@pytest.fixture
def joao(make_contributor):
    return make_contributor("João Silva", "100.00")


class TestLearnedAssociationMemory:
    """Keyed upserts and owner scoping."""

    def test_upsert_and_lookup(self, joao, church_centro):
        memory = LearnedAssociationMemory()
        association = memory.upsert("PIX RECEBIDO JOAO S", joao, church_centro)

        assert association.normalized_description == "pix recebido joao s"
        assert association.contributor_normalized_name == "joao silva"
        assert memory.lookup("pix recebido joao s") == association
        assert memory.lookup_description("Pix Recebido João S") == association

    def test_upsert_is_idempotent(self, joao, church_centro):
        memory = LearnedAssociationMemory()
        first = memory.upsert("PIX JOAO", joao, church_centro)
        second = memory.upsert("PIX JOAO", joao, church_centro)

        assert first == second
        assert len(memory) == 1

    def test_upsert_replaces_target(self, joao, church_centro, church_norte):
        memory = LearnedAssociationMemory()
        memory.upsert("PIX JOAO", joao, church_centro)
        memory.upsert("PIX JOAO", joao, church_norte)

        assert len(memory) == 1
        assert memory.lookup("pix joao").church_id == church_norte.id

    def test_ignored_keywords_shape_the_key(self, joao, church_centro):
        memory = LearnedAssociationMemory(ignored_keywords=["pix recebido"])
        memory.upsert("PIX RECEBIDO JOAO", joao, church_centro)

        assert memory.lookup("joao") is not None
        assert memory.key_for("PIX RECEBIDO JOAO") == "joao"

    def test_empty_key_and_placeholder_not_learned(self, joao, church_centro):
        memory = LearnedAssociationMemory(ignored_keywords=["pix"])

        assert memory.upsert("PIX", joao, church_centro) is None
        assert memory.upsert("PIX JOAO", joao, PLACEHOLDER_CHURCH) is None
        assert len(memory) == 0

    def test_owner_entry_shadows_shared_one(self, joao, church_centro, church_norte):
        memory = LearnedAssociationMemory()
        memory.upsert("PIX JOAO", joao, church_centro)
        memory.upsert("PIX JOAO", joao, church_norte, owner_id="tesouraria")

        assert memory.lookup("pix joao", owner_id="tesouraria").church_id == church_norte.id
        assert memory.lookup("pix joao", owner_id="outra").church_id == church_centro.id
        assert memory.lookup("pix joao").church_id == church_centro.id
        assert [a.church_id for a in memory.for_owner("tesouraria")] == [church_norte.id]
        assert [a.church_id for a in memory.for_owner(None)] == [church_centro.id]

    def test_lookup_without_owner_finds_owned_entry(self, joao, church_centro):
        memory = LearnedAssociationMemory()
        memory.upsert("PIX JOAO", joao, church_centro, owner_id="tesouraria")

        assert memory.lookup("pix joao").owner_id == "tesouraria"

    def test_forget(self, joao, church_centro):
        memory = LearnedAssociationMemory()
        memory.upsert("PIX JOAO", joao, church_centro)

        assert memory.forget("PIX JOAO")
        assert not memory.forget("PIX JOAO")
        assert memory.lookup("pix joao") is None

    def test_loads_existing_associations(self):
        stored = LearnedAssociation(
            normalized_description="pix joao",
            contributor_normalized_name="joao silva",
            church_id="igreja-centro",
        )
        memory = LearnedAssociationMemory(associations=[stored])

        assert memory.to_list() == [stored]
        assert list(memory) == [stored]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
