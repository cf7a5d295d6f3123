"""
Learned Association Memory.

Remembers which contributor and church a bank description belongs to,
learned from manual confirmations. Keyed by normalized description per
owner, never by amount or date: a recurring transfer keeps resolving the
same way when its amount drifts.
"""

from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from ..models import Church, Contributor, LearnedAssociation, MatchResult, ReconciliationStatus
from ..utils.text_normalizer import normalize

logger = structlog.get_logger()

Key = Tuple[Optional[str], str]


class LearnedAssociationMemory:
    """
    Session-owned association store.

    All writes are keyed upserts, so replaying a confirmation is harmless.
    """

    def __init__(
        self,
        ignored_keywords: Iterable[str] = (),
        associations: Iterable[LearnedAssociation] = (),
    ):
        self.ignored_keywords = list(ignored_keywords)
        self._entries: Dict[Key, LearnedAssociation] = {}
        for association in associations:
            self._entries[(association.owner_id, association.normalized_description)] = association

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries.values())

    def key_for(self, description: Optional[str]) -> str:
        return normalize(description, self.ignored_keywords)

    def upsert(
        self,
        transaction_description: str,
        contributor: Contributor,
        unit: Church,
        owner_id: Optional[str] = None,
    ) -> Optional[LearnedAssociation]:
        """
        Insert or update the association for a description.

        Descriptions that normalize to nothing are not learned: an empty
        key would claim every blank description.
        """
        key = self.key_for(transaction_description)
        if not key:
            logger.info("Skipping association with empty key", description=transaction_description)
            return None
        if unit.is_placeholder:
            logger.info("Skipping association to placeholder church", description=transaction_description)
            return None

        association = LearnedAssociation(
            normalized_description=key,
            contributor_normalized_name=normalize(contributor.name, self.ignored_keywords),
            church_id=unit.id,
            owner_id=owner_id,
        )

        existing = self._entries.get((owner_id, key))
        if existing == association:
            return existing

        self._entries[(owner_id, key)] = association
        logger.info(
            "Association updated" if existing else "Association learned",
            key=key,
            church_id=unit.id,
            contributor=association.contributor_normalized_name,
            owner_id=owner_id,
        )
        return association

    def learn_from(self, result: MatchResult, owner_id: Optional[str] = None) -> Optional[LearnedAssociation]:
        """Upsert from an identified result. Other results are ignored."""
        if (
            result.status != ReconciliationStatus.IDENTIFIED
            or result.contributor is None
            or result.church.is_placeholder
            or result.is_ghost
        ):
            return None
        return self.upsert(result.transaction.description, result.contributor, result.church, owner_id)

    def lookup(self, normalized_description: str, owner_id: Optional[str] = None) -> Optional[LearnedAssociation]:
        """
        Pure key lookup.

        With an owner, that owner's entry wins over an ownerless one. Without
        an owner, the first entry stored for the key is returned.
        """
        if owner_id is not None:
            return (
                self._entries.get((owner_id, normalized_description))
                or self._entries.get((None, normalized_description))
            )
        found = self._entries.get((None, normalized_description))
        if found is not None:
            return found
        for (_, key), association in self._entries.items():
            if key == normalized_description:
                return association
        return None

    def lookup_description(self, description: str, owner_id: Optional[str] = None) -> Optional[LearnedAssociation]:
        return self.lookup(self.key_for(description), owner_id)

    def visible(self, normalized_description: str, owner_id: Optional[str] = None) -> Optional[LearnedAssociation]:
        """Entry an owner sees for a key: its own, else the shared one. Same scope as `for_owner`."""
        if owner_id is not None:
            found = self._entries.get((owner_id, normalized_description))
            if found is not None:
                return found
        return self._entries.get((None, normalized_description))

    def forget(self, transaction_description: str, owner_id: Optional[str] = None) -> bool:
        """Remove the association for a description. Returns True if one existed."""
        key = self.key_for(transaction_description)
        removed = self._entries.pop((owner_id, key), None)
        if removed is not None:
            logger.info("Association forgotten", key=key, owner_id=owner_id)
        return removed is not None

    def for_owner(self, owner_id: Optional[str]) -> List[LearnedAssociation]:
        """Associations visible to an owner, own entries shadowing shared ones."""
        merged: Dict[str, LearnedAssociation] = {}
        for (entry_owner, key), association in self._entries.items():
            if entry_owner is None:
                merged.setdefault(key, association)
        for (entry_owner, key), association in self._entries.items():
            if owner_id is not None and entry_owner == owner_id:
                merged[key] = association
        return list(merged.values())

    def to_list(self) -> List[LearnedAssociation]:
        return list(self._entries.values())
