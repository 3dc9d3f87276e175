"""
Child Reconciliation Planning

A bill's expense and payment lists are replaced, not appended to: the
incoming list is the new source of truth. This module turns "what the store
has" and "what the user sent" into the inserts, updates and deletes that make
them equal. It is pure - stores run it inside their transaction, the writer
runs it against the last known aggregate to describe a save before sending it.
"""

from collections.abc import Iterable, Sequence
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ChildPlan(BaseModel):
    """Set difference between stored children and an incoming list."""

    inserts: list[int] = Field(
        default_factory=list,
        description="Positions in the incoming list that have no identity yet"
    )
    updates: list[int] = Field(
        default_factory=list,
        description="Positions in the incoming list that overwrite a stored child"
    )
    deletes: list[UUID] = Field(
        default_factory=list,
        description="Stored identities the incoming list no longer mentions"
    )
    unknown: list[UUID] = Field(
        default_factory=list,
        description="Incoming identities the store does not hold for this bill"
    )
    duplicates: list[UUID] = Field(
        default_factory=list,
        description="Identities that appear more than once in the incoming list"
    )

    @property
    def is_consistent(self) -> bool:
        """False when the incoming list refers to children it cannot own."""
        return not self.unknown and not self.duplicates

    @property
    def is_noop(self) -> bool:
        return not self.inserts and not self.deletes

    def summary(self) -> dict[str, int]:
        return {
            "inserts": len(self.inserts),
            "updates": len(self.updates),
            "deletes": len(self.deletes),
        }


def plan_children(
    stored_ids: Iterable[UUID],
    incoming_ids: Sequence[Optional[UUID]],
) -> ChildPlan:
    """
    Plan the reconciliation of one child collection.

    Args:
        stored_ids: Identities currently attached to the bill in the store
        incoming_ids: Identity of each incoming child, None when unassigned

    Returns:
        ChildPlan with insert/update positions (input order) and the stored
        identities to delete
    """
    stored = list(stored_ids)
    stored_set = set(stored)

    plan = ChildPlan()
    seen: set[UUID] = set()

    for position, child_id in enumerate(incoming_ids):
        if child_id is None:
            plan.inserts.append(position)
            continue
        if child_id in seen:
            plan.duplicates.append(child_id)
            continue
        seen.add(child_id)
        if child_id in stored_set:
            plan.updates.append(position)
        else:
            plan.unknown.append(child_id)

    plan.deletes = [child_id for child_id in stored if child_id not in seen]
    return plan
