"""
regtrack.lifecycle
==================

State-transition guard for one party's verification status.

Who is moving the status matters: an upload may only lift a status out of
Pending, deleting the last upload may only drop it back from Submitted,
and verifiers may do anything except jump a rejected task straight to
Verified (it has to be re-opened first).
"""

from __future__ import annotations

from enum import Enum

from .models import Party, VerificationStatus, ViewerRole

S = VerificationStatus


class Actor(Enum):
    UPLOAD = "upload"
    DELETE = "delete"
    VERIFIER = "verifier"


# ---------------------------------------------------------------------
# Allowed transitions per actor: source status → set[valid target statuses]
# ---------------------------------------------------------------------
RULES = {
    Actor.UPLOAD: {
        S.PENDING: {S.SUBMITTED},
    },
    Actor.DELETE: {
        S.SUBMITTED: {S.PENDING},
    },
    Actor.VERIFIER: {
        S.PENDING:   {S.SUBMITTED, S.VERIFIED, S.REJECTED},
        S.SUBMITTED: {S.PENDING, S.VERIFIED, S.REJECTED},
        S.VERIFIED:  {S.PENDING, S.SUBMITTED, S.REJECTED},
        S.REJECTED:  {S.PENDING, S.SUBMITTED},       # re-approve
        S.NOT_REQUIRED: {S.PENDING, S.SUBMITTED, S.VERIFIED, S.REJECTED},
    },
}


def is_allowed(current: VerificationStatus, new: VerificationStatus, actor: Actor) -> bool:
    if current == new:
        return True
    return new in RULES[actor].get(current, set())


def advance_status(current: VerificationStatus, new: VerificationStatus, actor: Actor) -> VerificationStatus:
    """
    Return *new* if *actor* may move the status there, otherwise raise
    :class:`ValueError`.

    Examples
    --------
    >>> advance_status(S.PENDING, S.SUBMITTED, Actor.UPLOAD)
    <VerificationStatus.SUBMITTED: 'Submitted'>
    >>> advance_status(S.VERIFIED, S.SUBMITTED, Actor.UPLOAD)
    Traceback (most recent call last):
        ...
    ValueError: illegal upload transition Verified → Submitted
    """
    current = VerificationStatus.coerce(current)
    new = VerificationStatus.coerce(new)
    if not is_allowed(current, new, actor):
        raise ValueError(f"illegal {actor.value} transition {current.value} → {new.value}")
    return new


def can_edit(role: ViewerRole, party: Party) -> bool:
    """CA column is editable by the CA role only, CS column by CS only."""
    return ViewerRole.parse(role).value == party.value
