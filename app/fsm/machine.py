"""
Promoted poll state machine with strict transitions.
"""

import logging
from typing import Dict, FrozenSet, Union

from app.exceptions import InvalidTransitionError
from app.fsm.states import PromotedPollStatus

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[PromotedPollStatus, FrozenSet[PromotedPollStatus]] = {
    PromotedPollStatus.PENDING_APPROVAL: frozenset({
        PromotedPollStatus.ACTIVE,
        PromotedPollStatus.REJECTED,
    }),
    PromotedPollStatus.ACTIVE: frozenset({
        PromotedPollStatus.PAUSED,
        PromotedPollStatus.COMPLETED,
    }),
    PromotedPollStatus.PAUSED: frozenset({
        PromotedPollStatus.ACTIVE,
        PromotedPollStatus.COMPLETED,
    }),
    PromotedPollStatus.COMPLETED: frozenset(),
    PromotedPollStatus.REJECTED: frozenset(),
}


def can_transition(
    current: Union[str, PromotedPollStatus],
    target: Union[str, PromotedPollStatus],
) -> bool:
    """Check whether a promoted poll may move from current to target."""
    try:
        current = PromotedPollStatus(current)
        target = PromotedPollStatus(target)
    except ValueError:
        return False
    return target in TRANSITIONS[current]


def ensure_transition(
    current: Union[str, PromotedPollStatus],
    target: Union[str, PromotedPollStatus],
) -> PromotedPollStatus:
    """
    Validate a transition and return the target status.

    Raises InvalidTransitionError when the move is not allowed.
    """
    if not can_transition(current, target):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        logger.info(f"Rejected promoted poll transition {current_value} -> {target_value}")
        raise InvalidTransitionError(
            f"Cannot move promoted poll from {current_value} to {target_value}"
        )
    return PromotedPollStatus(target)
