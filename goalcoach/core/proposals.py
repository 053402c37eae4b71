"""
Goal proposals: spotting them in generated replies, holding them while the
user decides, and turning an accepted one into a goal with a deadline.
"""
import re
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional

from goalcoach.core.errors import GoalPendingError
from goalcoach.core.models import (
    Goal,
    GoalDecision,
    GoalDetails,
    GoalStatus,
    Transcript,
    utcnow,
)
from goalcoach.utils.logging import log

GOAL_MARKER = "[GOAL]"
PROPOSAL_LEAD_IN = "Can I suggest a challenge based on our conversation?"

_PROPOSAL_RE = re.compile(re.escape(GOAL_MARKER) + r".*?" + re.escape(PROPOSAL_LEAD_IN) + r"\s*(.+)", re.DOTALL)


def detect(reply_text: str) -> bool:
    return GOAL_MARKER in (reply_text or "")


def extract(reply_text: str) -> str:
    match = _PROPOSAL_RE.search(reply_text or "")
    if match:
        return match.group(1).strip()
    return (reply_text or "").replace(GOAL_MARKER, "").strip()


def strip_marker(reply_text: str) -> str:
    return (reply_text or "").replace(GOAL_MARKER, "").strip()


def compute_deadline(timeframe: str, now: datetime) -> datetime:
    """24h -> +24 hours, 3d -> +3 days, anything else (1w included) -> +7 days."""
    key = re.sub(r"\s+", "", (timeframe or "").lower())
    if key.startswith("24h"):
        return now + timedelta(hours=24)
    if key.startswith("3d"):
        return now + timedelta(days=3)
    return now + timedelta(days=7)


class GoalProposalHandler:
    """
    Holds at most one pending goal for a conversation.

    detail_goal(transcript) returns GoalDetails, or None when the collaborator
    has no concrete suggestion; it raises ProviderError when unreachable, in
    which case the proposal stays pending so the user can try again.
    """

    def __init__(
        self,
        detail_goal: Callable[[Transcript], Optional[GoalDetails]],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.detail_goal = detail_goal
        self.clock = clock
        self.pending: Optional[Goal] = None

    @property
    def has_pending(self) -> bool:
        return self.pending is not None

    def open(self, reply_text: str, conversation_id: Optional[str] = None) -> Goal:
        if self.pending is not None:
            raise GoalPendingError()
        self.pending = Goal(
            description=extract(reply_text),
            status=GoalStatus.PENDING,
            conversation_id=conversation_id,
            created_at=self.clock(),
        )
        log("Proposals", f"Goal pending: {self.pending.description[:60]}")
        return self.pending

    def clear(self) -> None:
        self.pending = None

    def resolve(self, decision: GoalDecision, transcript: Transcript) -> Optional[Goal]:
        """
        Settle the pending goal.

        Returns the declined or accepted goal, or None when detailing came back
        empty and the proposal was withdrawn.
        """
        if self.pending is None:
            raise ValueError("No goal is pending")

        if decision is GoalDecision.DECLINE:
            declined = replace(self.pending, status=GoalStatus.DECLINED)
            self.pending = None
            log("Proposals", "Goal declined")
            return declined

        details = self.detail_goal(transcript)
        if details is None:
            log("Proposals", "Detailing returned no suggestion, withdrawing proposal", "WARNING")
            self.pending = None
            return None

        now = self.clock()
        accepted = replace(
            self.pending,
            description=self.pending.description or details.description,
            difficulty=details.difficulty,
            experience_value=details.experience_value,
            deadline=compute_deadline(details.timeframe, now),
            status=GoalStatus.ACCEPTED,
            # the completion window opens at acceptance, not at proposal
            created_at=now,
        )
        self.pending = None
        log("Proposals", f"Goal accepted ({accepted.difficulty.value}, {accepted.experience_value} XP)", "SUCCESS")
        return accepted
