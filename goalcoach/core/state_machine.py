"""
Conversation state machine for the coaching cycle.

Cadence: three coaching questions, then one goal proposal; after three
proposals in a conversation the coach asks whether the user wants to wrap up.

    COACHING_Q1 -> COACHING_Q2 -> COACHING_Q3 -> PROPOSING_GOAL
        -> AWAITING_GOAL_RESPONSE -> (COACHING_Q1 | ASKING_TO_CONCLUDE)
    ASKING_TO_CONCLUDE -> (CONCLUDED | COACHING_Q1)

Counters are never persisted. replay_transcript() rebuilds them from the turn
kinds stored with each message, so a reloaded conversation resumes exactly
where it stopped.
"""
import re
from dataclasses import replace
from typing import Optional, Tuple

from goalcoach import config
from goalcoach.core.errors import ConversationClosedError, GoalPendingError
from goalcoach.core.models import CoachingCounters, Phase, Transcript, Turn, TurnKind
from goalcoach.utils.logging import log

# Matched case-insensitively as whole words anywhere in the reply.
# "no, give me a harder one" therefore also counts as closing.
CLOSING_PHRASES = ("no", "no thanks", "i'm good", "that's all", "nothing else")

_COACHING_PHASES = (Phase.COACHING_Q1, Phase.COACHING_Q2, Phase.COACHING_Q3)


def is_closing_reply(text: str) -> bool:
    normalized = (text or "").lower().replace("’", "'").strip()
    return any(re.search(rf"\b{re.escape(phrase)}\b", normalized) for phrase in CLOSING_PHRASES)


class CoachingStateMachine:
    def __init__(
        self,
        counters: Optional[CoachingCounters] = None,
        questions_per_cycle: int = config.QUESTIONS_PER_CYCLE,
        goals_before_conclude: int = config.GOALS_BEFORE_CONCLUDE,
    ):
        self.counters = counters or CoachingCounters()
        self.questions_per_cycle = questions_per_cycle
        self.goals_before_conclude = goals_before_conclude

    @property
    def phase(self) -> Phase:
        return self.counters.phase

    def accepts_free_text(self) -> bool:
        return self.phase not in (Phase.AWAITING_GOAL_RESPONSE, Phase.CONCLUDED)

    def ensure_accepts_free_text(self) -> None:
        if self.phase is Phase.AWAITING_GOAL_RESPONSE:
            raise GoalPendingError()
        if self.phase is Phase.CONCLUDED:
            raise ConversationClosedError()

    def peek_user_turn(self, text: str) -> CoachingCounters:
        """
        Counters after a user turn, without committing them.
        The caller commits once the reply for the new phase has been generated.
        """
        self.ensure_accepts_free_text()
        c = self.counters

        if c.phase.is_coaching:
            asked = c.questions_asked + 1
            if asked < self.questions_per_cycle:
                return replace(c, questions_asked=asked, phase=_COACHING_PHASES[min(asked, len(_COACHING_PHASES) - 1)])
            return replace(c, questions_asked=asked, phase=Phase.PROPOSING_GOAL)

        if c.phase is Phase.PROPOSING_GOAL:
            # previous proposal attempt produced no marker; ask again
            return c

        if c.phase is Phase.ASKING_TO_CONCLUDE:
            if is_closing_reply(text):
                return replace(c, phase=Phase.CONCLUDED)
            return replace(c, questions_asked=0, phase=Phase.COACHING_Q1)

        raise ValueError(f"Unhandled phase {c.phase}")

    def commit(self, counters: CoachingCounters) -> None:
        if counters.phase is not self.counters.phase:
            log("StateMachine", f"{self.counters.phase.value} -> {counters.phase.value}")
        self.counters = counters

    def on_user_turn(self, text: str) -> Phase:
        self.commit(self.peek_user_turn(text))
        return self.phase

    def on_proposal_received(self) -> None:
        self._require(Phase.PROPOSING_GOAL)
        c = self.counters
        self.commit(replace(
            c,
            phase=Phase.AWAITING_GOAL_RESPONSE,
            goals_proposed_in_conversation=c.goals_proposed_in_conversation + 1,
        ))

    def on_goal_resolved(self) -> None:
        self._require(Phase.AWAITING_GOAL_RESPONSE)
        c = self.counters
        if c.goals_proposed_in_conversation >= self.goals_before_conclude:
            self.commit(replace(c, phase=Phase.ASKING_TO_CONCLUDE))
        else:
            self.commit(replace(c, questions_asked=0, phase=Phase.COACHING_Q1))

    def on_proposal_withdrawn(self) -> None:
        """Detailing found nothing concrete: back to the pre-proposal state."""
        self._require(Phase.AWAITING_GOAL_RESPONSE)
        c = self.counters
        self.commit(replace(
            c,
            phase=Phase.PROPOSING_GOAL,
            goals_proposed_in_conversation=max(0, c.goals_proposed_in_conversation - 1),
        ))

    def conclude(self) -> None:
        self.commit(replace(self.counters, phase=Phase.CONCLUDED))

    def restart(self) -> None:
        self.commit(CoachingCounters())

    def _require(self, phase: Phase) -> None:
        if self.phase is not phase:
            raise ValueError(f"Expected phase {phase.value}, machine is in {self.phase.value}")


def replay_transcript(
    transcript: Transcript,
    questions_per_cycle: int = config.QUESTIONS_PER_CYCLE,
    goals_before_conclude: int = config.GOALS_BEFORE_CONCLUDE,
) -> Tuple[CoachingStateMachine, Optional[Turn]]:
    """
    Rebuild the machine from the stored turn kinds.

    Returns the machine and, when a proposal is still unanswered, the turn
    that carried it. A user message only counts once the assistant answered it;
    messages followed by an apology (or by nothing) never advanced the state.
    """
    machine = CoachingStateMachine(
        questions_per_cycle=questions_per_cycle,
        goals_before_conclude=goals_before_conclude,
    )
    unanswered: Optional[Turn] = None
    open_proposal: Optional[Turn] = None

    for turn in transcript.turns:
        kind = turn.kind
        try:
            if kind is TurnKind.MESSAGE:
                unanswered = turn
            elif kind is TurnKind.APOLOGY:
                unanswered = None
            elif kind in (TurnKind.REPLY, TurnKind.PROPOSAL, TurnKind.CLOSING):
                if unanswered is not None and machine.accepts_free_text():
                    machine.on_user_turn(unanswered.text)
                unanswered = None
                if kind is TurnKind.PROPOSAL:
                    machine.on_proposal_received()
                    open_proposal = turn
                elif kind is TurnKind.CLOSING:
                    machine.conclude()
                    open_proposal = None
            elif kind is TurnKind.GOAL_RESPONSE:
                machine.on_goal_resolved()
                open_proposal = None
            elif kind is TurnKind.PROPOSAL_WITHDRAWN:
                machine.on_proposal_withdrawn()
                open_proposal = None
            elif kind is TurnKind.WELCOME:
                machine.restart()
                unanswered = None
                open_proposal = None
        except ValueError as e:
            log("StateMachine", f"Skipping out-of-order {kind.value} turn {turn.id[:8]}: {e}", "WARNING")

    return machine, open_proposal
