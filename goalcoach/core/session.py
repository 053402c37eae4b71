"""
One user's coaching session on one device.

Wires the state machine, the proposal handler, the reward calculator and the
synchronizer around a single active transcript. Every method runs to
completion before the next is called; collaborator calls leave the machine
parked in its pre-transition state until they return.
"""
from typing import Callable, List, Optional

from goalcoach import config
from goalcoach.core.errors import (
    GoalPendingError,
    InputRejectedError,
    NoActiveConversationError,
    PersistenceError,
    ProviderError,
)
from goalcoach.core.models import (
    DEFAULT_TITLE,
    CompletionOutcome,
    GoalDecision,
    GoalDetails,
    Phase,
    Speaker,
    Transcript,
    Turn,
    TurnKind,
    UserEconomy,
    VerificationResult,
    new_id,
    utcnow,
)
from goalcoach.core.proposals import GoalProposalHandler, detect, strip_marker
from goalcoach.core.rewards import RewardCalculator
from goalcoach.core.state_machine import CoachingStateMachine, replay_transcript
from goalcoach.core.stats import goal_stats
from goalcoach.core.sync import CrossDeviceSynchronizer
from goalcoach.llm import responder
from goalcoach.llm.prompts import (
    ACCEPTED_PREFIX,
    APOLOGY_TEXT,
    CLOSING_TEXT,
    CONCLUDE_QUESTION_TEXT,
    DECLINED_PREFIX,
    FOLLOW_UP_TEXT,
    PHASE_INSTRUCTIONS,
    WITHDRAWN_TEXT,
)
from goalcoach.utils.logging import log

TITLE_MAX_CHARS = 60


def _goal_summary(stats: dict) -> str:
    if not stats["total"]:
        return ""
    return f"You currently have {stats['pending']} active goals and {stats['completed']} completed. "


def greeting_text(user_name: Optional[str], stats: dict) -> str:
    hello = f"Hi {user_name}!" if user_name else "Hi!"
    return f"{hello} I'm your AI Coach. {_goal_summary(stats)}What challenge or goal would you like to work on today?"


def welcome_back_text(stats: dict) -> str:
    return (
        "Welcome back! I can see we had a great conversation here. "
        f"{_goal_summary(stats)}What new challenge would you like to work on today?"
    )


class CoachSession:
    def __init__(
        self,
        store,
        account_id: str,
        user_name: Optional[str] = None,
        generate_reply: Callable[[Transcript, str, Optional[dict]], str] = responder.generate_reply,
        detail_goal: Callable[[Transcript], Optional[GoalDetails]] = responder.detail_goal,
        verify: Callable[[str, str], VerificationResult] = responder.verify_completion,
        synchronizer: Optional[CrossDeviceSynchronizer] = None,
        clock=utcnow,
        questions_per_cycle: int = config.QUESTIONS_PER_CYCLE,
        goals_before_conclude: int = config.GOALS_BEFORE_CONCLUDE,
    ):
        self.store = store
        self.account_id = account_id
        self.user_name = user_name
        self.generate_reply = generate_reply
        self.clock = clock
        self.questions_per_cycle = questions_per_cycle
        self.goals_before_conclude = goals_before_conclude

        self.sync = synchronizer or CrossDeviceSynchronizer(store, account_id)
        self.rewards = RewardCalculator(verify, clock=clock)
        self.proposals = GoalProposalHandler(detail_goal, clock=clock)
        self.machine = self._new_machine()
        self.transcript: Optional[Transcript] = None
        self.active_conversation_id: Optional[str] = None
        # last soft failure worth showing to the user
        self.notice: Optional[str] = None

    # --- read-only views ----------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self.machine.phase

    @property
    def pending_goal(self):
        return self.proposals.pending

    @property
    def economy(self) -> UserEconomy:
        return self.sync.economy

    def accepts_free_text(self) -> bool:
        return self.transcript is not None and self.machine.accepts_free_text() and not self.proposals.has_pending

    def stats(self) -> dict:
        try:
            goals = self.store.list_goals(self.account_id, include_completed=True)
        except PersistenceError as e:
            log("Session", f"Falling back to local goals for stats: {e}", "WARNING")
            goals = self.sync.goals()
        return goal_stats(goals, self.clock())

    def list_conversations(self) -> list[dict]:
        return self.store.list_conversations(self.account_id)

    # --- lifecycle ------------------------------------------------------------

    def start(self) -> UserEconomy:
        """Load the account's economy and active goals."""
        self.sync.refresh()
        return self.sync.economy

    def start_conversation(self) -> Transcript:
        stats = self.stats()
        transcript = Transcript(conversation_id=new_id(), account_id=self.account_id)
        transcript.append(Turn.assistant(greeting_text(self.user_name, stats), kind=TurnKind.GREETING))

        self._activate(transcript, self._new_machine())
        self._persist("create conversation", lambda: self.store.create_conversation(transcript))
        self.sync.record_activity(self.clock().date())
        log("Session", f"Started conversation {transcript.conversation_id[:8]}", "SUCCESS")
        return transcript

    def load_conversation(self, conversation_id: str) -> Transcript:
        transcript = self.store.load_transcript(conversation_id)
        machine, open_proposal = replay_transcript(
            transcript,
            questions_per_cycle=self.questions_per_cycle,
            goals_before_conclude=self.goals_before_conclude,
        )
        self._activate(transcript, machine)
        if open_proposal is not None:
            self.proposals.open(open_proposal.text, conversation_id)

        if machine.phase is Phase.CONCLUDED:
            welcome = transcript.append(Turn.assistant(welcome_back_text(self.stats()), kind=TurnKind.WELCOME))
            self._persist_turn(welcome)
            machine.restart()
        # the stored flag stays as it is; only this view takes input again
        transcript.completed = False
        log("Session", f"Loaded conversation {conversation_id[:8]} in {machine.phase.value}")
        return transcript

    def end_conversation(self) -> None:
        """Close the active conversation explicitly, whatever phase it is in."""
        transcript = self._require_transcript()
        if self.machine.phase is not Phase.CONCLUDED:
            self._append(Turn.assistant(CLOSING_TEXT, kind=TurnKind.CLOSING))
            self.machine.conclude()
        self._mark_completed(transcript)
        self.proposals.clear()
        self.transcript = None
        self.active_conversation_id = None

    # --- the coaching turn ----------------------------------------------------

    def send_message(self, text: str, is_voice: bool = False) -> List[Turn]:
        """
        Handle one free-text user turn. Returns the turns appended by this call.
        Rejected (GoalPendingError / ConversationClosedError) while a goal is
        pending or after the conversation concluded.
        """
        transcript = self._require_transcript()
        text = (text or "").strip()
        if not text:
            return []
        if self.proposals.has_pending:
            raise GoalPendingError()
        self.machine.ensure_accepts_free_text()

        user_turn = self._append(Turn.user(text, is_voice=is_voice))
        upcoming = self.machine.peek_user_turn(text)
        requested_for = transcript.conversation_id

        try:
            reply = self.generate_reply(transcript, PHASE_INSTRUCTIONS[upcoming.phase], self._hints(upcoming.phase))
        except ProviderError as e:
            log("Session", f"Generation failed in {self.machine.phase.value}: {e}", "ERROR")
            if self._is_stale(requested_for):
                return [user_turn]
            return [user_turn, self._append(Turn.assistant(APOLOGY_TEXT, kind=TurnKind.APOLOGY))]

        if self._is_stale(requested_for):
            log("Session", f"Discarding reply for inactive conversation {requested_for[:8]}", "WARNING")
            return [user_turn]

        self.machine.commit(upcoming)

        if upcoming.phase is Phase.PROPOSING_GOAL:
            if detect(reply):
                turn = self._append(Turn.assistant(reply, kind=TurnKind.PROPOSAL))
                self.machine.on_proposal_received()
                self.proposals.open(reply, transcript.conversation_id)
            else:
                log("Session", "Proposal reply carried no marker, staying in PROPOSING_GOAL", "WARNING")
                turn = self._append(Turn.assistant(reply, kind=TurnKind.REPLY))
        elif upcoming.phase is Phase.CONCLUDED:
            turn = self._append(Turn.assistant(strip_marker(reply), kind=TurnKind.CLOSING))
            self._mark_completed(transcript)
        else:
            turn = self._append(Turn.assistant(strip_marker(reply), kind=TurnKind.REPLY))

        return [user_turn, turn]

    def respond_to_goal(self, decision: GoalDecision) -> List[Turn]:
        """
        Accept or decline the pending goal. Returns the turns appended by this call.
        """
        transcript = self._require_transcript()
        if not self.proposals.has_pending:
            raise InputRejectedError("There is no goal waiting for a response.", code="NO_PENDING_GOAL")
        requested_for = transcript.conversation_id

        try:
            goal = self.proposals.resolve(decision, transcript)
        except ProviderError as e:
            # proposal stays pending; accepting again retries the detailing
            log("Session", f"Goal detailing failed: {e}", "ERROR")
            return [self._append(Turn.assistant(APOLOGY_TEXT, kind=TurnKind.APOLOGY))]

        response_turn = Turn.user("Accept" if decision is GoalDecision.ACCEPT else "Decline", kind=TurnKind.GOAL_RESPONSE)

        if self._is_stale(requested_for):
            log("Session", f"Conversation {requested_for[:8]} left while resolving its goal", "WARNING")
            if goal is not None:
                if decision is GoalDecision.ACCEPT:
                    self.sync.record_goal_accepted(goal)
                self._persist("goal response", lambda: self.store.append_turn(requested_for, response_turn))
            return []

        if goal is None:
            self.machine.on_proposal_withdrawn()
            return [self._append(Turn.assistant(WITHDRAWN_TEXT, kind=TurnKind.PROPOSAL_WITHDRAWN))]

        self._append(response_turn)
        if decision is GoalDecision.ACCEPT:
            if not self.sync.record_goal_accepted(goal):
                self.notice = "Your goal is saved on this device and will sync when the connection recovers."
        self.machine.on_goal_resolved()

        follow_up = self._follow_up_text()
        if self._is_stale(requested_for):
            return [response_turn]
        prefix = ACCEPTED_PREFIX if decision is GoalDecision.ACCEPT else DECLINED_PREFIX
        follow_turn = self._append(Turn.assistant(f"{prefix} {follow_up}", kind=TurnKind.FOLLOW_UP))
        return [response_turn, follow_turn]

    def complete_goal(self, goal_id: str, justification: str) -> CompletionOutcome:
        """
        Ask for verification of an active goal and, if verified, award its XP.
        ProviderError propagates; the goal stays accepted.
        """
        goal = self.sync.active_goals.get(goal_id)
        if goal is None:
            raise InputRejectedError(f"Goal {goal_id} is not an active goal.", code="UNKNOWN_GOAL")

        outcome = self.rewards.complete_goal(goal, justification, self.sync.economy)
        if outcome.verified:
            if not self.sync.record_goal_completed(outcome):
                self.notice = "Completion recorded on this device; it will sync when the connection recovers."
        return outcome

    # --- helpers ----------------------------------------------------------------

    def _new_machine(self) -> CoachingStateMachine:
        return CoachingStateMachine(
            questions_per_cycle=self.questions_per_cycle,
            goals_before_conclude=self.goals_before_conclude,
        )

    def _activate(self, transcript: Transcript, machine: CoachingStateMachine) -> None:
        self.transcript = transcript
        self.machine = machine
        self.proposals.clear()
        self.active_conversation_id = transcript.conversation_id
        self.notice = None

    def _require_transcript(self) -> Transcript:
        if self.transcript is None:
            raise NoActiveConversationError()
        return self.transcript

    def _is_stale(self, conversation_id: str) -> bool:
        return self.active_conversation_id != conversation_id

    def _hints(self, phase: Phase) -> dict:
        return {
            "user_name": self.user_name,
            "phase": phase.value,
            "questions_asked": self.machine.counters.questions_asked,
            "active_goals": len(self.sync.active_goals),
        }

    def _follow_up_text(self) -> str:
        fallback = CONCLUDE_QUESTION_TEXT if self.phase is Phase.ASKING_TO_CONCLUDE else FOLLOW_UP_TEXT
        try:
            return strip_marker(self.generate_reply(self.transcript, PHASE_INSTRUCTIONS[self.phase], self._hints(self.phase)))
        except ProviderError as e:
            # the goal is already resolved, so a fixed line is enough
            log("Session", f"Follow-up generation failed, using fixed text: {e}", "WARNING")
            return fallback

    def _append(self, turn: Turn) -> Turn:
        transcript = self.transcript
        turn = transcript.append(turn)
        self._persist_turn(turn)
        if turn.speaker is Speaker.USER and turn.kind is TurnKind.MESSAGE and transcript.title == DEFAULT_TITLE:
            transcript.title = turn.text[:TITLE_MAX_CHARS]
            self._persist("rename conversation", lambda: self.store.rename_conversation(transcript))
        return turn

    def _persist_turn(self, turn: Turn) -> None:
        conversation_id = self.transcript.conversation_id
        self._persist(f"turn {turn.id[:8]}", lambda: self.store.append_turn(conversation_id, turn))

    def _mark_completed(self, transcript: Transcript) -> None:
        transcript.completed = True
        self._persist("complete conversation", lambda: self.store.mark_completed(transcript))

    def _persist(self, label: str, op) -> None:
        if not self.sync.write(label, op):
            self.notice = "Couldn't save to the server. Your conversation continues and will sync when possible."
