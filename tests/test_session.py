import unittest
from datetime import timedelta

from fakes import (
    FixedClock,
    InMemoryStore,
    ManualScheduler,
    ScriptedDetailer,
    ScriptedVerifier,
    details,
    offline,
    verified,
)
from goalcoach.core.errors import ConversationClosedError, GoalPendingError, NoActiveConversationError
from goalcoach.core.models import GoalDecision, GoalStatus, Phase, TurnKind
from goalcoach.core.session import CoachSession
from goalcoach.core.sync import CrossDeviceSynchronizer
from goalcoach.llm.prompts import ACCEPTED_PREFIX, APOLOGY_TEXT, PHASE_INSTRUCTIONS

PROPOSAL = "[GOAL] Can I suggest a challenge based on our conversation? Write one page every morning."


class PhaseAwareGenerator:
    """Answers according to the phase instruction it is given."""

    def __init__(self):
        self.calls = []
        self.failures = []
        self.before_reply = None
        self.proposal = PROPOSAL

    def __call__(self, transcript, phase_instruction, context_hints=None):
        self.calls.append(phase_instruction)
        if self.before_reply:
            hook, self.before_reply = self.before_reply, None
            hook()
        if self.failures:
            raise self.failures.pop(0)
        if phase_instruction == PHASE_INSTRUCTIONS[Phase.PROPOSING_GOAL]:
            return self.proposal
        if phase_instruction == PHASE_INSTRUCTIONS[Phase.ASKING_TO_CONCLUDE]:
            return "Is there anything else I can help you with today?"
        if phase_instruction == PHASE_INSTRUCTIONS[Phase.CONCLUDED]:
            return "Good luck with your goals!"
        return "What would that look like for you?"


class TestCoachSession(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryStore()
        self.clock = FixedClock()
        self.generator = PhaseAwareGenerator()
        self.detailer = ScriptedDetailer()
        self.verifier = ScriptedVerifier()
        self.sync = CrossDeviceSynchronizer(self.store, "u1", scheduler=ManualScheduler())
        self.session = CoachSession(
            self.store,
            "u1",
            user_name="Sam",
            generate_reply=self.generator,
            detail_goal=self.detailer,
            verify=self.verifier,
            synchronizer=self.sync,
            clock=self.clock,
        )
        self.session.start()
        self.transcript = self.session.start_conversation()

    def coach_until_proposal(self):
        for text in ("I want to write more", "I write once a month", "Mornings might work"):
            self.session.send_message(text)

    def stored_kinds(self, conversation_id=None):
        return [t.kind for t in self.store.turns[conversation_id or self.transcript.conversation_id]]

    def test_greeting_is_stored_with_the_conversation(self):
        self.assertIn(self.transcript.conversation_id, self.store.conversations)
        self.assertEqual(self.stored_kinds(), [TurnKind.GREETING])
        self.assertIn("Hi Sam!", self.transcript.turns[0].text)
        self.assertEqual(self.store.economies["u1"].daily_streak, 1)

    def test_three_turns_lead_to_one_proposal(self):
        self.coach_until_proposal()

        proposing = PHASE_INSTRUCTIONS[Phase.PROPOSING_GOAL]
        self.assertEqual(self.generator.calls.count(proposing), 1)
        self.assertEqual(self.generator.calls[-1], proposing)
        self.assertIs(self.session.phase, Phase.AWAITING_GOAL_RESPONSE)
        self.assertIsNotNone(self.session.pending_goal)
        self.assertEqual(self.session.pending_goal.description, "Write one page every morning.")
        self.assertEqual(self.transcript.turns[-1].kind, TurnKind.PROPOSAL)

    def test_free_text_rejected_while_goal_pending(self):
        self.coach_until_proposal()
        with self.assertRaises(GoalPendingError):
            self.session.send_message("Can we talk about something else?")
        self.assertFalse(self.session.accepts_free_text())

    def test_accepting_a_goal(self):
        self.detailer.results.append(details("medium", "3 days", 75))
        self.coach_until_proposal()

        turns = self.session.respond_to_goal(GoalDecision.ACCEPT)

        goals = self.sync.goals()
        self.assertEqual(len(goals), 1)
        goal = goals[0]
        self.assertIs(goal.status, GoalStatus.ACCEPTED)
        self.assertEqual(goal.experience_value, 75)
        self.assertEqual(goal.deadline, self.clock() + timedelta(days=3))
        self.assertEqual(goal.created_at, self.clock())
        self.assertIn(goal.id, self.store.goals)
        self.assertIs(self.session.phase, Phase.COACHING_Q1)
        self.assertIsNone(self.session.pending_goal)
        self.assertEqual([t.kind for t in turns], [TurnKind.GOAL_RESPONSE, TurnKind.FOLLOW_UP])
        self.assertTrue(turns[1].text.startswith(ACCEPTED_PREFIX))

    def test_declining_a_goal_stores_nothing(self):
        self.coach_until_proposal()
        before = self.session.economy
        stored_before = self.store.economies["u1"]

        self.session.respond_to_goal(GoalDecision.DECLINE)

        self.assertEqual(self.store.goals, {})
        self.assertEqual(self.sync.goals(), [])
        self.assertEqual(self.detailer.calls, [])
        self.assertIs(self.session.phase, Phase.COACHING_Q1)
        self.assertTrue(self.session.accepts_free_text())
        self.assertEqual(self.session.economy.total_experience, before.total_experience)
        self.assertEqual(self.session.economy.version, before.version)
        self.assertEqual(self.store.economies["u1"].total_experience, stored_before.total_experience)
        self.assertEqual(self.store.economies["u1"].version, stored_before.version)

    def test_third_proposal_asks_to_conclude_then_concludes(self):
        for _ in range(3):
            self.coach_until_proposal()
            self.session.respond_to_goal(GoalDecision.DECLINE)
        self.assertIs(self.session.phase, Phase.ASKING_TO_CONCLUDE)

        turns = self.session.send_message("No thanks")
        self.assertIs(self.session.phase, Phase.CONCLUDED)
        self.assertEqual(turns[-1].kind, TurnKind.CLOSING)
        self.assertTrue(self.transcript.completed)
        self.assertTrue(self.store.conversations[self.transcript.conversation_id].completed)
        with self.assertRaises(ConversationClosedError):
            self.session.send_message("One more thing")

    def test_asking_to_conclude_can_continue(self):
        for _ in range(3):
            self.coach_until_proposal()
            self.session.respond_to_goal(GoalDecision.DECLINE)

        self.session.send_message("Actually, let's talk about sleep")
        self.assertIs(self.session.phase, Phase.COACHING_Q1)
        self.assertFalse(self.transcript.completed)

    def test_generation_failure_apologises_without_advancing(self):
        self.generator.failures.append(offline())
        turns = self.session.send_message("I want to write more")

        self.assertEqual(turns[-1].kind, TurnKind.APOLOGY)
        self.assertEqual(turns[-1].text, APOLOGY_TEXT)
        self.assertIs(self.session.phase, Phase.COACHING_Q1)
        self.assertEqual(self.session.machine.counters.questions_asked, 0)

        self.session.send_message("I want to write more")
        self.assertIs(self.session.phase, Phase.COACHING_Q2)

    def test_missing_marker_retries_the_proposal(self):
        self.generator.proposal = "What small step could you take?"
        self.coach_until_proposal()
        self.assertIs(self.session.phase, Phase.PROPOSING_GOAL)
        self.assertIsNone(self.session.pending_goal)

        self.generator.proposal = PROPOSAL
        self.session.send_message("Maybe something tiny")
        self.assertIs(self.session.phase, Phase.AWAITING_GOAL_RESPONSE)

    def test_detailing_without_suggestion_withdraws_the_proposal(self):
        self.detailer.results.append(None)
        self.coach_until_proposal()

        turns = self.session.respond_to_goal(GoalDecision.ACCEPT)
        self.assertEqual([t.kind for t in turns], [TurnKind.PROPOSAL_WITHDRAWN])
        self.assertIs(self.session.phase, Phase.PROPOSING_GOAL)
        self.assertEqual(self.session.machine.counters.goals_proposed_in_conversation, 0)
        self.assertEqual(self.store.goals, {})

    def test_detailing_failure_keeps_the_goal_pending(self):
        self.detailer.results.extend([offline(), details()])
        self.coach_until_proposal()

        turns = self.session.respond_to_goal(GoalDecision.ACCEPT)
        self.assertEqual(turns[-1].kind, TurnKind.APOLOGY)
        self.assertIs(self.session.phase, Phase.AWAITING_GOAL_RESPONSE)
        self.assertIsNotNone(self.session.pending_goal)

        self.session.respond_to_goal(GoalDecision.ACCEPT)
        self.assertEqual(len(self.store.goals), 1)

    def test_reply_for_a_conversation_left_mid_request_is_dropped(self):
        old = self.transcript
        self.generator.before_reply = self.session.start_conversation

        turns = self.session.send_message("I want to write more")

        self.assertEqual(len(turns), 1)
        self.assertNotEqual(self.session.active_conversation_id, old.conversation_id)
        self.assertEqual([t.kind for t in old.turns], [TurnKind.GREETING, TurnKind.MESSAGE])
        self.assertEqual(self.stored_kinds(old.conversation_id), [TurnKind.GREETING, TurnKind.MESSAGE])
        self.assertIs(self.session.phase, Phase.COACHING_Q1)
        self.assertEqual(len(self.session.transcript.turns), 1)

    def test_reloading_restores_an_open_proposal(self):
        self.coach_until_proposal()
        cid = self.transcript.conversation_id
        self.session.start_conversation()

        self.session.load_conversation(cid)
        self.assertIs(self.session.phase, Phase.AWAITING_GOAL_RESPONSE)
        self.assertIsNotNone(self.session.pending_goal)
        with self.assertRaises(GoalPendingError):
            self.session.send_message("hello?")

    def test_reloading_a_concluded_conversation_welcomes_back(self):
        cid = self.transcript.conversation_id
        self.session.end_conversation()
        with self.assertRaises(NoActiveConversationError):
            self.session.send_message("hello?")

        transcript = self.session.load_conversation(cid)
        self.assertEqual(transcript.turns[-1].kind, TurnKind.WELCOME)
        self.assertTrue(transcript.turns[-1].text.startswith("Welcome back!"))
        self.assertEqual(self.stored_kinds(cid)[-1], TurnKind.WELCOME)
        self.assertIs(self.session.phase, Phase.COACHING_Q1)

        self.session.send_message("New topic")
        self.assertIs(self.session.phase, Phase.COACHING_Q2)

    def test_ending_with_a_goal_pending_reloads_without_it(self):
        self.coach_until_proposal()
        cid = self.transcript.conversation_id
        self.session.end_conversation()

        self.session.load_conversation(cid)
        self.assertIs(self.session.phase, Phase.COACHING_Q1)
        self.assertIsNone(self.session.pending_goal)
        self.assertTrue(self.session.accepts_free_text())

        self.session.send_message("Let's pick something else")
        self.assertIs(self.session.phase, Phase.COACHING_Q2)

    def test_completing_an_accepted_goal(self):
        self.detailer.results.append(details("hard", "1 week", 100))
        self.verifier.results.append(verified("Well done!"))
        self.coach_until_proposal()
        self.session.respond_to_goal(GoalDecision.ACCEPT)
        goal = self.sync.goals()[0]

        outcome = self.session.complete_goal(goal.id, "I wrote a page every morning this week")

        self.assertTrue(outcome.verified)
        self.assertEqual(outcome.experience_awarded, 100)
        self.assertEqual(self.session.economy.total_experience, 100)
        self.assertEqual(self.store.economies["u1"].total_experience, 100)
        self.assertTrue(self.store.goals[goal.id][1].completed)
        self.assertEqual(self.sync.goals(), [])
        self.assertEqual(self.session.stats()["completed"], 1)

    def test_title_comes_from_first_message(self):
        self.session.send_message("I want to write more")
        self.session.send_message("Second message")
        self.assertEqual(self.store.conversations[self.transcript.conversation_id].title, "I want to write more")

    def test_store_outage_does_not_stop_the_conversation(self):
        self.store.fail_writes = True
        turns = self.session.send_message("I want to write more")

        self.assertEqual(turns[-1].kind, TurnKind.REPLY)
        self.assertIs(self.session.phase, Phase.COACHING_Q2)
        self.assertIsNotNone(self.session.notice)
        self.assertGreater(self.sync.pending_write_count, 0)

        self.store.fail_writes = False
        self.sync.refresh()
        self.assertEqual(self.sync.pending_write_count, 0)
        self.assertEqual(self.stored_kinds(), [TurnKind.GREETING, TurnKind.MESSAGE, TurnKind.REPLY])


if __name__ == '__main__':
    unittest.main()
