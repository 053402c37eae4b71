import unittest
from datetime import date, timedelta

from fakes import FixedClock, InMemoryStore, ManualScheduler, ScriptedVerifier, verified
from goalcoach.core.errors import PersistenceError
from goalcoach.core.models import Goal, GoalStatus, UserEconomy
from goalcoach.core.rewards import RewardCalculator
from goalcoach.core.sync import CrossDeviceSynchronizer


class Ticker:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def accepted_goal(description, xp):
    return Goal(description, experience_value=xp, status=GoalStatus.ACCEPTED)


class TestCrossDeviceSynchronizer(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryStore()
        self.store.economies["u1"] = UserEconomy("u1", total_experience=500, version=1)
        self.ticker = Ticker()
        self.scheduler = ManualScheduler()

    def device(self):
        sync = CrossDeviceSynchronizer(self.store, "u1", clock=self.ticker, scheduler=self.scheduler)
        sync.refresh()
        return sync

    def complete(self, sync, goal):
        calc = RewardCalculator(ScriptedVerifier(verified()), clock=FixedClock())
        outcome = calc.complete_goal(goal, "I did the thing, here is how", sync.economy)
        sync.record_goal_completed(outcome)
        return outcome

    def test_concurrent_completions_from_two_devices_add_up(self):
        goal_a = accepted_goal("Run", 100)
        goal_b = accepted_goal("Read", 50)
        self.store.save_goal("u1", goal_a)
        self.store.save_goal("u1", goal_b)

        phone = self.device()
        laptop = self.device()
        self.assertEqual(phone.economy.total_experience, 500)
        self.assertEqual(laptop.economy.total_experience, 500)

        # both computed their award from a 500 XP snapshot
        self.complete(phone, phone.active_goals[goal_a.id])
        self.complete(laptop, laptop.active_goals[goal_b.id])

        self.assertEqual(self.store.economies["u1"].total_experience, 650)
        phone.refresh()
        laptop.refresh()
        self.assertEqual(phone.economy.total_experience, 650)
        self.assertEqual(laptop.economy.total_experience, 650)
        self.assertEqual(phone.economy.level, 1)
        self.assertEqual(phone.active_goals, {})

    def test_same_goal_completed_twice_counts_once(self):
        goal = accepted_goal("Run", 100)
        self.store.save_goal("u1", goal)
        phone = self.device()
        laptop = self.device()

        self.complete(phone, phone.active_goals[goal.id])
        self.complete(laptop, laptop.active_goals[goal.id])
        laptop.refresh()
        self.assertEqual(laptop.economy.total_experience, 600)

    def test_goal_accepted_elsewhere_appears_on_refresh(self):
        phone = self.device()
        laptop = self.device()
        goal = accepted_goal("Stretch", 50)
        laptop.record_goal_accepted(goal)

        self.assertNotIn(goal.id, phone.active_goals)
        self.assertTrue(phone.refresh())
        self.assertIn(goal.id, phone.active_goals)
        self.assertFalse(phone.refresh())

    def test_local_write_schedules_reconcile(self):
        sync = self.device()
        sync.record_goal_accepted(accepted_goal("Stretch", 50))
        self.assertEqual(len(self.scheduler.scheduled), 1)
        delay, fn = self.scheduler.scheduled[0]
        self.assertEqual(delay, 0.5)
        self.assertEqual(fn, sync.refresh)

    def test_tick_respects_interval(self):
        sync = self.device()
        self.store.save_goal("u1", accepted_goal("Walk", 50))

        self.ticker.now = 10
        self.assertFalse(sync.tick())
        self.assertEqual(sync.active_goals, {})

        self.ticker.now = 31
        self.assertTrue(sync.tick())
        self.assertEqual(len(sync.active_goals), 1)

    def test_reconnect_triggers_refresh(self):
        sync = self.device()
        sync.set_online(False)
        self.store.save_goal("u1", accepted_goal("Walk", 50))
        self.assertTrue(sync.set_online(True))
        self.assertEqual(len(sync.active_goals), 1)
        # already online: no refresh
        self.assertFalse(sync.set_online(True))

    def test_failed_write_is_kept_locally_and_retried(self):
        sync = self.device()
        goal = accepted_goal("Journal", 75)

        self.store.fail_writes = True
        self.assertFalse(sync.record_goal_accepted(goal))
        self.assertEqual(sync.pending_write_count, 1)
        self.assertFalse(sync.refresh())
        # optimistic state survives the failed refresh
        self.assertIn(goal.id, sync.active_goals)

        self.store.fail_writes = False
        sync.refresh()
        self.assertEqual(sync.pending_write_count, 0)
        self.assertIn(goal.id, self.store.goals)
        self.assertIn(goal.id, sync.active_goals)

    def test_failed_read_keeps_projection(self):
        sync = self.device()
        self.store.fail_reads = True
        self.assertFalse(sync.refresh())
        self.assertEqual(sync.economy.total_experience, 500)

    def test_record_activity_updates_streak(self):
        sync = self.device()
        sync.record_activity(date(2024, 5, 1))
        economy = sync.record_activity(date(2024, 5, 2))
        self.assertEqual(economy.daily_streak, 2)
        self.assertEqual(self.store.economies["u1"].daily_streak, 2)
        self.assertEqual(self.store.economies["u1"].last_activity_date, date(2024, 5, 1) + timedelta(days=1))

    def test_stale_device_does_not_reset_streak(self):
        stale = self.device()
        self.store.economies["u1"] = UserEconomy("u1", total_experience=500, daily_streak=5,
                                                 last_activity_date=date(2024, 5, 1), version=2)

        # the stale projection has no activity at all and would start over at 1
        economy = stale.record_activity(date(2024, 5, 2))

        self.assertEqual(self.store.economies["u1"].daily_streak, 6)
        self.assertEqual(economy.daily_streak, 6)

    def test_stuck_write_does_not_block_reconciliation(self):
        sync = self.device()

        def always_fails():
            raise PersistenceError("duplicate key value violates unique constraint", code="DB_WRITE")

        self.assertFalse(sync.write("stuck", always_fails))
        self.store.economies["u1"] = UserEconomy("u1", total_experience=900, version=2)
        goal = accepted_goal("Walk", 50)
        self.store.save_goal("u1", goal)

        self.assertTrue(sync.refresh())
        self.assertEqual(sync.economy.total_experience, 900)
        self.assertIn(goal.id, sync.active_goals)

    def test_write_is_dropped_after_max_attempts(self):
        sync = CrossDeviceSynchronizer(self.store, "u1", clock=self.ticker, scheduler=self.scheduler,
                                       max_write_attempts=3)
        goal = accepted_goal("Journal", 75)
        self.store.fail_writes = True
        sync.record_goal_accepted(goal)

        sync.refresh()
        self.assertEqual(sync.pending_write_count, 1)
        self.assertIn(goal.id, sync.active_goals)

        sync.refresh()
        self.assertEqual(sync.pending_write_count, 0)
        # the goal never reached the store, so the projection lets it go
        self.assertNotIn(goal.id, sync.active_goals)

    def test_pending_completion_survives_refresh(self):
        goal = accepted_goal("Run", 100)
        self.store.save_goal("u1", goal)
        sync = self.device()

        self.store.fail_writes = True
        self.complete(sync, sync.active_goals[goal.id])
        sync.refresh()

        self.assertEqual(sync.economy.total_experience, 600)
        self.assertNotIn(goal.id, sync.active_goals)

        self.store.fail_writes = False
        sync.refresh()
        self.assertEqual(self.store.economies["u1"].total_experience, 600)
        self.assertEqual(sync.economy.total_experience, 600)
        self.assertEqual(sync.pending_write_count, 0)

    def test_failed_store_call_goes_offline_and_recovers(self):
        sync = self.device()
        self.store.fail_reads = True
        self.ticker.now = 31
        self.assertFalse(sync.tick())
        self.assertFalse(sync.online)

        self.store.fail_reads = False
        self.store.save_goal("u1", accepted_goal("Walk", 50))
        # offline: the next tick retries without waiting for the interval
        self.ticker.now = 32
        self.assertTrue(sync.tick())
        self.assertTrue(sync.online)
        self.assertEqual(len(sync.active_goals), 1)

    def test_successful_write_after_outage_reconciles(self):
        sync = self.device()
        self.store.fail_writes = True
        sync.record_goal_accepted(accepted_goal("Journal", 75))
        self.assertFalse(sync.online)

        self.store.fail_writes = False
        other = accepted_goal("Stretch", 30)
        self.store.save_goal("u1", other)
        sync.record_goal_accepted(accepted_goal("Read", 40))

        self.assertTrue(sync.online)
        self.assertEqual(sync.pending_write_count, 0)
        self.assertIn(other.id, sync.active_goals)
        self.assertEqual(len(sync.active_goals), 3)

    def test_unverified_outcome_cannot_be_recorded(self):
        sync = self.device()
        calc = RewardCalculator(ScriptedVerifier(), clock=FixedClock())
        outcome = calc.complete_goal(accepted_goal("Run", 100), "", sync.economy)
        with self.assertRaises(ValueError):
            sync.record_goal_completed(outcome)


if __name__ == '__main__':
    unittest.main()
