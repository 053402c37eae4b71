"""
Cross-device synchronizer.

Keeps a local projection of the account's economy and active goals and
reconciles it with the store on a fixed interval, on reconnect, and shortly
after every local write. Goal rows are last-writer-wins. Experience totals are
never overwritten from here: completions go through the store's atomic
commit, so concurrent devices add up instead of clobbering each other.
"""
import threading
import time
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple

from goalcoach import config
from goalcoach.core.errors import PersistenceError
from goalcoach.core.models import CompletionOutcome, Goal, UserEconomy
from goalcoach.core.rewards import update_daily_streak
from goalcoach.utils.logging import log


def timer_scheduler(delay: float, fn: Callable[[], object]) -> None:
    timer = threading.Timer(delay, fn)
    timer.daemon = True
    timer.start()


@dataclass
class PendingWrite:
    label: str
    op: Callable[[], object]
    # undoes the optimistic projection change if the write is dropped
    forget: Optional[Callable[[], object]] = None
    attempts: int = 1


class CrossDeviceSynchronizer:
    def __init__(
        self,
        store,
        account_id: str,
        interval: float = config.SYNC_INTERVAL_SECONDS,
        reconcile_delay: float = config.SYNC_RECONCILE_DELAY,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Callable[[float, Callable[[], object]], None] = timer_scheduler,
        max_write_attempts: int = config.SYNC_WRITE_ATTEMPTS,
    ):
        self.store = store
        self.account_id = account_id
        self.interval = interval
        self.reconcile_delay = reconcile_delay
        self.clock = clock
        self.scheduler = scheduler
        self.max_write_attempts = max_write_attempts

        self.economy: UserEconomy = UserEconomy(account_id)
        self.active_goals: Dict[str, Goal] = {}
        self.online = True
        self._pending_writes: List[PendingWrite] = []
        # local changes the store has not confirmed yet
        self._unsaved_goals: Dict[str, Goal] = {}
        self._uncommitted: Dict[str, Tuple[Goal, int]] = {}
        self._last_refresh: Optional[float] = None
        self._lock = threading.RLock()

    @property
    def pending_write_count(self) -> int:
        return len(self._pending_writes)

    def goals(self) -> List[Goal]:
        with self._lock:
            return sorted(self.active_goals.values(), key=lambda g: g.created_at, reverse=True)

    # --- reconciliation ---------------------------------------------------

    def refresh(self) -> bool:
        """
        Retry queued writes, then re-read the store and replace the projection
        if it differs. Changes still waiting in the queue stay applied on top
        of what was read. Returns True when the projection changed.
        """
        with self._lock:
            self._flush_pending()

            try:
                economy = self.store.load_economy(self.account_id)
                goals = self.store.list_goals(self.account_id, include_completed=False, fresh=True)
            except PersistenceError as e:
                log("Sync", f"Refresh failed: {e}", "WARNING")
                self._went_offline(e)
                return False

            if not self.online:
                log("Sync", "Store reachable again", "SUCCESS")
                self.online = True
            self._last_refresh = self.clock()

            remote_goals = {g.id: g for g in goals}
            remote_goals.update(self._unsaved_goals)
            for goal_id in self._uncommitted:
                remote_goals.pop(goal_id, None)
            owed = sum(xp for _, xp in self._uncommitted.values())
            if owed:
                economy = economy.with_experience(economy.total_experience + owed)

            changed = (
                not economy.same_totals(self.economy)
                or remote_goals.keys() != self.active_goals.keys()
                or any(remote_goals[k] != self.active_goals[k] for k in remote_goals)
            )
            self.economy = economy
            if changed:
                self.active_goals = remote_goals
                log("Sync", f"Projection updated: {economy.total_experience} XP, {len(remote_goals)} active goals")
            return changed

    def tick(self) -> bool:
        """
        Call as often as convenient; refreshes once the interval has elapsed,
        and on every call while the store is unreachable.
        """
        if self.online and self._last_refresh is not None and self.clock() - self._last_refresh < self.interval:
            return False
        return self.refresh()

    def set_online(self, online: bool) -> bool:
        """Report connectivity. Coming back online triggers a refresh."""
        came_back = online and not self.online
        self.online = online
        if came_back:
            log("Sync", "Reconnected, reconciling")
            return self.refresh()
        return False

    # --- write paths ------------------------------------------------------

    def record_goal_accepted(self, goal: Goal) -> bool:
        with self._lock:
            self.active_goals[goal.id] = goal
            self._unsaved_goals[goal.id] = goal

            def save():
                self.store.save_goal(self.account_id, goal)
                self._unsaved_goals.pop(goal.id, None)

            stored = self.write(
                f"save goal {goal.id[:8]}", save,
                forget=lambda: self._unsaved_goals.pop(goal.id, None),
            )
        self._schedule_reconcile()
        return stored

    def record_goal_completed(self, outcome: CompletionOutcome) -> bool:
        if not outcome.verified or outcome.goal is None:
            raise ValueError("Only verified completions can be recorded")
        goal = outcome.goal
        with self._lock:
            self.active_goals.pop(goal.id, None)
            self._unsaved_goals.pop(goal.id, None)
            self._uncommitted[goal.id] = (goal, outcome.experience_awarded)
            self.economy = self.economy.with_experience(self.economy.total_experience + outcome.experience_awarded)

            def commit():
                self.economy = self.store.commit_goal_completion(self.account_id, goal, outcome.experience_awarded)
                self._uncommitted.pop(goal.id, None)

            stored = self.write(
                f"complete goal {goal.id[:8]}", commit,
                forget=lambda: self._uncommitted.pop(goal.id, None),
            )
        self._schedule_reconcile()
        return stored

    def record_activity(self, today=None) -> UserEconomy:
        """
        Count today towards the streak. The store recomputes the streak from
        its own row, so a device with a stale projection cannot reset it.
        """
        with self._lock:
            day = today or date.today()
            self.economy = update_daily_streak(self.economy, day)

            def save():
                self.economy = self.store.save_activity(self.account_id, day)

            self.write("daily streak", save)
            return self.economy

    def write(self, label: str, op: Callable[[], object], forget: Optional[Callable[[], object]] = None) -> bool:
        """
        Run a store write. On PersistenceError the write is queued and retried,
        in order, at the start of the next refresh. `forget` runs if the write
        is finally dropped.
        """
        with self._lock:
            try:
                op()
            except PersistenceError as e:
                log("Sync", f"Write '{label}' failed, will retry on next reconcile: {e}", "WARNING")
                self._went_offline(e)
                self._pending_writes.append(PendingWrite(label, op, forget))
                return False
            if not self.online:
                self.set_online(True)
            return True

    def _flush_pending(self) -> None:
        still_pending = []
        for pending in self._pending_writes:
            pending.attempts += 1
            try:
                pending.op()
                log("Sync", f"Retried write '{pending.label}'", "SUCCESS")
            except PersistenceError as e:
                if pending.attempts >= self.max_write_attempts:
                    log("Sync", f"Dropping write '{pending.label}' after {pending.attempts} attempts: {e}", "ERROR")
                    if pending.forget is not None:
                        pending.forget()
                    continue
                log("Sync", f"Retry of '{pending.label}' failed: {e}", "WARNING")
                still_pending.append(pending)
        self._pending_writes = still_pending

    def _went_offline(self, error: PersistenceError) -> None:
        if self.online:
            log("Sync", f"Store unreachable, working offline: {error}", "WARNING")
        self.online = False

    def _schedule_reconcile(self) -> None:
        if self.reconcile_delay is None:
            return
        self.scheduler(self.reconcile_delay, self.refresh)
