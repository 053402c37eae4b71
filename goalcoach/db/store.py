"""
The keyed store the coaching core talks to, backed by Supabase.

List queries are cached per instance; any write for an account drops that
account's cached lists.
"""
from datetime import date
from typing import Optional

from goalcoach import config
from goalcoach.core.models import Goal, Transcript, Turn, UserEconomy
from goalcoach.db import conversation_repo, economy_repo, goal_repo
from goalcoach.db.supabase_client import get_supabase
from goalcoach.utils.cache import TTLCache


class SupabaseStore:
    def __init__(self, client=None, cache: Optional[TTLCache] = None):
        self.client = client or get_supabase()
        self.cache = cache or TTLCache(ttl=config.CACHE_TTL_SECONDS, max_entries=config.CACHE_MAX_ENTRIES)

    # Transcripts

    def create_conversation(self, transcript: Transcript) -> None:
        conversation_repo.create_conversation(transcript, client=self.client)
        self.cache.invalidate_prefix(("conversations", transcript.account_id))

    def append_turn(self, conversation_id: str, turn: Turn) -> None:
        conversation_repo.save_turn(conversation_id, turn, client=self.client)

    def rename_conversation(self, transcript: Transcript) -> None:
        conversation_repo.update_title(transcript.conversation_id, transcript.title, client=self.client)
        self.cache.invalidate_prefix(("conversations", transcript.account_id))

    def mark_completed(self, transcript: Transcript) -> None:
        conversation_repo.mark_completed(transcript.conversation_id, client=self.client)
        self.cache.invalidate_prefix(("conversations", transcript.account_id))

    def load_transcript(self, conversation_id: str) -> Transcript:
        return conversation_repo.load_transcript(conversation_id, client=self.client)

    def list_conversations(self, account_id: str, fresh: bool = False) -> list[dict]:
        if fresh:
            self.cache.invalidate(("conversations", account_id))
        return self.cache.get_or_load(
            ("conversations", account_id),
            lambda: conversation_repo.list_conversations(account_id, client=self.client),
        )

    # Goals

    def save_goal(self, account_id: str, goal: Goal) -> None:
        goal_repo.save_goal(account_id, goal, client=self.client)
        self.cache.invalidate_prefix(("goals", account_id))

    def list_goals(self, account_id: str, include_completed: bool = True, fresh: bool = False) -> list[Goal]:
        """`fresh` bypasses the cache; reconciliation always reads fresh."""
        if fresh:
            self.cache.invalidate(("goals", account_id, include_completed))
        return self.cache.get_or_load(
            ("goals", account_id, include_completed),
            lambda: goal_repo.list_goals(account_id, include_completed=include_completed, client=self.client),
        )

    # Economy (never cached: it is the shared resource being reconciled)

    def load_economy(self, account_id: str) -> UserEconomy:
        return economy_repo.get_or_create_economy(account_id, client=self.client)

    def save_activity(self, account_id: str, today: date) -> UserEconomy:
        return economy_repo.save_activity(account_id, today, client=self.client)

    def commit_goal_completion(self, account_id: str, goal: Goal, experience: int) -> UserEconomy:
        try:
            return economy_repo.complete_goal_with_experience(account_id, goal, experience, client=self.client)
        finally:
            self.cache.invalidate_prefix(("goals", account_id))
