from datetime import date, datetime, timezone

from goalcoach import config
from goalcoach.core.errors import PersistenceError
from goalcoach.core.models import Goal, GoalStatus, UserEconomy, compute_level
from goalcoach.core.rewards import update_daily_streak
from goalcoach.db.supabase_client import get_supabase
from goalcoach.utils.logging import log

ECONOMY_COLUMNS = "user_id, total_xp, level, daily_streak, last_activity, version"


def get_or_create_economy(account_id: str, client=None) -> UserEconomy:
    """
    Retrieve the account's economy row, or create a fresh one at 0 XP / level 1.
    """
    client = client or get_supabase()
    try:
        response = client.table("user_profiles").select(ECONOMY_COLUMNS).eq("user_id", account_id).execute()

        if response.data:
            return UserEconomy.from_row(response.data[0])

        fresh = UserEconomy(account_id, version=1)
        insert_response = client.table("user_profiles").insert(fresh.to_row()).execute()
        if not insert_response.data:
            raise PersistenceError(f"Failed to insert user_profiles row for {account_id}", code="DB_WRITE")
        return fresh
    except PersistenceError:
        raise
    except Exception as e:
        log("EconomyRepo", f"Error in get_or_create_economy: {e}", "ERROR")
        raise PersistenceError(f"Could not load economy: {e}", code="DB_READ") from e


def save_activity(
    account_id: str,
    today: date,
    attempts: int = config.ECONOMY_WRITE_ATTEMPTS,
    client=None,
) -> UserEconomy:
    """
    Count `today` towards the stored streak with a compare-and-set on `version`.
    The streak is recomputed from the row read in each attempt; a concurrent
    writer bumps the version, in which case we re-read and retry.
    """
    client = client or get_supabase()
    for attempt in range(1, attempts + 1):
        current = get_or_create_economy(account_id, client=client)
        updated = update_daily_streak(current, today)
        try:
            update_response = client.table("user_profiles").update({
                "daily_streak": updated.daily_streak,
                "last_activity": updated.last_activity_date.isoformat(),
                "version": current.version + 1,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }).eq("user_id", account_id).eq("version", current.version).execute()
        except Exception as e:
            log("EconomyRepo", f"Error in save_activity: {e}", "ERROR")
            raise PersistenceError(f"Could not save activity: {e}", code="DB_WRITE") from e

        if update_response.data:
            return UserEconomy.from_row(update_response.data[0])
        log("EconomyRepo", f"Version conflict for {account_id} (attempt {attempt}/{attempts})", "WARNING")

    raise PersistenceError(f"Gave up saving activity for {account_id} after {attempts} attempts", code="DB_CONFLICT")


def complete_goal_with_experience(account_id: str, goal: Goal, experience: int, client=None) -> UserEconomy:
    """
    Mark the goal completed and add its XP in one database transaction
    (the complete_goal_with_xp function in sql/schema.sql).
    Returns the economy as stored afterwards.
    """
    if goal.status is not GoalStatus.COMPLETED:
        raise ValueError("Goal must be completed before it is committed")

    client = client or get_supabase()
    try:
        response = client.rpc("complete_goal_with_xp", {
            "target_goal_id": goal.id,
            "target_user_id": account_id,
            "completion_reasoning": goal.completion_justification,
            "calculated_xp": experience,
        }).execute()
    except Exception as e:
        log("EconomyRepo", f"Error in complete_goal_with_experience: {e}", "ERROR")
        raise PersistenceError(f"Could not complete goal: {e}", code="DB_WRITE") from e

    result = response.data[0] if response.data else {}
    if not result.get("success"):
        # already completed elsewhere; nothing was added
        log("EconomyRepo", f"Goal {goal.id[:8]} not committed: {result.get('message')}", "WARNING")
    else:
        log("EconomyRepo", f"Goal {goal.id[:8]} committed, total {result.get('new_total_xp')} "
                           f"(level {compute_level(int(result.get('new_total_xp') or 0))})", "SUCCESS")
    return get_or_create_economy(account_id, client=client)
