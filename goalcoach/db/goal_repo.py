from goalcoach.core.errors import PersistenceError
from goalcoach.core.models import Goal, GoalStatus
from goalcoach.db.supabase_client import get_supabase
from goalcoach.utils.logging import log


def save_goal(account_id: str, goal: Goal, client=None) -> None:
    """
    Upsert an accepted or completed goal. Pending and declined goals are never stored.
    """
    if goal.status not in (GoalStatus.ACCEPTED, GoalStatus.COMPLETED):
        raise ValueError(f"Refusing to store a {goal.status.value} goal")

    client = client or get_supabase()
    try:
        client.table("goals").upsert(goal.to_row(account_id)).execute()
    except Exception as e:
        log("GoalRepo", f"Error in save_goal: {e}", "ERROR")
        raise PersistenceError(f"Could not save goal: {e}", code="DB_WRITE") from e


def list_goals(account_id: str, include_completed: bool = True, limit: int = 100, client=None) -> list[Goal]:
    """
    Goals for the account, newest first.
    """
    client = client or get_supabase()
    try:
        query = client.table("goals").select("*").eq("user_id", account_id)
        if not include_completed:
            query = query.eq("completed", False)
        response = query.order("created_at", desc=True).limit(limit).execute()
        return [Goal.from_row(row) for row in (response.data or [])]
    except Exception as e:
        log("GoalRepo", f"Error in list_goals: {e}", "ERROR")
        raise PersistenceError(f"Could not list goals: {e}", code="DB_READ") from e
