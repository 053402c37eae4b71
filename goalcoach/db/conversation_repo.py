from datetime import datetime, timezone

from goalcoach.core.errors import PersistenceError
from goalcoach.core.models import Transcript, Turn
from goalcoach.db.supabase_client import get_supabase
from goalcoach.utils.logging import log


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_conversation(transcript: Transcript, client=None) -> None:
    """
    Upsert the conversation row and any turns it already holds (the greeting).
    Both are keyed by id, so a retried call writes nothing twice.
    """
    client = client or get_supabase()
    try:
        client.table("conversations").upsert(transcript.to_row()).execute()
        if transcript.turns:
            rows = [t.to_row(transcript.conversation_id) for t in transcript.turns]
            client.table("messages").upsert(rows).execute()
    except Exception as e:
        log("ConversationRepo", f"Error in create_conversation: {e}", "ERROR")
        raise PersistenceError(f"Could not create conversation: {e}", code="DB_WRITE") from e


def save_turn(conversation_id: str, turn: Turn, client=None) -> None:
    """
    Save a single turn and bump the conversation's updated_at. Safe to retry.
    """
    client = client or get_supabase()
    try:
        client.table("messages").upsert(turn.to_row(conversation_id)).execute()
        client.table("conversations").update({"updated_at": _now_iso()}).eq("id", conversation_id).execute()
    except Exception as e:
        log("ConversationRepo", f"Error in save_turn: {e}", "ERROR")
        raise PersistenceError(f"Could not save turn: {e}", code="DB_WRITE") from e


def update_title(conversation_id: str, title: str, client=None) -> None:
    client = client or get_supabase()
    try:
        client.table("conversations").update({"title": title}).eq("id", conversation_id).execute()
    except Exception as e:
        log("ConversationRepo", f"Error in update_title: {e}", "ERROR")
        raise PersistenceError(f"Could not rename conversation: {e}", code="DB_WRITE") from e


def mark_completed(conversation_id: str, client=None) -> None:
    client = client or get_supabase()
    try:
        client.table("conversations").update({
            "completed": True,
            "updated_at": _now_iso(),
        }).eq("id", conversation_id).execute()
    except Exception as e:
        log("ConversationRepo", f"Error in mark_completed: {e}", "ERROR")
        raise PersistenceError(f"Could not complete conversation: {e}", code="DB_WRITE") from e


def load_transcript(conversation_id: str, client=None) -> Transcript:
    """
    Load a conversation with its turns in chronological order.
    """
    client = client or get_supabase()
    try:
        response = client.table("conversations").select("*").eq("id", conversation_id).execute()
        if not response.data:
            raise PersistenceError(f"Conversation {conversation_id} not found", code="NOT_FOUND")

        messages = client.table("messages")\
            .select("*")\
            .eq("conversation_id", conversation_id)\
            .order("created_at", desc=False)\
            .execute()
        turns = [Turn.from_row(row) for row in (messages.data or [])]
        return Transcript.from_row(response.data[0], turns)
    except PersistenceError:
        raise
    except Exception as e:
        log("ConversationRepo", f"Error in load_transcript: {e}", "ERROR")
        raise PersistenceError(f"Could not load conversation: {e}", code="DB_READ") from e


def list_conversations(account_id: str, limit: int = 50, client=None) -> list[dict]:
    """
    Most recently updated conversations first.
    Returns: [{"id", "title", "completed", "created_at", "updated_at"}, ...]
    """
    client = client or get_supabase()
    try:
        response = client.table("conversations")\
            .select("id, title, completed, created_at, updated_at")\
            .eq("user_id", account_id)\
            .order("updated_at", desc=True)\
            .limit(limit)\
            .execute()
        return response.data or []
    except Exception as e:
        log("ConversationRepo", f"Error in list_conversations: {e}", "ERROR")
        raise PersistenceError(f"Could not list conversations: {e}", code="DB_READ") from e
