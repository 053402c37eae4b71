import os
from supabase import create_client, Client
from dotenv import load_dotenv, find_dotenv

# Load environment variables
load_dotenv(find_dotenv())

_client: Client | None = None


def get_supabase() -> Client:
    """
    Shared Supabase client, created on first use.
    """
    global _client
    if _client is None:
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_ANON_KEY")
        if not url or not key:
            raise ValueError("Missing SUPABASE_URL or SUPABASE_ANON_KEY in .env")
        _client = create_client(url.strip('"').strip("'"), key.strip('"').strip("'"))
    return _client
