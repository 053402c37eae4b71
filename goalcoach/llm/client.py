from openai import OpenAI
import os
from dotenv import load_dotenv, find_dotenv

from goalcoach import config

# Load environment variables
load_dotenv(find_dotenv())

_client: OpenAI | None = None


def get_client() -> OpenAI:
    """
    Shared OpenAI client, created on first use so imports never need a key.
    """
    global _client
    if _client is None:
        api_key = os.getenv('OPENAI_API_KEY')
        if not api_key:
            raise ValueError("Missing OPENAI_API_KEY. Put it in your .env file")

        # Strip any quotes that might be included
        api_key = api_key.strip('"').strip("'")
        _client = OpenAI(api_key=api_key, timeout=config.LLM_TIMEOUT, max_retries=0)
    return _client
