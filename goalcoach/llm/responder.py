"""
The three LLM collaborators the coaching core depends on:
reply generation, goal detailing and completion verification.

Every OpenAI failure surfaces as ProviderError. Nothing here retries on its
own; the user resending is the retry.
"""
import json
from typing import Optional

import openai

from goalcoach import config
from goalcoach.core.errors import ProviderError
from goalcoach.core.models import GoalDetails, Transcript, VerificationResult
from goalcoach.llm.client import get_client
from goalcoach.llm.dialogue_chunk import build_dialogue_chunk
from goalcoach.llm.prompts import COACH_SYSTEM_PROMPT, GOAL_DETAILING_PROMPT, VERIFICATION_PROMPT
from goalcoach.utils.logging import log
from goalcoach.utils.validation import to_goal_details, validate_goal_details


def to_provider_error(error: Exception) -> ProviderError:
    if isinstance(error, openai.APITimeoutError):
        return ProviderError("AI service timed out. Please try again.", code="OPENAI_TIMEOUT")
    if isinstance(error, openai.APIConnectionError):
        return ProviderError("Network connection failed. Please check your internet connection.", code="NETWORK_ERROR", status_code=0)

    status = getattr(error, "status_code", None)
    if status == 401:
        return ProviderError("Invalid OpenAI API key. Please check your configuration.", code="OPENAI_AUTH_ERROR", status_code=401)
    if status == 402:
        return ProviderError("OpenAI billing issue. Please check your account credits.", code="OPENAI_BILLING_ERROR", status_code=402)
    if status == 429:
        return ProviderError("Too many requests to OpenAI. Please wait a moment and try again.", code="OPENAI_RATE_LIMIT", status_code=429)
    if status is not None and status >= 500:
        return ProviderError("OpenAI service temporarily unavailable. Please try again later.", code="OPENAI_SERVER_ERROR", status_code=status)
    return ProviderError("AI service temporarily unavailable. Please try again.", code="OPENAI_ERROR", status_code=status)


def get_message_completion(messages, model=config.COACH_MODEL, temperature=1, response_format=None) -> str:
    try:
        client = get_client()
    except ValueError as e:
        raise ProviderError(str(e), code="OPENAI_AUTH_ERROR", status_code=401) from e

    kwargs = {"model": model, "messages": messages, "temperature": temperature}
    if response_format:
        kwargs["response_format"] = response_format

    try:
        response = client.chat.completions.create(**kwargs)
    except openai.OpenAIError as e:
        log("LLM", f"{model} request failed: {e}", "ERROR")
        raise to_provider_error(e) from e

    content = response.choices[0].message.content if response.choices else None
    if not content or not content.strip():
        raise ProviderError("AI service returned an empty response.", code="OPENAI_EMPTY")
    return content


def _render_hints(context_hints: Optional[dict]) -> str:
    parts = [f"{key.replace('_', ' ')}: {value}" for key, value in (context_hints or {}).items() if value not in (None, "", [])]
    return "Context: " + "; ".join(parts) if parts else ""


def generate_reply(transcript: Transcript, phase_instruction: str, context_hints: Optional[dict] = None) -> str:
    messages = [
        {"role": "system", "content": COACH_SYSTEM_PROMPT},
        {"role": "system", "content": f"PHASE_INSTRUCTION: {phase_instruction}"},
    ]
    hints = _render_hints(context_hints)
    if hints:
        messages.append({"role": "system", "content": hints})
    messages.extend(transcript.as_messages())

    return get_message_completion(messages, model=config.COACH_MODEL).strip()


def detail_goal(transcript: Transcript) -> Optional[GoalDetails]:
    """
    Returns None when there is nothing concrete to commit to
    (empty conversation, unparseable or invalid JSON, empty description).
    """
    dialogue_chunk = build_dialogue_chunk(transcript, max_turns=40, max_chars=6000)
    if not dialogue_chunk:
        return None

    messages = [
        {"role": "system", "content": GOAL_DETAILING_PROMPT},
        {"role": "user", "content": dialogue_chunk},
    ]
    raw = get_message_completion(messages, model=config.DETAIL_MODEL, response_format={"type": "json_object"})

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        log("LLM", "Error decoding JSON from goal detailing", "WARNING")
        return None

    is_valid, error_msg = validate_goal_details(payload)
    if not is_valid:
        log("LLM", f"Goal detailing rejected: {error_msg}", "WARNING")
        return None
    return to_goal_details(payload)


def verify_completion(goal_description: str, justification: str) -> VerificationResult:
    messages = [
        {"role": "system", "content": VERIFICATION_PROMPT},
        {"role": "user", "content": f"Goal: {goal_description}\n\nUser's completion reasoning: {justification}"},
    ]
    raw = get_message_completion(messages, model=config.VERIFY_MODEL, response_format={"type": "json_object"})

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        # Plain-text verdicts: "Verified" / "Needs more detail"
        text = raw.strip()
        return VerificationResult(text.lower().startswith("verified"), text)

    if not isinstance(payload, dict):
        return VerificationResult(False, "Needs more detail.")
    return VerificationResult(payload.get("verified") is True, str(payload.get("feedback") or ""))
