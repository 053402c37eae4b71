from goalcoach.core.models import Difficulty, GoalDetails
from goalcoach.core.rewards import clamp_experience, default_experience

REQUIRED_DETAIL_KEYS = ["description", "difficulty", "timeframe"]


def validate_goal_details(payload: dict) -> tuple[bool, str]:
    """
    Validates the goal-detailing JSON.
    Returns (is_valid: bool, error_message: str).
    """
    if not isinstance(payload, dict):
        return False, "Payload is not a dictionary"

    for key in REQUIRED_DETAIL_KEYS:
        if key not in payload:
            return False, f"Missing required key: {key}"

    if not isinstance(payload["description"], str) or not payload["description"].strip():
        return False, "description is empty"

    if str(payload["difficulty"]).lower() not in {d.value for d in Difficulty}:
        return False, f"Unknown difficulty: {payload['difficulty']}"

    return True, ""


def to_goal_details(payload: dict) -> GoalDetails:
    """
    Builds GoalDetails from a validated payload.
    Missing or garbled XP falls back to the difficulty default.
    """
    difficulty = Difficulty(str(payload["difficulty"]).lower())
    try:
        experience = clamp_experience(int(payload.get("xpValue", payload.get("experience_value"))))
    except (TypeError, ValueError):
        experience = default_experience(difficulty)

    return GoalDetails(
        description=payload["description"].strip(),
        difficulty=difficulty,
        timeframe=str(payload["timeframe"]),
        experience_value=experience,
    )
