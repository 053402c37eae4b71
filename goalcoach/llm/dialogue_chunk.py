from goalcoach.core.models import Transcript, TurnKind


def build_dialogue_chunk(transcript: Transcript, max_turns: int = 40, max_chars: int = 6000) -> str:
    """
    Renders the transcript as "Role: text" lines for the detailing prompt.
    Keeps the most recent turns, capped at max_turns or max_chars to avoid token blowups.
    """
    if not transcript or not transcript.turns:
        return ""

    # Apologies carry no content worth detailing
    valid_turns = [t for t in transcript.turns if t.kind is not TurnKind.APOLOGY and t.text.strip()]
    recent = valid_turns[-max_turns:]

    # Walk backwards so the newest turns survive the character cap
    lines = []
    total_chars = 0
    for turn in reversed(recent):
        line = f"{turn.speaker.value.capitalize()}: {turn.text}"
        if total_chars + len(line) > max_chars:
            break
        lines.append(line)
        total_chars += len(line) + 1  # +1 for newline

    return "\n".join(reversed(lines))
