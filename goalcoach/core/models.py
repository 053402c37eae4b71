"""
Data types shared by the coaching core: turns, transcripts, goals, the
per-account reward economy and the per-conversation coaching counters.

Rows coming from and going to the store are plain dicts; every type here
knows how to convert itself with to_row()/from_row().
"""
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional

from goalcoach.core.errors import ConversationClosedError

XP_PER_LEVEL = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _parse_ts(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    # PostgREST returns ISO strings, sometimes with a trailing Z
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _parse_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Speaker(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class TurnKind(str, Enum):
    GREETING = "greeting"
    MESSAGE = "message"                        # free text typed by the user
    REPLY = "reply"                            # coaching question from the assistant
    PROPOSAL = "proposal"                      # assistant reply carrying the goal marker
    GOAL_RESPONSE = "goal_response"            # user's accept/decline
    PROPOSAL_WITHDRAWN = "proposal_withdrawn"  # detailing found nothing to commit to
    APOLOGY = "apology"                        # generation failed, nothing advanced
    FOLLOW_UP = "follow_up"                    # assistant turn after a goal is resolved
    CLOSING = "closing"
    WELCOME = "welcome"


class Phase(str, Enum):
    COACHING_Q1 = "COACHING_Q1"
    COACHING_Q2 = "COACHING_Q2"
    COACHING_Q3 = "COACHING_Q3"
    PROPOSING_GOAL = "PROPOSING_GOAL"
    AWAITING_GOAL_RESPONSE = "AWAITING_GOAL_RESPONSE"
    ASKING_TO_CONCLUDE = "ASKING_TO_CONCLUDE"
    CONCLUDED = "CONCLUDED"

    @property
    def is_coaching(self) -> bool:
        return self in (Phase.COACHING_Q1, Phase.COACHING_Q2, Phase.COACHING_Q3)


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class GoalStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    COMPLETED = "completed"


class GoalDecision(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"


@dataclass(frozen=True)
class Turn:
    speaker: Speaker
    text: str
    kind: TurnKind
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    is_voice: bool = False

    @classmethod
    def user(cls, text: str, kind: TurnKind = TurnKind.MESSAGE, is_voice: bool = False) -> "Turn":
        return cls(Speaker.USER, text, kind, is_voice=is_voice)

    @classmethod
    def assistant(cls, text: str, kind: TurnKind = TurnKind.REPLY) -> "Turn":
        return cls(Speaker.ASSISTANT, text, kind)

    def to_row(self, conversation_id: str) -> dict:
        return {
            "id": self.id,
            "conversation_id": conversation_id,
            "role": self.speaker.value,
            "content": self.text,
            "kind": self.kind.value,
            "is_voice": self.is_voice,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_row(cls, row: dict) -> "Turn":
        speaker = Speaker(row["role"])
        default_kind = TurnKind.MESSAGE if speaker is Speaker.USER else TurnKind.REPLY
        return cls(
            speaker=speaker,
            text=row.get("content", ""),
            kind=TurnKind(row.get("kind") or default_kind),
            id=row["id"],
            created_at=_parse_ts(row.get("created_at")) or utcnow(),
            is_voice=bool(row.get("is_voice", False)),
        )


DEFAULT_TITLE = "Coaching Session"


@dataclass
class Transcript:
    conversation_id: str
    account_id: str
    title: str = DEFAULT_TITLE
    turns: List[Turn] = field(default_factory=list)
    completed: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def append(self, turn: Turn) -> Turn:
        """Append a turn. Closed transcripts only take the internal welcome turn."""
        if self.completed and turn.kind is not TurnKind.WELCOME:
            raise ConversationClosedError()
        if self.turns and turn.created_at < self.turns[-1].created_at:
            # keep append order authoritative even if clocks disagree
            turn = replace(turn, created_at=self.turns[-1].created_at)
        self.turns.append(turn)
        return turn

    def last(self, speaker: Optional[Speaker] = None) -> Optional[Turn]:
        for turn in reversed(self.turns):
            if speaker is None or turn.speaker is speaker:
                return turn
        return None

    def as_messages(self) -> list[dict]:
        """Chat-completion style [{"role", "content"}] view, apologies left out."""
        return [
            {"role": t.speaker.value, "content": t.text}
            for t in self.turns
            if t.kind is not TurnKind.APOLOGY
        ]

    def to_row(self) -> dict:
        return {
            "id": self.conversation_id,
            "user_id": self.account_id,
            "title": self.title,
            "completed": self.completed,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_row(cls, row: dict, turns: Optional[List[Turn]] = None) -> "Transcript":
        return cls(
            conversation_id=row["id"],
            account_id=row["user_id"],
            title=row.get("title") or DEFAULT_TITLE,
            turns=list(turns or []),
            completed=bool(row.get("completed", False)),
            created_at=_parse_ts(row.get("created_at")) or utcnow(),
        )


@dataclass
class Goal:
    description: str
    experience_value: int = 75
    difficulty: Difficulty = Difficulty.MEDIUM
    motivation: int = 7
    status: GoalStatus = GoalStatus.PENDING
    id: str = field(default_factory=new_id)
    deadline: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completion_justification: Optional[str] = None
    conversation_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not 1 <= self.motivation <= 10:
            raise ValueError(f"motivation must be within 1..10, got {self.motivation}")

    @property
    def completed(self) -> bool:
        return self.status is GoalStatus.COMPLETED

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return not self.completed and self.deadline is not None and self.deadline < now

    def to_row(self, account_id: str) -> dict:
        return {
            "id": self.id,
            "user_id": account_id,
            "session_id": self.conversation_id,
            "description": self.description,
            "xp_value": self.experience_value,
            "difficulty": self.difficulty.value,
            "motivation": self.motivation,
            "completed": self.completed,
            "completed_at": _iso(self.completed_at),
            "completion_reasoning": self.completion_justification,
            "deadline": _iso(self.deadline),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_row(cls, row: dict) -> "Goal":
        # Only accepted goals are ever stored, so the flag is enough
        status = GoalStatus.COMPLETED if row.get("completed") else GoalStatus.ACCEPTED
        return cls(
            id=row["id"],
            description=row["description"],
            experience_value=int(row.get("xp_value") or 0),
            difficulty=Difficulty(row.get("difficulty") or "medium"),
            motivation=int(row.get("motivation") or 7),
            status=status,
            deadline=_parse_ts(row.get("deadline")),
            completed_at=_parse_ts(row.get("completed_at")),
            completion_justification=row.get("completion_reasoning"),
            conversation_id=row.get("session_id"),
            created_at=_parse_ts(row.get("created_at")) or utcnow(),
        )


def compute_level(total_experience: int) -> int:
    """floor(total / 1000) + 1 for any non-negative total."""
    if total_experience < 0:
        raise ValueError("total_experience cannot be negative")
    return total_experience // XP_PER_LEVEL + 1


@dataclass(frozen=True)
class UserEconomy:
    account_id: str
    total_experience: int = 0
    daily_streak: int = 0
    last_activity_date: Optional[date] = None
    version: int = 0

    def __post_init__(self):
        if self.total_experience < 0:
            raise ValueError("total_experience cannot be negative")
        if self.daily_streak < 0:
            raise ValueError("daily_streak cannot be negative")

    @property
    def level(self) -> int:
        return compute_level(self.total_experience)

    def with_experience(self, total_experience: int) -> "UserEconomy":
        return replace(self, total_experience=total_experience)

    def same_totals(self, other: "UserEconomy") -> bool:
        return (
            self.total_experience == other.total_experience
            and self.daily_streak == other.daily_streak
            and self.last_activity_date == other.last_activity_date
        )

    def to_row(self) -> dict:
        return {
            "user_id": self.account_id,
            "total_xp": self.total_experience,
            "level": self.level,
            "daily_streak": self.daily_streak,
            "last_activity": self.last_activity_date.isoformat() if self.last_activity_date else None,
            "version": self.version,
        }

    @classmethod
    def from_row(cls, row: dict) -> "UserEconomy":
        return cls(
            account_id=row["user_id"],
            total_experience=int(row.get("total_xp") or 0),
            daily_streak=int(row.get("daily_streak") or 0),
            last_activity_date=_parse_date(row.get("last_activity")),
            version=int(row.get("version") or 0),
        )


@dataclass(frozen=True)
class CoachingCounters:
    questions_asked: int = 0
    goals_proposed_in_conversation: int = 0
    phase: Phase = Phase.COACHING_Q1


@dataclass(frozen=True)
class GoalDetails:
    description: str
    difficulty: Difficulty
    timeframe: str
    experience_value: int


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    feedback: str = ""


@dataclass(frozen=True)
class CompletionOutcome:
    verified: bool
    feedback: str
    experience_awarded: int = 0
    economy: Optional[UserEconomy] = None
    goal: Optional[Goal] = None
