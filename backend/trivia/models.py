from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class SessionStatus(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    COMPLETED = "completed"
    # Reserved; no transition leads here.
    CANCELLED = "cancelled"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class Player(BaseModel):
    account: str
    display_name: str
    score: int = 0
    current_streak: int = 0
    best_streak: int = 0
    correct_answers: int = 0
    answers_submitted: int = 0
    total_response_time: int = 0  # seconds, summed over every submission
    final_score_submitted: bool = False
    is_active: bool = True
    joined_at: int = 0


class Question(BaseModel):
    index: int
    content_hash: str = ""
    type: str = "multiple_choice"
    # Free-form so unknown difficulties survive a round-trip; they score as easy.
    difficulty: str = Difficulty.EASY.value
    time_limit: int
    correct_answer_hash: str
    started_at: int


class QuestionMeta(BaseModel):
    """What the host supplies when releasing a question. Trusted as given."""

    content_hash: str = ""
    type: str = "multiple_choice"
    difficulty: str = Difficulty.EASY.value
    time_limit: Optional[int] = None  # falls back to the session's question_duration
    correct_answer_hash: str


class Answer(BaseModel):
    session_id: int
    question_index: int
    account: str
    answer_hash: str
    submit_time: int
    response_time: int
    is_correct: bool
    points_earned: int


class PlayerStats(BaseModel):
    account: str
    games_played: int = 0
    total_wins: int = 0
    total_score: int = 0
    best_score: int = 0
    total_correct_answers: int = 0
    longest_streak: int = 0
    last_played_at: Optional[int] = None


class LeaderboardEntry(BaseModel):
    rank: int
    account: str
    display_name: str
    score: int


# created -> active -> completed, one way only
class Session(BaseModel):
    id: int
    host: str
    room_code: str
    status: SessionStatus = SessionStatus.CREATED
    created_at: int
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    current_question_index: int = 0
    question_start_time: Optional[int] = None
    question_duration: int
    players: List[Player] = Field(default_factory=list)
    player_list: List[str] = Field(default_factory=list)
    player_count: int = 0
    max_players: int
    # Keys are question indexes as strings so the document stays Mongo-friendly.
    questions: Dict[str, Question] = Field(default_factory=dict)
    winner: Optional[str] = None
    winning_score: int = 0

    def find_player(self, account: str) -> Optional[Player]:
        for p in self.players:
            if p.account == account:
                return p
        return None

    def active_player(self, account: str) -> Optional[Player]:
        p = self.find_player(account)
        return p if p is not None and p.is_active else None

    def question_at(self, index: int) -> Optional[Question]:
        return self.questions.get(str(index))
