from pydantic import BaseModel, Field
from typing import List, Optional
from .models import Player, QuestionMeta


class CreateSessionIn(BaseModel):
    room_code: str = Field(min_length=1, max_length=64)
    max_players: int = Field(ge=1)
    question_duration: Optional[int] = None


class CreateSessionOut(BaseModel):
    session_id: int


class JoinIn(BaseModel):
    room_code: str
    display_name: str = Field(min_length=1, max_length=64)


class StartQuestionIn(QuestionMeta):
    question_index: int = Field(ge=0)


class AnswerIn(BaseModel):
    question_index: int = Field(ge=0)
    answer_hash: str


class AnswerOut(BaseModel):
    points_earned: int
    score: int


class FinalScoreIn(BaseModel):
    score: int
    correct_answers: int = 0
    best_streak: int = 0


class WinnerOut(BaseModel):
    winner: Optional[str]
    winning_score: int


class PublicSessionOut(BaseModel):
    id: int
    host: str
    status: str
    player_count: int
    max_players: int
    players: List[Player]
    current_question_idx: int
    question_start_time: Optional[int]
    question_duration: int
    start_time: Optional[int]
    end_time: Optional[int]
    winner: Optional[str]
    winning_score: int
