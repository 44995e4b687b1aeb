"""Points for a single answer.

Pure functions only: nothing here touches the store, so the controller can
compute a score against its snapshot before deciding to write anything.
"""

from __future__ import annotations

from pydantic import BaseModel

from .errors import InvalidDuration
from .models import Difficulty

CORRECT_BASE_POINTS = 100
MAX_TIME_BONUS = 50
STREAK_BONUS_PER_ANSWER = 10
STREAK_BONUS_THRESHOLD = 2

DIFFICULTY_MULTIPLIERS = {
    Difficulty.EASY.value: 100,
    Difficulty.MEDIUM.value: 150,
    Difficulty.HARD.value: 200,
}
DEFAULT_MULTIPLIER = 100


class ScoreBreakdown(BaseModel):
    base_score: int
    time_bonus: int
    multiplier: int
    raw_points: int
    new_streak: int
    streak_bonus: int
    points: int


def difficulty_multiplier(difficulty: str | Difficulty | None) -> int:
    if isinstance(difficulty, Difficulty):
        difficulty = difficulty.value
    if isinstance(difficulty, str):
        difficulty = difficulty.lower()
    return DIFFICULTY_MULTIPLIERS.get(difficulty, DEFAULT_MULTIPLIER)


def time_bonus(response_time: int, time_limit: int) -> int:
    if time_limit <= 0:
        raise InvalidDuration()
    if response_time >= time_limit:
        return 0
    return (time_limit - max(response_time, 0)) * MAX_TIME_BONUS // time_limit


def calculate_points(
    is_correct: bool,
    response_time: int,
    time_limit: int,
    difficulty: str | Difficulty | None,
    prior_streak: int,
) -> ScoreBreakdown:
    base = CORRECT_BASE_POINTS if is_correct else 0
    bonus = time_bonus(response_time, time_limit)
    multiplier = difficulty_multiplier(difficulty)
    raw = (base + bonus) * multiplier // 100

    new_streak = prior_streak + 1 if is_correct else 0
    streak_bonus = 0
    if is_correct and new_streak >= STREAK_BONUS_THRESHOLD:
        streak_bonus = new_streak * STREAK_BONUS_PER_ANSWER

    return ScoreBreakdown(
        base_score=base,
        time_bonus=bonus,
        multiplier=multiplier,
        raw_points=raw,
        new_streak=new_streak,
        streak_bonus=streak_bonus,
        points=raw + streak_bonus,
    )
