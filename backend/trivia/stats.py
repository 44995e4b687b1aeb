from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from .models import LeaderboardEntry, Player, PlayerStats
from .utils import sort_leaderboard


def pick_winner(players: Iterable[Player]) -> Tuple[Optional[str], int]:
    """Return the account with the strictly highest score and that score.

    Players are expected in join order; a tie keeps whoever was seen first.
    Nobody wins a game where every score is zero.
    """

    winner: Optional[str] = None
    best = 0
    for p in players:
        if p.score > best:
            winner, best = p.account, p.score
    return winner, best


def fold_session_results(
    players: List[Player],
    existing: Dict[str, PlayerStats],
    winner: Optional[str],
    now: int,
) -> List[PlayerStats]:
    """Apply one finished game to each player's lifetime stats.

    Nothing is mutated in place; the returned list holds the new documents in
    the same order as ``players``.
    """

    updated: List[PlayerStats] = []
    for p in players:
        current = existing.get(p.account) or PlayerStats(account=p.account)
        updated.append(
            PlayerStats(
                account=p.account,
                games_played=current.games_played + 1,
                total_wins=current.total_wins + (1 if p.account == winner else 0),
                total_score=current.total_score + p.score,
                best_score=max(current.best_score, p.score),
                total_correct_answers=current.total_correct_answers + p.correct_answers,
                longest_streak=max(current.longest_streak, p.best_streak),
                last_played_at=now,
            )
        )
    return updated


def build_leaderboard(players: Iterable[Player]) -> List[LeaderboardEntry]:
    ranked = sort_leaderboard([p for p in players if p.is_active])
    return [
        LeaderboardEntry(rank=i, account=p.account, display_name=p.display_name, score=p.score)
        for i, p in enumerate(ranked, start=1)
    ]
