import time
from typing import List

from .models import Player


def now_ts() -> int:
    return int(time.time())


def sort_leaderboard(players: List[Player]) -> List[Player]:
    # sorted() is stable, so equal scores keep join order
    return sorted(players, key=lambda p: -p.score)
