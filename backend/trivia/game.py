from __future__ import annotations
import asyncio
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .db import db as default_db
from .errors import (
    AlreadyAnswered,
    InvalidAnswer,
    InvalidDuration,
    InvalidQuestionIndex,
    InvalidRoomCode,
    PlayerAlreadyJoined,
    PlayerNotInSession,
    QuestionNotActive,
    SessionAlreadyActive,
    SessionFull,
    SessionNotActive,
    SessionNotFound,
    TriviaError,
    Unauthorized,
)
from .events import EventStore, event_store as default_event_store
from .logger import logger
from .models import (
    Answer,
    LeaderboardEntry,
    Player,
    PlayerStats,
    Question,
    QuestionMeta,
    Session,
    SessionStatus,
)
from .scoring import calculate_points
from .stats import build_leaderboard, fold_session_results, pick_winner
from .utils import now_ts


SESSION_COUNTER_ID = "session_id"


class GameController:
    """Owns every state transition of a trivia session.

    Each mutating call takes the session's lock, loads a fresh snapshot,
    checks all of its preconditions and only then writes. A rejected call
    leaves the store untouched.
    """

    def __init__(self, database: Any = None, events: EventStore | None = None):
        self.db = database or default_db
        self.events = events or (default_event_store if database is None else EventStore(database))
        self.locks: Dict[int, asyncio.Lock] = {}
        self._stats_lock = asyncio.Lock()

    def _lock(self, session_id: int) -> asyncio.Lock:
        self.locks.setdefault(session_id, asyncio.Lock())
        return self.locks[session_id]

    @staticmethod
    def _reject(exc: TriviaError, **context) -> TriviaError:
        logger.debug("Call rejected", error=exc.code, **context)
        return exc

    async def get_session(self, session_id: int) -> Session | None:
        doc = await self.db.sessions.find_one({"id": session_id})
        return Session(**doc) if doc else None

    async def _require_session(self, session_id: int) -> Session:
        s = await self.get_session(session_id)
        if not s:
            raise self._reject(SessionNotFound(), session_id=session_id)
        return s

    @staticmethod
    def _roster(s: Session) -> List[Player]:
        # join order, as recorded in player_list
        by_account = {p.account: p for p in s.players}
        return [by_account[a] for a in s.player_list if a in by_account]

    async def save_session(self, s: Session):
        await self.db.sessions.update_one(
            {"id": s.id},
            {"$set": s.model_dump(mode="json")},
            upsert=True
        )

    async def _emit(self, session_id: int, payload: dict):
        # State is already committed when this runs, so a failing sink must not fail the call.
        try:
            await self.events.append(session_id, payload)
        except Exception:
            logger.exception("Event append failed", session_id=session_id, event_type=payload.get("type"))

    async def _next_session_id(self) -> int:
        counter = await self.db.counters.find_one_and_update(
            {"_id": SESSION_COUNTER_ID},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(counter["seq"])

    # -- lifecycle -----------------------------------------------------------

    async def create_session(
        self,
        room_code: str,
        max_players: int,
        question_duration: int,
        caller: str,
        now: Optional[int] = None,
    ) -> int:
        now = now_ts() if now is None else now
        if question_duration <= 0:
            raise self._reject(InvalidDuration(), host=caller)

        session_id = await self._next_session_id()
        s = Session(
            id=session_id,
            host=caller,
            room_code=room_code,
            created_at=now,
            question_duration=question_duration,
            max_players=max_players,
        )
        await self.save_session(s)

        await self._emit(
            session_id,
            {
                "type": "session_created",
                "session_id": session_id,
                "host": caller,
                "room_code": room_code,
                "max_players": max_players,
                "timestamp": now,
            },
        )
        logger.info("Session created", session_id=session_id, host=caller, max_players=max_players)
        return session_id

    async def join_session(
        self,
        session_id: int,
        room_code: str,
        display_name: str,
        caller: str,
        now: Optional[int] = None,
    ) -> Player:
        now = now_ts() if now is None else now
        async with self._lock(session_id):
            s = await self._require_session(session_id)

            if s.room_code != room_code:
                raise self._reject(InvalidRoomCode(), session_id=session_id, account=caller)
            if s.status != SessionStatus.CREATED:
                raise self._reject(SessionAlreadyActive(), session_id=session_id, account=caller)
            if s.player_count >= s.max_players:
                raise self._reject(SessionFull(), session_id=session_id, account=caller)
            if s.active_player(caller) is not None:
                raise self._reject(PlayerAlreadyJoined(), session_id=session_id, account=caller)

            p = s.find_player(caller)
            if p is None:
                p = Player(account=caller, display_name=display_name, joined_at=now)
                s.players.append(p)
            else:
                # Reactivating keeps the record but starts it over.
                p.display_name = display_name
                p.score = p.current_streak = p.best_streak = p.correct_answers = 0
                p.answers_submitted = p.total_response_time = 0
                p.final_score_submitted = False
                p.is_active = True
                p.joined_at = now

            if caller not in s.player_list:
                s.player_list.append(caller)
            s.player_count += 1
            await self.save_session(s)

            await self._emit(
                session_id,
                {
                    "type": "player_joined",
                    "session_id": session_id,
                    "player": caller,
                    "player_count": s.player_count,
                },
            )
            logger.info("Player joined", session_id=session_id, account=caller, player_count=s.player_count)
            return p

    async def start_session(self, session_id: int, caller: str, now: Optional[int] = None):
        now = now_ts() if now is None else now
        async with self._lock(session_id):
            s = await self._require_session(session_id)

            if s.host != caller:
                raise self._reject(Unauthorized(), session_id=session_id, account=caller)
            if s.status != SessionStatus.CREATED:
                raise self._reject(SessionAlreadyActive(), session_id=session_id)

            s.status = SessionStatus.ACTIVE
            s.start_time = now
            await self.save_session(s)

            await self._emit(
                session_id,
                {
                    "type": "session_started",
                    "session_id": session_id,
                    "host": caller,
                    "start_time": now,
                },
            )
            logger.info("Session started", session_id=session_id, players=s.player_count)

    async def start_question(
        self,
        session_id: int,
        question_index: int,
        meta: QuestionMeta,
        caller: str,
        now: Optional[int] = None,
    ) -> Question:
        now = now_ts() if now is None else now
        async with self._lock(session_id):
            s = await self._require_session(session_id)

            if s.host != caller:
                raise self._reject(Unauthorized(), session_id=session_id, account=caller)
            if s.status != SessionStatus.ACTIVE:
                raise self._reject(SessionNotActive(), session_id=session_id)

            time_limit = s.question_duration if meta.time_limit is None else meta.time_limit
            if time_limit <= 0:
                raise self._reject(InvalidDuration(), session_id=session_id, question_index=question_index)

            # Re-using an index replaces the stored question; the host is trusted here.
            q = Question(
                index=question_index,
                content_hash=meta.content_hash,
                type=meta.type,
                difficulty=meta.difficulty,
                time_limit=time_limit,
                correct_answer_hash=meta.correct_answer_hash,
                started_at=now,
            )
            s.questions[str(question_index)] = q
            s.current_question_index = question_index
            s.question_start_time = now
            await self.save_session(s)

            await self._emit(
                session_id,
                {
                    "type": "question_started",
                    "session_id": session_id,
                    "question_index": question_index,
                    "difficulty": q.difficulty,
                    "time_limit": time_limit,
                    "start_time": now,
                },
            )
            logger.info("Question started", session_id=session_id, question_index=question_index)
            return q

    async def submit_answer(
        self,
        session_id: int,
        question_index: int,
        answer_hash: str,
        caller: str,
        now: Optional[int] = None,
    ) -> int:
        now = now_ts() if now is None else now
        async with self._lock(session_id):
            s = await self._require_session(session_id)
            ctx = {"session_id": session_id, "account": caller, "question_index": question_index}

            if s.status != SessionStatus.ACTIVE:
                raise self._reject(SessionNotActive(), **ctx)
            if question_index != s.current_question_index:
                raise self._reject(InvalidQuestionIndex(), **ctx)

            p = s.active_player(caller)
            if p is None:
                raise self._reject(PlayerNotInSession(), **ctx)

            existing = await self.db.answers.find_one({
                "session_id": session_id,
                "question_index": question_index,
                "account": caller,
            })
            if existing:
                raise self._reject(AlreadyAnswered(), **ctx)

            q = s.question_at(question_index)
            if q is None or s.question_start_time is None or now > s.question_start_time + q.time_limit:
                raise self._reject(QuestionNotActive(), **ctx)
            if not answer_hash:
                raise self._reject(InvalidAnswer("Answer hash is empty"), **ctx)

            is_correct = answer_hash == q.correct_answer_hash
            response_time = max(now - s.question_start_time, 0)
            breakdown = calculate_points(is_correct, response_time, q.time_limit, q.difficulty, p.current_streak)

            answer = Answer(
                session_id=session_id,
                question_index=question_index,
                account=caller,
                answer_hash=answer_hash,
                submit_time=now,
                response_time=response_time,
                is_correct=is_correct,
                points_earned=breakdown.points,
            )
            try:
                await self.db.answers.insert_one(answer.model_dump())
            except DuplicateKeyError as exc:
                raise self._reject(AlreadyAnswered(), **ctx) from exc

            if is_correct:
                p.current_streak = breakdown.new_streak
                p.correct_answers += 1
                p.best_streak = max(p.best_streak, breakdown.new_streak)
            else:
                p.current_streak = 0
            p.score += breakdown.points
            p.answers_submitted += 1
            p.total_response_time += response_time

            if p.score > s.winning_score:
                s.winner = caller
                s.winning_score = p.score

            try:
                await self.save_session(s)
            except Exception:
                logger.exception("Saving answer failed, removing stored answer", **ctx)
                await self.db.answers.delete_many({
                    "session_id": session_id,
                    "question_index": question_index,
                    "account": caller,
                })
                raise

            await self._emit(
                session_id,
                {
                    "type": "answer_submitted",
                    "session_id": session_id,
                    "player": caller,
                    "points_earned": breakdown.points,
                },
            )
            logger.info(
                "Answer submitted",
                is_correct=is_correct,
                points=breakdown.points,
                streak=p.current_streak,
                **ctx,
            )
            return breakdown.points

    async def submit_final_score(
        self,
        session_id: int,
        final_score: int,
        caller: str,
        correct_answers: int = 0,
        best_streak: int = 0,
    ) -> int:
        """Record a client-tallied final score for games scored off-line.

        Scores never go down, so a report below what the player already has
        is rejected rather than applied.
        """

        async with self._lock(session_id):
            s = await self._require_session(session_id)
            ctx = {"session_id": session_id, "account": caller}

            if s.status != SessionStatus.ACTIVE:
                raise self._reject(SessionNotActive(), **ctx)
            p = s.active_player(caller)
            if p is None:
                raise self._reject(PlayerNotInSession(), **ctx)
            if p.final_score_submitted:
                raise self._reject(AlreadyAnswered("Final score already submitted"), **ctx)
            if min(final_score, correct_answers, best_streak) < 0:
                raise self._reject(InvalidAnswer("Scores and counters cannot be negative"), **ctx)
            if final_score < p.score:
                raise self._reject(InvalidAnswer("Final score is lower than the current score"), **ctx)

            p.score = final_score
            p.correct_answers = max(p.correct_answers, correct_answers)
            p.best_streak = max(p.best_streak, best_streak)
            p.final_score_submitted = True

            if p.score > s.winning_score:
                s.winner = caller
                s.winning_score = p.score

            await self.save_session(s)

            await self._emit(
                session_id,
                {
                    "type": "final_score_submitted",
                    "session_id": session_id,
                    "player": caller,
                    "score": final_score,
                },
            )
            logger.info("Final score submitted", score=final_score, **ctx)
            return final_score

    async def end_session(self, session_id: int, caller: str, now: Optional[int] = None) -> Optional[str]:
        now = now_ts() if now is None else now
        async with self._lock(session_id):
            s = await self._require_session(session_id)

            if s.host != caller:
                raise self._reject(Unauthorized(), session_id=session_id, account=caller)
            if s.status != SessionStatus.ACTIVE:
                raise self._reject(SessionNotActive(), session_id=session_id)

            roster = self._roster(s)
            winner, best = pick_winner(roster)

            s.status = SessionStatus.COMPLETED
            s.end_time = now
            s.winner = winner
            s.winning_score = max(s.winning_score, best)

            # Stats for one account can be touched by several sessions closing.
            async with self._stats_lock:
                existing = await self._load_stats([p.account for p in roster])
                updated = fold_session_results(roster, existing, winner, now)
                try:
                    for stats in updated:
                        await self.db.player_stats.update_one(
                            {"account": stats.account},
                            {"$set": stats.model_dump()},
                            upsert=True,
                        )
                    await self.save_session(s)
                except Exception:
                    logger.exception("Closing session failed, restoring player stats", session_id=session_id)
                    await self._restore_stats(existing, updated)
                    raise

            await self._emit(
                session_id,
                {
                    "type": "session_ended",
                    "session_id": session_id,
                    "winner": winner,
                    "winning_score": s.winning_score,
                    "total_players": s.player_count,
                    "end_time": now,
                },
            )
            logger.info("Session ended", session_id=session_id, winner=winner, winning_score=s.winning_score)
            return winner

    async def _load_stats(self, accounts: List[str]) -> Dict[str, PlayerStats]:
        docs = await self.db.player_stats.find({"account": {"$in": accounts}}).to_list()
        return {d["account"]: PlayerStats(**d) for d in docs}

    async def _restore_stats(self, previous: Dict[str, PlayerStats], updated: List[PlayerStats]):
        for stats in updated:
            before = previous.get(stats.account)
            if before is None:
                await self.db.player_stats.delete_many({"account": stats.account})
            else:
                await self.db.player_stats.update_one(
                    {"account": stats.account}, {"$set": before.model_dump()}
                )

    # -- read-only views -----------------------------------------------------

    async def get_session_info(self, session_id: int) -> Session:
        return await self._require_session(session_id)

    async def get_winner(self, session_id: int) -> Optional[str]:
        s = await self._require_session(session_id)
        return s.winner

    async def get_player(self, session_id: int, account: str) -> Player:
        s = await self._require_session(session_id)
        p = s.find_player(account)
        if p is None:
            raise PlayerNotInSession()
        return p

    async def get_player_score(self, session_id: int, account: str) -> int:
        s = await self._require_session(session_id)
        p = s.find_player(account)
        return p.score if p else 0

    async def get_answer(self, session_id: int, question_index: int, account: str) -> Answer | None:
        doc = await self.db.answers.find_one({
            "session_id": session_id,
            "question_index": question_index,
            "account": account,
        })
        return Answer(**doc) if doc else None

    async def get_player_stats(self, account: str) -> PlayerStats:
        doc = await self.db.player_stats.find_one({"account": account})
        return PlayerStats(**doc) if doc else PlayerStats(account=account)

    async def get_leaderboard(self, session_id: int) -> List[LeaderboardEntry]:
        s = await self._require_session(session_id)
        return build_leaderboard(self._roster(s))


controller = GameController()
