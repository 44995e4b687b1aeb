from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import List, Optional

from .db import settings
from .errors import TriviaError
from .game import GameController, controller
from .logger import configure_logging
from .models import LeaderboardEntry, Player, PlayerStats, Session
from .schemas import (
    AnswerIn,
    AnswerOut,
    CreateSessionIn,
    CreateSessionOut,
    FinalScoreIn,
    JoinIn,
    PublicSessionOut,
    StartQuestionIn,
    WinnerOut,
)

configure_logging()

app = FastAPI(title="Trivia Rooms API")

origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
origin_regex = settings.CORS_ORIGIN_REGEX or None

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_origin_regex=origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TriviaError)
async def trivia_error_handler(request: Request, exc: TriviaError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.detail})


def get_controller() -> GameController:
    return controller


def require_account(x_account_id: Optional[str] = Header(default=None)) -> str:
    if not x_account_id:
        raise HTTPException(status_code=401, detail="Missing X-Account-Id header")
    return x_account_id


def _public(s: Session) -> PublicSessionOut:
    return PublicSessionOut(
        id=s.id,
        host=s.host,
        status=s.status.value,
        player_count=s.player_count,
        max_players=s.max_players,
        players=[p for p in s.players if p.is_active],
        current_question_idx=s.current_question_index,
        question_start_time=s.question_start_time,
        question_duration=s.question_duration,
        start_time=s.start_time,
        end_time=s.end_time,
        winner=s.winner,
        winning_score=s.winning_score,
    )


@app.post("/api/sessions", response_model=CreateSessionOut)
async def create_session(
    payload: CreateSessionIn,
    account: str = Depends(require_account),
    game: GameController = Depends(get_controller),
):
    if payload.max_players > settings.MAX_PLAYERS_LIMIT:
        raise HTTPException(
            status_code=400, detail=f"max_players cannot exceed {settings.MAX_PLAYERS_LIMIT}"
        )
    duration = payload.question_duration
    if duration is None:
        duration = settings.DEFAULT_QUESTION_DURATION
    session_id = await game.create_session(payload.room_code, payload.max_players, duration, account)
    return CreateSessionOut(session_id=session_id)


@app.get("/api/sessions/{session_id}", response_model=PublicSessionOut)
async def get_session(session_id: int, game: GameController = Depends(get_controller)):
    return _public(await game.get_session_info(session_id))


@app.post("/api/sessions/{session_id}/join")
async def join(
    session_id: int,
    payload: JoinIn,
    account: str = Depends(require_account),
    game: GameController = Depends(get_controller),
):
    p = await game.join_session(session_id, payload.room_code, payload.display_name, account)
    return {"player": p.model_dump()}


@app.post("/api/sessions/{session_id}/start")
async def start(
    session_id: int,
    account: str = Depends(require_account),
    game: GameController = Depends(get_controller),
):
    await game.start_session(session_id, account)
    return {"ok": True}


@app.post("/api/sessions/{session_id}/questions")
async def start_question(
    session_id: int,
    payload: StartQuestionIn,
    account: str = Depends(require_account),
    game: GameController = Depends(get_controller),
):
    q = await game.start_question(session_id, payload.question_index, payload, account)
    return {
        "question_index": q.index,
        "difficulty": q.difficulty,
        "time_limit": q.time_limit,
        "started_at": q.started_at,
    }


@app.post("/api/sessions/{session_id}/answers", response_model=AnswerOut)
async def answer(
    session_id: int,
    payload: AnswerIn,
    account: str = Depends(require_account),
    game: GameController = Depends(get_controller),
):
    points = await game.submit_answer(session_id, payload.question_index, payload.answer_hash, account)
    score = await game.get_player_score(session_id, account)
    return AnswerOut(points_earned=points, score=score)


@app.post("/api/sessions/{session_id}/final-score")
async def final_score(
    session_id: int,
    payload: FinalScoreIn,
    account: str = Depends(require_account),
    game: GameController = Depends(get_controller),
):
    score = await game.submit_final_score(
        session_id,
        payload.score,
        account,
        correct_answers=payload.correct_answers,
        best_streak=payload.best_streak,
    )
    return {"score": score}


@app.post("/api/sessions/{session_id}/end", response_model=WinnerOut)
async def end(
    session_id: int,
    account: str = Depends(require_account),
    game: GameController = Depends(get_controller),
):
    winner = await game.end_session(session_id, account)
    s = await game.get_session_info(session_id)
    return WinnerOut(winner=winner, winning_score=s.winning_score)


@app.get("/api/sessions/{session_id}/winner", response_model=WinnerOut)
async def winner(session_id: int, game: GameController = Depends(get_controller)):
    s = await game.get_session_info(session_id)
    return WinnerOut(winner=s.winner, winning_score=s.winning_score)


@app.get("/api/sessions/{session_id}/leaderboard", response_model=List[LeaderboardEntry])
async def leaderboard(session_id: int, game: GameController = Depends(get_controller)):
    return await game.get_leaderboard(session_id)


@app.get("/api/sessions/{session_id}/players/{player_account}", response_model=Player)
async def player(session_id: int, player_account: str, game: GameController = Depends(get_controller)):
    return await game.get_player(session_id, player_account)


@app.get("/api/sessions/{session_id}/events")
async def list_events(
    session_id: int,
    after: int | None = None,
    limit: int | None = None,
    game: GameController = Depends(get_controller),
):
    events = await game.events.list(session_id, after=after, limit=limit or settings.EVENTS_PAGE_LIMIT)
    latest_seq = events[-1]["seq"] if events else after
    return {"events": events, "latest_seq": latest_seq}


@app.get("/api/players/{player_account}/stats", response_model=PlayerStats)
async def player_stats(player_account: str, game: GameController = Depends(get_controller)):
    return await game.get_player_stats(player_account)
