"""Typed rejections raised by the game controller.

Every error is raised before any state is written, so a caller that catches
one can assume the store is exactly as it was before the call.
"""

from __future__ import annotations


class TriviaError(Exception):
    code = "trivia_error"
    status_code = 400
    message = "Request rejected"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.message
        super().__init__(self.detail)


class Unauthorized(TriviaError):
    code = "unauthorized"
    status_code = 403
    message = "Only the session host can do that"


class SessionNotFound(TriviaError):
    code = "session_not_found"
    status_code = 404
    message = "Session not found"


class SessionAlreadyActive(TriviaError):
    code = "session_already_active"
    status_code = 409
    message = "Session has already started"


class SessionNotActive(TriviaError):
    code = "session_not_active"
    status_code = 409
    message = "Session is not active"


class SessionFull(TriviaError):
    code = "session_full"
    status_code = 409
    message = "Session is full"


class PlayerNotInSession(TriviaError):
    code = "player_not_in_session"
    status_code = 403
    message = "Player has not joined this session"


class PlayerAlreadyJoined(TriviaError):
    code = "player_already_joined"
    status_code = 409
    message = "Player already joined this session"


class InvalidRoomCode(TriviaError):
    code = "invalid_room_code"
    status_code = 403
    message = "Room code does not match"


class InvalidQuestionIndex(TriviaError):
    code = "invalid_question_index"
    status_code = 400
    message = "Question is not the current question"


class QuestionNotActive(TriviaError):
    code = "question_not_active"
    status_code = 409
    message = "Question is closed"


class AlreadyAnswered(TriviaError):
    code = "already_answered"
    status_code = 409
    message = "Answer already submitted"


class InvalidAnswer(TriviaError):
    code = "invalid_answer"
    status_code = 400
    message = "Answer is not valid"


class InvalidDuration(TriviaError):
    code = "invalid_duration"
    status_code = 400
    message = "Question duration must be a positive number of seconds"


class InsufficientPrize(TriviaError):
    # Reserved for prize settlement, which lives outside this service.
    code = "insufficient_prize"
    status_code = 402
    message = "Prize pool is insufficient"
