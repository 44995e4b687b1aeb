from __future__ import annotations

from unittest import TestCase

from fastapi.testclient import TestClient

from .db import InMemoryDatabase
from .game import GameController
from .main import app, get_controller

HOST = {"X-Account-Id": "host"}
ALICE = {"X-Account-Id": "alice"}
BOB = {"X-Account-Id": "bob"}


class ApiTests(TestCase):
    def setUp(self) -> None:  # noqa: D401 - standard unittest hook
        self.game = GameController(InMemoryDatabase())
        app.dependency_overrides[get_controller] = lambda: self.game
        self.client = TestClient(app)
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)
        self.addCleanup(app.dependency_overrides.clear)

    def _create(self, max_players=2, duration=30) -> int:
        resp = self.client.post(
            "/api/sessions",
            json={"room_code": "ROOM", "max_players": max_players, "question_duration": duration},
            headers=HOST,
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        return resp.json()["session_id"]

    def _join(self, sid, headers, name):
        return self.client.post(
            f"/api/sessions/{sid}/join",
            json={"room_code": "ROOM", "display_name": name},
            headers=headers,
        )

    def test_identity_header_is_required(self):
        resp = self.client.post("/api/sessions", json={"room_code": "ROOM", "max_players": 2})
        self.assertEqual(resp.status_code, 401)

    def test_default_question_duration(self):
        resp = self.client.post("/api/sessions", json={"room_code": "ROOM", "max_players": 2}, headers=HOST)
        sid = resp.json()["session_id"]

        info = self.client.get(f"/api/sessions/{sid}").json()
        self.assertEqual(info["question_duration"], 30)
        self.assertEqual(info["status"], "created")

    def test_player_limit_is_capped(self):
        resp = self.client.post(
            "/api/sessions", json={"room_code": "ROOM", "max_players": 10_000}, headers=HOST
        )
        self.assertEqual(resp.status_code, 400)

    def test_errors_are_mapped_to_codes(self):
        sid = self._create(max_players=1)
        self.assertEqual(self._join(sid, ALICE, "Alice").status_code, 200)

        full = self._join(sid, BOB, "Bob")
        self.assertEqual(full.status_code, 409)
        self.assertEqual(full.json()["error"], "session_full")

        again = self._join(sid, ALICE, "Alice")
        self.assertEqual(again.json()["error"], "session_full")

        missing = self.client.get("/api/sessions/404")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["error"], "session_not_found")

        forbidden = self.client.post(f"/api/sessions/{sid}/start", headers=ALICE)
        self.assertEqual(forbidden.status_code, 403)
        self.assertEqual(forbidden.json()["error"], "unauthorized")

    def test_full_game_over_http(self):
        sid = self._create()
        self._join(sid, ALICE, "Alice")
        self._join(sid, BOB, "Bob")
        self.assertEqual(self.client.post(f"/api/sessions/{sid}/start", headers=HOST).status_code, 200)

        q = self.client.post(
            f"/api/sessions/{sid}/questions",
            json={"question_index": 0, "difficulty": "medium", "correct_answer_hash": "h1", "time_limit": 600},
            headers=HOST,
        )
        self.assertEqual(q.status_code, 200, q.text)
        self.assertEqual(q.json()["time_limit"], 600)

        right = self.client.post(
            f"/api/sessions/{sid}/answers", json={"question_index": 0, "answer_hash": "h1"}, headers=ALICE
        )
        self.assertEqual(right.status_code, 200, right.text)
        self.assertGreaterEqual(right.json()["points_earned"], 150)
        self.assertEqual(right.json()["score"], right.json()["points_earned"])

        dup = self.client.post(
            f"/api/sessions/{sid}/answers", json={"question_index": 0, "answer_hash": "h2"}, headers=ALICE
        )
        self.assertEqual(dup.json()["error"], "already_answered")

        stale = self.client.post(
            f"/api/sessions/{sid}/answers", json={"question_index": 3, "answer_hash": "h1"}, headers=BOB
        )
        self.assertEqual(stale.json()["error"], "invalid_question_index")

        board = self.client.get(f"/api/sessions/{sid}/leaderboard").json()
        self.assertEqual([e["account"] for e in board], ["alice", "bob"])

        ended = self.client.post(f"/api/sessions/{sid}/end", headers=HOST)
        self.assertEqual(ended.status_code, 200, ended.text)
        self.assertEqual(ended.json()["winner"], "alice")

        winner = self.client.get(f"/api/sessions/{sid}/winner").json()
        self.assertEqual(winner["winner"], "alice")

        stats = self.client.get("/api/players/alice/stats").json()
        self.assertEqual((stats["games_played"], stats["total_wins"]), (1, 1))

        player = self.client.get(f"/api/sessions/{sid}/players/bob").json()
        self.assertEqual(player["score"], 0)

        events = self.client.get(f"/api/sessions/{sid}/events", params={"after": 4}).json()
        types = [e["payload"]["type"] for e in events["events"]]
        self.assertEqual(types, ["question_started", "answer_submitted", "session_ended"])
        self.assertEqual(events["latest_seq"], 7)

    def test_final_score_route(self):
        sid = self._create()
        self._join(sid, ALICE, "Alice")
        self.client.post(f"/api/sessions/{sid}/start", headers=HOST)

        resp = self.client.post(f"/api/sessions/{sid}/final-score", json={"score": 250}, headers=ALICE)

        self.assertEqual(resp.json(), {"score": 250})
        self.assertEqual(self.client.get(f"/api/sessions/{sid}/winner").json()["winning_score"], 250)
