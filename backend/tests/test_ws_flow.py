"""
WebSocket integration tests for game session flows.
Tests: room creation, joining, host-only controls, countdown start,
reconnect by name, host rebinding, disconnect teardown, message guards.
Uses FastAPI TestClient with a shared event loop; the timer is slowed
down so no tick fires during a test.
"""
import sys
import os
import json

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fastapi.testclient import TestClient
from main import app
from game_engine import game_engine
from socket_manager import socket_manager
import config


@pytest.fixture
def client():
    game_engine.reset()
    saved_origins = socket_manager.allowed_origins
    saved_interval = game_engine.timers.tick_interval
    socket_manager.allowed_origins = []  # disable origin check for tests
    game_engine.timers.tick_interval = 3600
    with TestClient(app) as test_client:
        yield test_client
        test_client.portal.call(game_engine.reset)
    socket_manager.allowed_origins = saved_origins
    game_engine.timers.tick_interval = saved_interval


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_questions(num_questions=3):
    return [
        {
            "id": f"q{i + 1}",
            "question": f"Question {i + 1}?",
            "options": ["A", "B", "C", "D"],
            "correctAnswer": "A",
        }
        for i in range(num_questions)
    ]


def recv_until(ws, msg_type, max_messages=50):
    """Receive messages until we get the expected type. Returns that message."""
    for _ in range(max_messages):
        data = ws.receive_json()
        if data.get("type") == msg_type:
            return data
    raise TimeoutError(f"Never received {msg_type} after {max_messages} messages")


def open_socket(client):
    ws = client.websocket_connect("/ws")
    session = ws.__enter__()
    hello = session.receive_json()
    assert hello["type"] == "connected"
    return ws, session


def create_game(ws, num_questions=3, time_limit=10):
    ws.send_json({"type": "create-game", "title": "Flow Test Quiz",
                  "questions": make_questions(num_questions),
                  "settings": {"timeLimit": time_limit}})
    created = recv_until(ws, "game-created")
    return created["roomCode"], created["hostToken"]


def join_game(ws, room_code, name):
    ws.send_json({"type": "join-game", "roomCode": room_code, "playerName": name})
    return recv_until(ws, "joined-game")


# ===========================================================================
# Lobby
# ===========================================================================

class TestLobby:
    def test_connected_greeting(self, client):
        with client.websocket_connect("/ws") as ws:
            hello = ws.receive_json()
            assert hello["type"] == "connected"
            assert hello["connectionId"]

    def test_create_and_join(self, client):
        with client.websocket_connect("/ws") as host:
            host.receive_json()
            room_code, token = create_game(host)
            assert len(room_code) == config.ROOM_CODE_LENGTH
            assert token

            with client.websocket_connect("/ws") as player:
                player.receive_json()
                joined = join_game(player, room_code, "Alice")
                assert joined["role"] == "player"
                assert joined["players"] == [{"name": "Alice", "score": 0}]

                notice = recv_until(host, "player-joined")
                assert notice["playerName"] == "Alice"
                assert notice["playerCount"] == 1

    def test_join_unknown_room(self, client):
        with client.websocket_connect("/ws") as player:
            player.receive_json()
            player.send_json({"type": "join-game", "roomCode": "NOPE00", "playerName": "Alice"})
            error = recv_until(player, "join-error")
            assert error["message"] == "Game room not found"

    def test_invalid_create_payload(self, client):
        with client.websocket_connect("/ws") as host:
            host.receive_json()
            host.send_json({"type": "create-game", "questions": [
                {"question": "Pick", "options": ["A", "B"], "correctAnswer": "Z"}]})
            error = recv_until(host, "error")
            assert "Invalid create-game payload" in error["message"]
            assert len(game_engine.store) == 0

    def test_join_session_snapshot(self, client):
        with client.websocket_connect("/ws") as host:
            host.receive_json()
            room_code, _ = create_game(host)
            with client.websocket_connect("/ws") as player:
                player.receive_json()
                player.send_json({"type": "join-game-session", "roomCode": room_code,
                                  "playerName": "Alice"})
                state = recv_until(player, "game-state")
                assert state["gameState"] == "waiting"
                assert state["totalQuestions"] == 3
                assert state["timeLimit"] == 10


# ===========================================================================
# Starting a game
# ===========================================================================

class TestStart:
    def test_host_starts_countdown(self, client):
        with client.websocket_connect("/ws") as host:
            host.receive_json()
            room_code, _ = create_game(host)
            with client.websocket_connect("/ws") as player:
                player.receive_json()
                join_game(player, room_code, "Alice")

                host.send_json({"type": "start-game", "roomCode": room_code})
                state = recv_until(player, "game-state")
                assert state["gameState"] == "countdown"
                countdown = recv_until(player, "countdown")
                assert countdown["count"] == config.COUNTDOWN_SECONDS
                assert recv_until(host, "countdown")["count"] == config.COUNTDOWN_SECONDS

    def test_player_cannot_start(self, client):
        with client.websocket_connect("/ws") as host:
            host.receive_json()
            room_code, _ = create_game(host)
            with client.websocket_connect("/ws") as player:
                player.receive_json()
                join_game(player, room_code, "Alice")
                player.send_json({"type": "start-game", "roomCode": room_code})
                # An unknown type round-trips an error, so the start was processed first
                player.send_json({"type": "ping"})
                assert recv_until(player, "error")["message"] == "Unknown message type: ping"
                assert game_engine.store.get(room_code).game_state == "waiting"

    def test_start_with_new_settings(self, client):
        with client.websocket_connect("/ws") as host:
            host.receive_json()
            room_code, _ = create_game(host)
            with client.websocket_connect("/ws") as player:
                player.receive_json()
                join_game(player, room_code, "Alice")
                host.send_json({"type": "start-game", "roomCode": room_code,
                                "questions": make_questions(1), "settings": {"timeLimit": 20}})
                state = recv_until(player, "game-state")
                assert state["timeLimit"] == 20
                assert state["totalQuestions"] == 1


# ===========================================================================
# Reconnects and host rebinding
# ===========================================================================

class TestReconnect:
    def test_same_name_rebinds_and_kicks(self, client):
        with client.websocket_connect("/ws") as host:
            host.receive_json()
            room_code, _ = create_game(host)
            with client.websocket_connect("/ws") as first:
                first.receive_json()
                join_game(first, room_code, "Alice")
                with client.websocket_connect("/ws") as second:
                    second.receive_json()
                    joined = join_game(second, room_code, "Alice")
                    assert joined["role"] == "reconnected"
                    kicked = recv_until(first, "kicked")
                    assert "another device" in kicked["message"]
            room = game_engine.store.find(room_code)
            # Both sockets are gone, so the last seat emptied the room
            assert room is None
            assert recv_until(host, "game-ended")["message"] == "All players have left the game"

    def test_host_rebinds_with_token(self, client):
        host_ws, host = open_socket(client)
        room_code, token = create_game(host)
        with client.websocket_connect("/ws") as player:
            player.receive_json()
            join_game(player, room_code, "Alice")

            with client.websocket_connect("/ws") as new_host:
                new_host.receive_json()
                new_host.send_json({"type": "join-game-session", "roomCode": room_code,
                                    "isHost": True, "hostToken": token})
                state = recv_until(new_host, "game-state")
                assert state["role"] == "host"

                # The old host socket closing no longer ends the game
                host_ws.__exit__(None, None, None)
                assert game_engine.store.find(room_code) is not None

                new_host.send_json({"type": "start-game", "roomCode": room_code})
                assert recv_until(player, "countdown")["count"] == config.COUNTDOWN_SECONDS


# ===========================================================================
# Disconnects
# ===========================================================================

class TestDisconnect:
    def test_host_leaving_ends_game(self, client):
        with client.websocket_connect("/ws") as player:
            player.receive_json()
            with client.websocket_connect("/ws") as host:
                host.receive_json()
                room_code, _ = create_game(host)
                join_game(player, room_code, "Alice")
            ended = recv_until(player, "game-ended")
            assert ended["message"] == "Host has left the game"
            assert game_engine.store.find(room_code) is None

    def test_player_leaving_notifies(self, client):
        with client.websocket_connect("/ws") as host:
            host.receive_json()
            room_code, _ = create_game(host)
            with client.websocket_connect("/ws") as alice:
                alice.receive_json()
                join_game(alice, room_code, "Alice")
                with client.websocket_connect("/ws") as bob:
                    bob.receive_json()
                    join_game(bob, room_code, "Bob")
                left = recv_until(alice, "player-left")
                assert left["playerName"] == "Bob"
                assert left["players"] == [{"name": "Alice", "score": 0}]


# ===========================================================================
# Message guards
# ===========================================================================

class TestMessageGuards:
    def test_malformed_json(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("{not json")
            assert recv_until(ws, "error")["message"] == "Invalid message format"

    def test_oversized_message(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text(json.dumps({"type": "join-game", "pad": "x" * config.MAX_WS_MESSAGE_SIZE}))
            assert recv_until(ws, "error")["message"] == "Message too large"

    def test_rate_limited(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            for _ in range(config.WS_RATE_LIMIT_PER_SEC + 5):
                ws.send_json({"type": "ping"})
            messages = [ws.receive_json()["message"] for _ in range(config.WS_RATE_LIMIT_PER_SEC + 5)]
            assert "Too many messages" in messages
