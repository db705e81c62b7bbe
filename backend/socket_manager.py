from fastapi import WebSocket, WebSocketDisconnect
from typing import Dict, List
import json
import time
import uuid
import logging

import config
from commands import parse_command
from errors import ValidationError
from game_engine import GameEngine, game_engine

logger = logging.getLogger(__name__)


class SocketManager:
    """Accepts WebSocket connections and feeds their messages to the game engine."""

    def __init__(self, engine: GameEngine):
        self.engine = engine
        self.allowed_origins: List[str] = []
        # WS rate limiting: connection_id -> list of timestamps
        self.msg_timestamps: Dict[str, list] = {}

    def _rate_limited(self, connection_id: str) -> bool:
        now = time.time()
        timestamps = self.msg_timestamps.setdefault(connection_id, [])
        timestamps[:] = [t for t in timestamps if now - t < 1.0]
        if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
            return True
        timestamps.append(now)
        return False

    async def connect(self, websocket: WebSocket):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self.engine.gateway.register(connection_id, websocket)
        await websocket.send_json({"type": "connected", "connectionId": connection_id})
        logger.info("Client %s connected", connection_id)

        try:
            while True:
                data = await websocket.receive_text()

                # Enforce message size limit
                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    await websocket.send_json({"type": "error", "message": "Message too large"})
                    continue

                if self._rate_limited(connection_id):
                    await websocket.send_json({"type": "error", "message": "Too many messages"})
                    continue

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from client %s: %s", connection_id, data[:100])
                    await websocket.send_json({"type": "error", "message": "Invalid message format"})
                    continue

                await self.handle_message(connection_id, message)
        except WebSocketDisconnect:
            logger.info("Client %s disconnected", connection_id)
        except Exception:
            logger.exception("WebSocket error for client %s", connection_id)
        finally:
            self.msg_timestamps.pop(connection_id, None)
            await self.engine.disconnect(connection_id)

    async def handle_message(self, connection_id: str, message: dict):
        try:
            command = parse_command(connection_id, message)
        except ValidationError as e:
            logger.info("Rejected message from %s: %s", connection_id, e)
            await self.engine.gateway.send(connection_id, {"type": "error", "message": str(e)})
            return
        await self.engine.dispatch(command)


socket_manager = SocketManager(game_engine)
