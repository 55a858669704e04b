"""
WebSocket manager for real-time fan-out.
Handles Socket.IO connections, presence, rooms, and deletion event publishing.
"""
import logging
from typing import Any, Dict, Iterable, Optional, Set

import socketio

from app.config import settings

logger = logging.getLogger(__name__)


def user_topic(user_id: str) -> str:
    return f"user:{user_id}"


def conversation_topic(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


class ConnectionManager:
    """
    WebSocket connection manager using Socket.IO.

    Tracks which users currently hold a live session (presence) and
    publishes best-effort events to ``user:<id>`` and ``conversation:<id>``
    rooms. Every connected socket joins its own user room on connect.
    """

    def __init__(self):
        """Initialize the connection manager."""
        cors_origins = settings.get_allowed_origins_list() if settings.allowed_origins else ["*"]

        self.sio = socketio.AsyncServer(
            async_mode='asgi',
            cors_allowed_origins=cors_origins,
            # Socket.IO logs normal packets at ERROR level; our logger covers what matters
            logger=False,
            engineio_logger=False,
            ping_timeout=settings.ws_heartbeat_interval,
            ping_interval=settings.ws_heartbeat_interval // 2,
        )

        # Track connections: {sid: user_id}
        self.connections: Dict[str, str] = {}

        # Track user sessions: {user_id: set of sids}
        self.user_sessions: Dict[str, Set[str]] = {}

        # Track conversation rooms: {conversation_id: set of sids}
        self.conversation_rooms: Dict[str, Set[str]] = {}

        self._setup_handlers()

    def _setup_handlers(self):
        """Setup Socket.IO event handlers."""

        @self.sio.event
        async def connect(sid, environ, auth):
            """
            Handle client connection.

            Client provides its JWT in the handshake auth payload. After the
            session is registered, deletions queued while the user was
            offline are replayed.
            """
            token = auth.get('token') if auth else None

            if not token:
                logger.warning(f"Connection rejected - no token: {sid}")
                return False

            from app.core.security import SecurityException, decode_token

            try:
                payload = decode_token(token)
            except SecurityException as e:
                logger.warning(f"Connection rejected - {e.detail}: {sid}")
                return False

            user_id = str(payload["sub"])
            await self.register_session(sid, user_id)
            logger.info(f"Client connected: {sid} (user: {user_id})")

            from app.core.cache import set_user_presence
            try:
                await set_user_presence(user_id, 'online')
            except Exception as e:
                logger.warning(f"Failed to update presence for {user_id}: {e}")

            await self._drain_grace_queue(user_id)
            return True

        @self.sio.event
        async def disconnect(sid):
            """Handle client disconnection."""
            user_id = await self.unregister_session(sid)

            if user_id and user_id not in self.user_sessions:
                from app.core.cache import set_user_presence
                try:
                    await set_user_presence(user_id, 'offline')
                except Exception as e:
                    logger.warning(f"Failed to update presence for {user_id}: {e}")

            logger.info(f"Client disconnected: {sid} (user: {user_id})")

        @self.sio.event
        async def join_conversation(sid, data):
            """
            Join a conversation room.

            Expected data: {'conversation_id': '...'}
            """
            user_id = self.connections.get(sid)
            conversation_id = (data or {}).get('conversation_id')

            if not user_id or not conversation_id:
                await self.sio.emit('error', {'message': 'Unauthorized'}, to=sid)
                return

            from app.core.database import session_scope
            from app.repositories.conversation_repo import ConversationMemberRepository

            async with session_scope() as db:
                is_member = await ConversationMemberRepository(db).is_member(conversation_id, user_id)

            if not is_member:
                logger.warning(f"User {user_id} not a member of conversation {conversation_id}")
                await self.sio.emit('error', {'message': 'Not a member of this conversation'}, to=sid)
                return

            await self.sio.enter_room(sid, conversation_topic(conversation_id))
            self.conversation_rooms.setdefault(conversation_id, set()).add(sid)
            await self.sio.emit('joined_conversation', {'conversation_id': conversation_id}, to=sid)

        @self.sio.event
        async def leave_conversation(sid, data):
            """
            Leave a conversation room.

            Expected data: {'conversation_id': '...'}
            """
            conversation_id = (data or {}).get('conversation_id')
            if not conversation_id:
                return

            await self.sio.leave_room(sid, conversation_topic(conversation_id))
            sids = self.conversation_rooms.get(conversation_id)
            if sids is not None:
                sids.discard(sid)
                if not sids:
                    del self.conversation_rooms[conversation_id]

            await self.sio.emit('left_conversation', {'conversation_id': conversation_id}, to=sid)

    async def register_session(self, sid: str, user_id: str) -> None:
        """Record a live socket for a user and join its user room."""
        self.connections[sid] = user_id
        self.user_sessions.setdefault(user_id, set()).add(sid)
        await self.sio.enter_room(sid, user_topic(user_id))

    async def unregister_session(self, sid: str) -> Optional[str]:
        """Forget a socket; returns the user it belonged to."""
        user_id = self.connections.pop(sid, None)

        if user_id and user_id in self.user_sessions:
            self.user_sessions[user_id].discard(sid)
            if not self.user_sessions[user_id]:
                del self.user_sessions[user_id]

        for conv_id, sids in list(self.conversation_rooms.items()):
            sids.discard(sid)
            if not sids:
                del self.conversation_rooms[conv_id]

        return user_id

    def is_online(self, user_id: str) -> bool:
        """Whether the user currently has at least one live session."""
        return bool(self.user_sessions.get(user_id))

    async def publish(self, topic: str, event: str, data: Dict[str, Any]) -> bool:
        """
        Emit an event to a room, best-effort.

        Args:
            topic: Room name (``user:<id>`` or ``conversation:<id>``)
            event: Event name
            data: JSON-serializable payload

        Returns:
            True if the emit was handed to Socket.IO, False on failure
        """
        try:
            await self.sio.emit(event, data, room=topic)
            return True
        except Exception as e:
            logger.warning(
                f"Failed to publish {event} to {topic}: {e}",
                extra={"topic": topic, "event": event},
            )
            return False

    async def publish_to_users(
        self,
        user_ids: Iterable[str],
        event: str,
        data: Dict[str, Any]
    ) -> None:
        """Emit the same event to each user's personal room."""
        for user_id in dict.fromkeys(user_ids):
            await self.publish(user_topic(user_id), event, data)

    async def _drain_grace_queue(self, user_id: str) -> None:
        from app.core.database import session_scope
        from app.services.grace_queue_service import GraceQueueService

        try:
            async with session_scope() as db:
                result = await GraceQueueService(db, notifier=self).drain(user_id)
            if result["applied_count"]:
                logger.info(f"Replayed {result['applied_count']} queued deletions for {user_id}")
        except Exception as e:
            # Entries stay queued and are retried on the next connect
            logger.error(f"Grace queue drain failed for {user_id}: {e}", exc_info=True)

    def get_asgi_app(self, fastapi_app):
        """
        Get the ASGI app for Socket.IO wrapping FastAPI.

        Socket.IO wraps FastAPI, not the other way around; clients connect
        to ``/socket.io/?EIO=4&transport=websocket``.
        """
        return socketio.ASGIApp(self.sio, fastapi_app)


# Global connection manager instance
connection_manager = ConnectionManager()
