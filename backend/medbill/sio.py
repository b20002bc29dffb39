import logging

import socketio
from asgiref.sync import async_to_sync
from django.db import transaction

logger = logging.getLogger(__name__)

# cors_allowed_origins='*' is important for development
sio = socketio.AsyncServer(async_mode='asgi', cors_allowed_origins='*')


@sio.event
async def connect(sid, environ):
    logger.info("SocketIO client connected: %s", sid)


@sio.event
async def disconnect(sid):
    logger.info("SocketIO client disconnected: %s", sid)


@sio.event
async def join_room(sid, room):
    logger.info("SocketIO %s joining room: %s", sid, room)
    await sio.enter_room(sid, room)


def _emit_now(event, payload):
    try:
        async_to_sync(sio.emit)(event, payload)
    except Exception:
        # Push notifications are best effort; the write already committed.
        logger.exception("Socket emit failed for %s", event)


def emit_on_commit(event, payload):
    """Emit ``event`` once the surrounding transaction commits."""
    transaction.on_commit(lambda: _emit_now(event, payload))
