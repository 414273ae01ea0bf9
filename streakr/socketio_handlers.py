"""
SocketIO event handlers for live question status

Clients on the picks screen join a room per round and receive
``question_status`` / ``match_lock`` pushes emitted by the settlement
service. The push is a hint only; clients refetch the round board.
"""

import logging

from flask import request
from flask_login import current_user
from flask_socketio import emit, join_room, leave_room

from streakr import socketio

logger = logging.getLogger(__name__)

# sid -> {"user_id", "rooms"}
connected_clients = {}


def _round_room(data):
    if not isinstance(data, dict):
        return None
    round_id = data.get("round_id", data.get("roundId"))
    try:
        return f"round_{int(round_id)}"
    except (TypeError, ValueError):
        return None


@socketio.on("connect", namespace="/picks")
def on_connect():
    user_id = current_user.id if current_user.is_authenticated else None
    connected_clients[request.sid] = {"user_id": user_id, "rooms": set()}
    logger.info(f"Client connected to /picks: {request.sid} (user: {user_id})")


@socketio.on("disconnect", namespace="/picks")
def on_disconnect(*args):
    client = connected_clients.pop(request.sid, None)
    if client:
        logger.info(
            f"Client disconnected from /picks: {request.sid} (user: {client['user_id']})"
        )


@socketio.on("join_round", namespace="/picks")
def on_join_round(data):
    """Subscribe to settlement pushes for one round"""
    room = _round_room(data)
    if room is None:
        emit("error", {"error": "invalid_request", "message": "round_id is required"})
        return

    client = connected_clients.setdefault(
        request.sid, {"user_id": None, "rooms": set()}
    )
    if room in client["rooms"]:
        return

    client["rooms"].add(room)
    join_room(room)
    emit("joined", {"room": room})
    logger.debug(f"Client {request.sid} joined {room}")


@socketio.on("leave_round", namespace="/picks")
def on_leave_round(data):
    room = _round_room(data)
    if room is None:
        return
    client = connected_clients.get(request.sid)
    if client:
        client["rooms"].discard(room)
    leave_room(room)
    logger.debug(f"Client {request.sid} left {room}")


def get_connection_stats():
    return {
        "total_connections": len(connected_clients),
        "authenticated_users": len(
            [c for c in connected_clients.values() if c["user_id"]]
        ),
        "total_subscriptions": sum(len(c["rooms"]) for c in connected_clients.values()),
    }
