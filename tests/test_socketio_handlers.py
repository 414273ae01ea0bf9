from streakr import socketio
from streakr.services import settlement_service
from streakr.socketio_handlers import connected_clients, get_connection_stats


def test_join_round_and_receive_settlement(app, make_question):
    question = make_question()
    sio = socketio.test_client(app, namespace="/picks")
    assert sio.is_connected("/picks")

    sio.emit("join_round", {"roundId": question.match.round_id}, namespace="/picks")
    joined = sio.get_received("/picks")
    assert joined[0]["name"] == "joined"
    assert joined[0]["args"][0] == {"room": f"round_{question.match.round_id}"}

    settlement_service.settle(question.id, "yes")

    events = sio.get_received("/picks")
    assert [event["name"] for event in events] == ["question_status"]
    payload = events[0]["args"][0]
    assert payload["questionId"] == question.slug
    assert payload["status"] == "final"
    assert payload["outcome"] == "yes"
    assert payload["version"] == 2

    sio.disconnect(namespace="/picks")


def test_other_rounds_do_not_receive(app, make_round, make_match, make_question):
    question = make_question(make_match(make_round(3)))
    sio = socketio.test_client(app, namespace="/picks")
    sio.emit("join_round", {"round_id": question.match.round_id + 100}, namespace="/picks")
    sio.get_received("/picks")

    settlement_service.lock(question.id)

    assert sio.get_received("/picks") == []
    sio.disconnect(namespace="/picks")


def test_invalid_join(app):
    sio = socketio.test_client(app, namespace="/picks")
    sio.emit("join_round", {"round_id": "abc"}, namespace="/picks")

    received = sio.get_received("/picks")
    assert received[0]["name"] == "error"
    sio.disconnect(namespace="/picks")


def test_connection_stats(app):
    connected_clients.clear()
    sio = socketio.test_client(app, namespace="/picks")
    sio.emit("join_round", {"round_id": 1}, namespace="/picks")

    stats = get_connection_stats()
    assert stats["total_connections"] == 1
    assert stats["authenticated_users"] == 0
    assert stats["total_subscriptions"] == 1

    sio.disconnect(namespace="/picks")
    assert get_connection_stats()["total_connections"] == 0
