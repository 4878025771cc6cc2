"""Tests for inbound command decoding and the connection registry."""

import asyncio

import pytest

from api.realtime.commands import (
    COMMANDS, AssignChat, CommandError, RequestStaff, SendMessage, parse_command,
)
from api.realtime.connection_manager import (
    Connection, ConnectionManager, CustomerIdentity, StaffIdentity, Unauthenticated,
)
from handoff import InvalidRole, Priority

from fakes import FakeSocket


class TestParseCommand:
    def test_every_event_has_one_model(self):
        assert set(COMMANDS) == {
            "staff_authenticate", "customer_join", "staff_status_update", "send_message",
            "typing_start", "typing_stop", "assign_chat", "transfer_chat", "complete_chat",
            "request_staff",
        }

    def test_camel_case_payload(self):
        command = parse_command("assign_chat", {"sessionId": "s1", "staffId": "alice"})
        assert isinstance(command, AssignChat)
        assert (command.session_id, command.staff_id) == ("s1", "alice")
        assert command.staff_only is True

    def test_send_message_defaults_to_customer(self):
        command = parse_command("send_message", {"sessionId": "s1", "message": "hi"})
        assert isinstance(command, SendMessage)
        assert command.role == "customer"

    def test_priority_is_validated(self):
        command = parse_command("request_staff", {"sessionId": "s1", "priority": "high"})
        assert isinstance(command, RequestStaff)
        assert command.priority == Priority.HIGH
        with pytest.raises(CommandError):
            parse_command("request_staff", {"sessionId": "s1", "priority": "urgent"})

    @pytest.mark.parametrize("event,data", [
        ("send_message", {"sessionId": "s1", "message": ""}),
        ("send_message", {"sessionId": "s1", "message": "hi", "role": "admin"}),
        ("customer_join", None),
        ("staff_status_update", {"status": "sleeping"}),
    ])
    def test_malformed_payloads(self, event, data):
        with pytest.raises(CommandError):
            parse_command(event, data)

    @pytest.mark.parametrize("event", ["dance", None, 42])
    def test_unknown_events(self, event):
        with pytest.raises(CommandError):
            parse_command(event, {})


class TestConnection:
    def test_role_binds_once(self):
        connection = Connection(transport=FakeSocket())
        assert connection.role == Unauthenticated()
        connection.bind(StaffIdentity("alice"))
        assert connection.staff_id == "alice"
        assert connection.session_id is None
        with pytest.raises(InvalidRole):
            connection.bind(CustomerIdentity("s1"))


class TestConnectionManager:
    def test_routing_by_role(self):
        manager = ConnectionManager()
        alice, bob, customer_a, customer_b = (FakeSocket() for _ in range(4))

        connections = {}
        for name, socket in [("alice", alice), ("bob", bob), ("ca", customer_a), ("cb", customer_b)]:
            connections[name] = Connection(transport=socket)
            manager.register(connections[name])
        manager.bind_staff(connections["alice"], "alice")
        manager.bind_staff(connections["bob"], "bob")
        manager.bind_customer(connections["ca"], "s1")
        manager.bind_customer(connections["cb"], "s1")

        async def scenario():
            await manager.broadcast_to_staff("queue_updated", {"length": 0}, exclude_staff_id="bob")
            delivered = await manager.send_to_session("s1", "staff_joined", {"staffId": "alice"})
            sent = await manager.send_to_staff("carol", "chat_assigned", {})
            return delivered, sent

        delivered, sent = asyncio.run(scenario())
        assert alice.events == ["queue_updated"]
        assert bob.events == []
        assert customer_a.events == customer_b.events == ["staff_joined"]
        assert delivered == 2
        assert sent is False
        assert manager.active_count == 4
        assert manager.staff_count == 2

    def test_staff_events_reach_every_tab(self):
        manager = ConnectionManager()
        first, second = FakeSocket(), FakeSocket()
        for socket in (first, second):
            connection = Connection(transport=socket)
            manager.register(connection)
            manager.bind_staff(connection, "alice")

        async def scenario():
            sent = await manager.send_to_staff("alice", "chat_assigned", {"sessionId": "s1"})
            await manager.broadcast_to_staff("queue_updated", {"length": 0})
            return sent

        assert asyncio.run(scenario()) is True
        assert first.events == second.events == ["chat_assigned", "queue_updated"]
        assert manager.staff_count == 1

    def test_staff_connected_until_last_tab_closes(self):
        manager = ConnectionManager()
        old, new = Connection(transport=FakeSocket()), Connection(transport=FakeSocket())
        for connection in (old, new):
            manager.register(connection)
            manager.bind_staff(connection, "alice")

        manager.unregister(new)
        assert manager.is_staff_connected("alice")
        manager.unregister(old)
        assert not manager.is_staff_connected("alice")
        assert manager.staff_count == 0

    def test_failed_send_drops_connection(self):
        manager = ConnectionManager()
        connection = Connection(transport=FakeSocket(fail=True))
        manager.register(connection)
        manager.bind_customer(connection, "s1")

        assert asyncio.run(manager.send(connection, "new_message", {})) is False
        assert not manager.is_session_connected("s1")
        assert manager.active_count == 0
