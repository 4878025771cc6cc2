"""Tests for the real-time coordinator without a live socket server."""

import asyncio

import pytest

from api.middleware.auth import hash_password
from api.realtime.commands import (
    AssignChat, CompleteChat, CustomerJoin, RequestStaff, SendMessage, StaffAuthenticate,
    StaffStatusUpdate, TypingStart,
)
from api.realtime.connection_manager import Connection
from api.realtime.coordinator import APOLOGY_MESSAGE, ESCALATING_MESSAGE
from handoff import (
    AssignmentNotFound, AssignmentStatus, Conflict, InvalidRole, Mismatch, Priority, SessionStatus, StaffStatus,
)

from fakes import FakeKnowledge, FakeResponder, FakeSocket, build_coordinator, connect_customer, connect_staff


async def _staff(coordinator, staff_id, capacity=5, online=True):
    await coordinator.directory.provision(
        email=f"{staff_id}@example.com", name=staff_id.title(), password_hash="",
        max_concurrent_chats=capacity, staff_id=staff_id,
    )
    if online:
        await coordinator.directory.set_status(staff_id, StaffStatus.ONLINE)


async def _session(coordinator):
    return (await coordinator.sessions.create_session({"name": "Ann"})).id


def _assistant_messages(socket):
    return [
        f["data"]["message"] for f in socket.frames
        if f["event"] == "new_message" and f["data"]["message"]["role"] == "assistant"
    ]


class TestCustomerMessages:
    def test_ai_stops_answering_once_staff_assigned(self):
        """AI answers while active; after assignment it is never consulted again."""
        responder = FakeResponder()

        async def scenario():
            coordinator = build_coordinator(responder=responder)
            await _staff(coordinator, "alice")
            session_id = await _session(coordinator)
            customer = await connect_customer(coordinator, session_id)
            staff = await connect_staff(coordinator, "alice")

            first = await coordinator.handle_customer_message(session_id, "How do I reset my password?")
            await coordinator.assign_chat(session_id, "alice", requested_by="alice")
            status = (await coordinator.sessions.require_session(session_id)).status
            second = await coordinator.handle_customer_message(session_id, "Still stuck")
            return first, second, status, customer, staff

        first, second, status, customer, staff = asyncio.run(scenario())
        assert len(responder.calls) == 1
        assert first.reply.content == responder.content
        assert first.reply.metadata["delivered"] is True
        assert first.reply.metadata["confidence"] == 0.8
        assert status == SessionStatus.WITH_STAFF
        assert second.reply is None

        staff_messages = [f["data"]["message"]["content"] for f in staff.frames if f["event"] == "new_message"]
        assert staff_messages == ["Still stuck"]
        assert len(_assistant_messages(customer)) == 1
        assert "staff_joined" in customer.events

    def test_knowledge_snippets_reach_the_responder(self):
        responder = FakeResponder()

        async def scenario():
            coordinator = build_coordinator(responder=responder, knowledge=FakeKnowledge(["Reset: Settings"]))
            session_id = await _session(coordinator)
            await coordinator.handle_customer_message(session_id, "reset?")

        asyncio.run(scenario())
        assert responder.calls[0]["snippets"] == ["Reset: Settings"]
        assert responder.calls[0]["customer_info"] == {"name": "Ann"}
        assert responder.calls[0]["history"] == ["reset?"]

    def test_waiting_session_gets_no_ai_reply(self):
        responder = FakeResponder()

        async def scenario():
            coordinator = build_coordinator(responder=responder)
            session_id = await _session(coordinator)
            await coordinator.request_staff(session_id)
            return await coordinator.handle_customer_message(session_id, "hello?")

        outcome = asyncio.run(scenario())
        assert outcome.reply is None
        assert responder.calls == []

    def test_ai_failure_sends_apology(self):
        responder = FakeResponder(error=RuntimeError("provider down"))

        async def scenario():
            coordinator = build_coordinator(responder=responder)
            session_id = await _session(coordinator)
            customer = await connect_customer(coordinator, session_id)
            outcome = await coordinator.handle_customer_message(session_id, "hi")
            session = await coordinator.sessions.require_session(session_id)
            return outcome, session, customer

        outcome, session, customer = asyncio.run(scenario())
        assert outcome.reply.content == APOLOGY_MESSAGE
        assert outcome.reply.metadata["apology"] is True
        assert outcome.escalated is False
        assert session.status == SessionStatus.ACTIVE
        assert [m["content"] for m in _assistant_messages(customer)] == [APOLOGY_MESSAGE]

    def test_ai_timeout_sends_apology(self):
        responder = FakeResponder(delay=1.0)

        async def scenario():
            coordinator = build_coordinator(responder=responder, ai_timeout_seconds=0.05)
            session_id = await _session(coordinator)
            return await coordinator.handle_customer_message(session_id, "hi")

        outcome = asyncio.run(scenario())
        assert outcome.reply.content == APOLOGY_MESSAGE

    def test_ai_failure_can_escalate(self):
        responder = FakeResponder(error=RuntimeError("provider down"))

        async def scenario():
            coordinator = build_coordinator(responder=responder, escalate_on_ai_failure=True)
            session_id = await _session(coordinator)
            outcome = await coordinator.handle_customer_message(session_id, "hi")
            session = await coordinator.sessions.require_session(session_id)
            return outcome, session, await coordinator.queue.contains(session_id)

        outcome, session, queued = asyncio.run(scenario())
        assert outcome.escalated is True
        assert session.status == SessionStatus.WAITING_FOR_STAFF
        assert queued is True

    def test_reply_after_takeover_is_stored_not_delivered(self):
        responder = FakeResponder()

        async def scenario():
            coordinator = build_coordinator(responder=responder)
            await _staff(coordinator, "alice")
            session_id = await _session(coordinator)
            customer = await connect_customer(coordinator, session_id)

            async def take_over():
                await coordinator.assign_chat(session_id, "alice")

            responder.before_reply = take_over
            outcome = await coordinator.handle_customer_message(session_id, "hi")
            session = await coordinator.sessions.require_session(session_id)
            return outcome, session, customer

        outcome, session, customer = asyncio.run(scenario())
        assert outcome.reply.metadata["delivered"] is False
        assert session.status == SessionStatus.WITH_STAFF
        assert session.messages[-1].content == responder.content
        assert _assistant_messages(customer) == []

    def test_open_assignment_blocks_ai_before_status_changes(self):
        responder = FakeResponder()

        async def scenario():
            coordinator = build_coordinator(responder=responder)
            await _staff(coordinator, "alice")
            session_id = await _session(coordinator)
            staff = await connect_staff(coordinator, "alice")
            await coordinator.ledger.create(session_id, "alice")
            outcome = await coordinator.handle_customer_message(session_id, "hello?")
            return outcome, staff

        outcome, staff = asyncio.run(scenario())
        assert responder.calls == []
        assert outcome.reply is None
        assert staff.last("new_message")["message"]["content"] == "hello?"

    def test_staff_message_waits_for_pending_ai_turn(self):
        responder = FakeResponder()

        async def scenario():
            coordinator = build_coordinator(responder=responder)
            await _staff(coordinator, "alice")
            session_id = await _session(coordinator)
            pending = []

            async def take_over():
                await coordinator.assign_chat(session_id, "alice")
                pending.append(asyncio.create_task(
                    coordinator.handle_staff_message("alice", session_id, "Alice here")
                ))
                await asyncio.sleep(0.01)

            responder.before_reply = take_over
            await coordinator.handle_customer_message(session_id, "hi")
            await pending[0]
            session = await coordinator.sessions.require_session(session_id)
            return session, len(coordinator._message_locks)

        session, held_locks = asyncio.run(scenario())
        assert [m.content for m in session.messages] == ["hi", responder.content, "Alice here"]
        assert held_locks == 0

    def test_handoff_phrase_escalates_without_ai(self):
        responder = FakeResponder()

        async def scenario():
            coordinator = build_coordinator(responder=responder)
            session_id = await _session(coordinator)
            outcome = await coordinator.handle_customer_message(session_id, "Let me talk to a human")
            return outcome, await coordinator.sessions.require_session(session_id)

        outcome, session = asyncio.run(scenario())
        assert outcome.escalated is True
        assert responder.calls == []
        assert session.status == SessionStatus.WAITING_FOR_STAFF
        assert session.messages[-1].role == "system"
        assert session.messages[-1].content == ESCALATING_MESSAGE

    def test_low_confidence_streak_escalates(self):
        responder = FakeResponder(confidence=0.1)

        async def scenario():
            coordinator = build_coordinator(responder=responder)
            await _staff(coordinator, "alice")
            session_id = await _session(coordinator)
            outcomes = [
                await coordinator.handle_customer_message(session_id, f"question {n}")
                for n in range(3)
            ]
            assignment = await coordinator.ledger.get_open(session_id)
            return outcomes, assignment

        outcomes, assignment = asyncio.run(scenario())
        assert [o.escalated for o in outcomes] == [False, False, True]
        assert assignment.staff_id == "alice"

    def test_concurrent_messages_are_answered_in_order(self):
        responder = FakeResponder(delay=0.01)

        async def scenario():
            coordinator = build_coordinator(responder=responder)
            session_id = await _session(coordinator)
            await asyncio.gather(
                coordinator.handle_customer_message(session_id, "one"),
                coordinator.handle_customer_message(session_id, "two"),
            )
            return await coordinator.sessions.require_session(session_id)

        session = asyncio.run(scenario())
        assert [m.role for m in session.messages] == ["user", "assistant", "user", "assistant"]


class TestStaffMessages:
    def test_owner_message_reaches_customer(self):
        async def scenario():
            coordinator = build_coordinator()
            await _staff(coordinator, "alice")
            session_id = await _session(coordinator)
            customer = await connect_customer(coordinator, session_id)
            await coordinator.assign_chat(session_id, "alice")
            message = await coordinator.handle_staff_message("alice", session_id, "Hi, I'm Alice")
            return message, await coordinator.ledger.get(session_id), customer

        message, assignment, customer = asyncio.run(scenario())
        assert message.metadata == {"staffId": "alice"}
        assert assignment.status == AssignmentStatus.ACTIVE
        assert customer.last("new_message")["message"]["content"] == "Hi, I'm Alice"

    def test_non_owner_rejected(self):
        async def scenario():
            coordinator = build_coordinator()
            await _staff(coordinator, "alice")
            await _staff(coordinator, "bob")
            session_id = await _session(coordinator)
            await coordinator.assign_chat(session_id, "alice")
            await coordinator.handle_staff_message("bob", session_id, "hello")

        with pytest.raises(Mismatch):
            asyncio.run(scenario())

    def test_unassigned_session_rejected(self):
        async def scenario():
            coordinator = build_coordinator()
            await _staff(coordinator, "alice")
            session_id = await _session(coordinator)
            await coordinator.handle_staff_message("alice", session_id, "hello")

        with pytest.raises(AssignmentNotFound):
            asyncio.run(scenario())


class TestHandoff:
    def test_queued_until_staff_comes_online(self):
        async def scenario():
            coordinator = build_coordinator()
            await _staff(coordinator, "alice", online=False)
            session_id = await _session(coordinator)
            customer = await connect_customer(coordinator, session_id)
            staff = await connect_staff(coordinator, "alice")

            result = await coordinator.request_staff(session_id, Priority.HIGH)
            waiting = await coordinator.sessions.require_session(session_id)
            unassigned = await coordinator.ledger.get_open(session_id)

            await coordinator.set_staff_status("alice", StaffStatus.ONLINE)
            assigned = await coordinator.ledger.get_open(session_id)
            final = await coordinator.sessions.require_session(session_id)
            return result, waiting, unassigned, assigned, final, customer, staff

        result, waiting, unassigned, assigned, final, customer, staff = asyncio.run(scenario())
        assert result["queued"] is True
        assert result["position"] == 1
        assert waiting.status == SessionStatus.WAITING_FOR_STAFF
        assert unassigned is None

        assert assigned.staff_id == "alice"
        assert final.status == SessionStatus.WITH_STAFF
        assert final.assigned_staff == "alice"
        assert customer.events.index("added_to_queue") < customer.events.index("staff_joined")
        assert staff.last("chat_assigned")["sessionId"] == final.id
        assert staff.last("queue_updated")["length"] == 0

    def test_request_staff_when_already_with_staff(self):
        async def scenario():
            coordinator = build_coordinator()
            await _staff(coordinator, "alice")
            session_id = await _session(coordinator)
            await coordinator.assign_chat(session_id, "alice")
            return await coordinator.request_staff(session_id), await coordinator.queue.length()

        result, length = asyncio.run(scenario())
        assert result["queued"] is False
        assert result["assignment"]["staffId"] == "alice"
        assert length == 0

    def test_assign_without_target_staff(self):
        async def scenario():
            coordinator = build_coordinator()
            session_id = await _session(coordinator)
            await coordinator.assign_chat(session_id)

        with pytest.raises(InvalidRole):
            asyncio.run(scenario())

    def test_transfer_notifies_everyone(self):
        async def scenario():
            coordinator = build_coordinator()
            await _staff(coordinator, "alice")
            await _staff(coordinator, "bob")
            session_id = await _session(coordinator)
            customer = await connect_customer(coordinator, session_id)
            alice = await connect_staff(coordinator, "alice")
            bob = await connect_staff(coordinator, "bob")
            await coordinator.assign_chat(session_id, "alice")
            await coordinator.transfer_chat(session_id, "alice", "bob")
            session = await coordinator.sessions.require_session(session_id)
            return session, customer, alice, bob

        session, customer, alice, bob = asyncio.run(scenario())
        assert session.assigned_staff == "bob"
        assert alice.last("chat_transferred_out")["toStaffId"] == "bob"
        assert bob.last("chat_transferred_in")["fromStaffId"] == "alice"
        assert customer.last("staff_changed")["staffId"] == "bob"

    def test_transfer_after_completion_rejected(self):
        async def scenario():
            coordinator = build_coordinator()
            await _staff(coordinator, "alice")
            await _staff(coordinator, "bob")
            session_id = await _session(coordinator)
            await coordinator.assign_chat(session_id, "alice")
            await coordinator.complete_chat(session_id, requested_by="alice")
            await coordinator.transfer_chat(session_id, "alice", "bob")

        with pytest.raises(Conflict):
            asyncio.run(scenario())

    def test_repeat_completion_is_quiet(self):
        async def scenario():
            coordinator = build_coordinator()
            await _staff(coordinator, "alice")
            session_id = await _session(coordinator)
            customer = await connect_customer(coordinator, session_id)
            staff = await connect_staff(coordinator, "alice")
            await coordinator.assign_chat(session_id, "alice")
            await coordinator.complete_chat(session_id, requested_by="alice")
            await coordinator.complete_chat(session_id, requested_by="alice")
            alice = await coordinator.directory.require("alice")
            session = await coordinator.sessions.require_session(session_id)
            return alice, session, customer, staff

        alice, session, customer, staff = asyncio.run(scenario())
        assert alice.current_chat_count == 0
        assert session.status == SessionStatus.RESOLVED
        assert customer.events.count("chat_completed") == 1
        assert staff.events.count("chat_completed_confirmed") == 2

    def test_completion_by_other_staff_rejected(self):
        async def scenario():
            coordinator = build_coordinator()
            await _staff(coordinator, "alice")
            await _staff(coordinator, "bob")
            session_id = await _session(coordinator)
            await coordinator.assign_chat(session_id, "alice")
            await coordinator.complete_chat(session_id, requested_by="bob")

        with pytest.raises(Mismatch):
            asyncio.run(scenario())

    def test_completion_frees_slot_for_queue(self):
        async def scenario():
            coordinator = build_coordinator()
            await _staff(coordinator, "alice", capacity=1)
            first = await _session(coordinator)
            second = await _session(coordinator)
            await coordinator.request_staff(first)
            queued = await coordinator.request_staff(second)
            await coordinator.complete_chat(first, requested_by="alice")
            return queued, await coordinator.ledger.get_open(second)

        queued, assignment = asyncio.run(scenario())
        assert queued["queued"] is True
        assert assignment.staff_id == "alice"

    def test_resolving_session_releases_staff(self):
        async def scenario():
            coordinator = build_coordinator()
            await _staff(coordinator, "alice")
            session_id = await _session(coordinator)
            await coordinator.assign_chat(session_id, "alice")
            session = await coordinator.update_session_status(session_id, SessionStatus.RESOLVED)
            return session, await coordinator.directory.require("alice")

        session, alice = asyncio.run(scenario())
        assert session.status == SessionStatus.RESOLVED
        assert alice.current_chat_count == 0

    def test_with_staff_status_needs_assignment(self):
        async def scenario():
            coordinator = build_coordinator()
            session_id = await _session(coordinator)
            await coordinator.update_session_status(session_id, SessionStatus.WITH_STAFF)

        with pytest.raises(Conflict):
            asyncio.run(scenario())


class TestDispatch:
    def test_staff_only_command_from_customer(self):
        async def scenario():
            coordinator = build_coordinator()
            session_id = await _session(coordinator)
            socket = FakeSocket()
            connection = Connection(transport=socket)
            coordinator.connections.register(connection)
            await coordinator.dispatch(connection, CustomerJoin(sessionId=session_id))
            await coordinator.dispatch(connection, CompleteChat(sessionId=session_id))
            return socket

        socket = asyncio.run(scenario())
        assert socket.events == ["joined_session", "error"]

    def test_customer_cannot_write_to_other_session(self):
        async def scenario():
            coordinator = build_coordinator()
            mine = await _session(coordinator)
            theirs = await _session(coordinator)
            socket = FakeSocket()
            connection = Connection(transport=socket)
            coordinator.connections.register(connection)
            await coordinator.dispatch(connection, CustomerJoin(sessionId=mine))
            await coordinator.dispatch(connection, SendMessage(sessionId=theirs, message="hi"))
            await coordinator.dispatch(connection, RequestStaff(sessionId=theirs))
            return socket, await coordinator.sessions.require_session(theirs)

        socket, theirs = asyncio.run(scenario())
        assert socket.events == ["joined_session", "message_failed", "queue_failed"]
        assert theirs.messages == []

    def test_join_unknown_session(self):
        async def scenario():
            coordinator = build_coordinator()
            socket = FakeSocket()
            connection = Connection(transport=socket)
            coordinator.connections.register(connection)
            await coordinator.dispatch(connection, CustomerJoin(sessionId="missing"))
            return socket

        assert asyncio.run(scenario()).events == ["join_failed"]

    def test_invalid_token(self):
        async def scenario():
            coordinator = build_coordinator()
            socket = FakeSocket()
            connection = Connection(transport=socket)
            coordinator.connections.register(connection)
            await coordinator.dispatch(connection, StaffAuthenticate(token="not-a-jwt"))
            return socket, connection

        socket, connection = asyncio.run(scenario())
        assert socket.events == ["authentication_failed"]
        assert socket.last("authentication_failed") == {"error": "Invalid token"}
        assert connection.staff_id is None

    def test_authenticated_staff_picks_up_queue(self):
        async def scenario():
            coordinator = build_coordinator()
            await coordinator.directory.provision(
                email="alice@example.com", name="Alice", password_hash=hash_password("secret"),
                staff_id="alice",
            )
            session_id = await _session(coordinator)
            await coordinator.request_staff(session_id)

            token, _, _ = await coordinator.authenticator.login("alice@example.com", "secret")
            socket = FakeSocket()
            connection = Connection(transport=socket)
            coordinator.connections.register(connection)
            await coordinator.dispatch(connection, StaffAuthenticate(token=token))
            alice = await coordinator.directory.require("alice")
            return socket, alice, await coordinator.ledger.get_open(session_id)

        socket, alice, assignment = asyncio.run(scenario())
        assert socket.events[0] == "staff_authenticated"
        assert "chat_assigned" in socket.events
        assert alice.status == StaffStatus.ONLINE
        assert assignment.staff_id == "alice"

    def test_staff_commands_over_dispatch(self):
        async def scenario():
            coordinator = build_coordinator()
            await _staff(coordinator, "alice", online=False)
            session_id = await _session(coordinator)
            socket = FakeSocket()
            connection = Connection(transport=socket)
            coordinator.connections.register(connection)
            coordinator.connections.bind_staff(connection, "alice")

            await coordinator.dispatch(connection, StaffStatusUpdate(status=StaffStatus.ONLINE))
            await coordinator.dispatch(connection, AssignChat(sessionId=session_id))
            await coordinator.dispatch(connection, SendMessage(sessionId=session_id, message="Hello", role="staff"))
            await coordinator.dispatch(connection, CompleteChat(sessionId=session_id))
            return socket, await coordinator.ledger.get(session_id)

        socket, assignment = asyncio.run(scenario())
        assert "staff_status_changed" in socket.events
        assert "chat_assigned" in socket.events
        assert "chat_completed_confirmed" in socket.events
        assert "assignment_failed" not in socket.events
        assert assignment.status == AssignmentStatus.COMPLETED

    def test_typing_is_relayed_to_the_other_side(self):
        async def scenario():
            coordinator = build_coordinator()
            await _staff(coordinator, "alice")
            session_id = await _session(coordinator)
            await coordinator.assign_chat(session_id, "alice")
            staff = await connect_staff(coordinator, "alice")

            customer = FakeSocket()
            connection = Connection(transport=customer)
            coordinator.connections.register(connection)
            await coordinator.dispatch(connection, CustomerJoin(sessionId=session_id))
            await coordinator.dispatch(connection, TypingStart(sessionId=session_id))
            return staff

        staff = asyncio.run(scenario())
        typing = staff.last("user_typing")
        assert typing["isTyping"] is True
        assert typing["userId"] == "customer"


class TestConnections:
    def test_staff_disconnect_goes_offline(self):
        async def scenario():
            coordinator = build_coordinator()
            await _staff(coordinator, "alice")
            await _staff(coordinator, "bob")
            bob = await connect_staff(coordinator, "bob")

            connection = Connection(transport=FakeSocket())
            coordinator.connections.register(connection)
            coordinator.connections.bind_staff(connection, "alice")
            await coordinator.disconnect(connection)
            return await coordinator.directory.require("alice"), bob

        alice, bob = asyncio.run(scenario())
        assert alice.status == StaffStatus.OFFLINE
        assert bob.last("staff_offline") == {"staffId": "alice"}

    def test_staff_with_two_tabs_stays_online(self):
        async def scenario():
            coordinator = build_coordinator()
            await _staff(coordinator, "alice")
            session_id = await _session(coordinator)
            first, second = FakeSocket(), FakeSocket()
            connections = []
            for socket in (first, second):
                connection = Connection(transport=socket)
                coordinator.connections.register(connection)
                coordinator.connections.bind_staff(connection, "alice")
                connections.append(connection)

            await coordinator.disconnect(connections[1])
            still_online = (await coordinator.directory.require("alice")).status
            await coordinator.request_staff(session_id)

            await coordinator.disconnect(connections[0])
            offline = (await coordinator.directory.require("alice")).status
            return still_online, offline, first, second

        still_online, offline, first, second = asyncio.run(scenario())
        assert still_online == StaffStatus.ONLINE
        assert "chat_assigned" in first.events
        assert "chat_assigned" not in second.events
        assert offline == StaffStatus.OFFLINE

    def test_customer_disconnect_keeps_queue_place(self):
        async def scenario():
            coordinator = build_coordinator()
            session_id = await _session(coordinator)
            connection = Connection(transport=FakeSocket())
            coordinator.connections.register(connection)
            await coordinator.join_customer(connection, session_id)
            await coordinator.request_staff(session_id)
            await coordinator.disconnect(connection)
            return await coordinator.queue.contains(session_id)

        assert asyncio.run(scenario()) is True

    def test_customer_disconnect_can_leave_queue(self):
        async def scenario():
            coordinator = build_coordinator(dequeue_on_customer_disconnect=True)
            session_id = await _session(coordinator)
            connection = Connection(transport=FakeSocket())
            coordinator.connections.register(connection)
            await coordinator.join_customer(connection, session_id)
            await coordinator.request_staff(session_id)
            await coordinator.disconnect(connection)
            session = await coordinator.sessions.require_session(session_id)
            return await coordinator.queue.contains(session_id), session.status

        queued, status = asyncio.run(scenario())
        assert queued is False
        assert status == SessionStatus.ACTIVE

    def test_dead_socket_is_dropped(self):
        async def scenario():
            coordinator = build_coordinator()
            session_id = await _session(coordinator)
            connection = Connection(transport=FakeSocket(fail=True))
            coordinator.connections.register(connection)
            coordinator.connections.bind_customer(connection, session_id)
            outcome = await coordinator.handle_customer_message(session_id, "hi")
            return outcome, coordinator.connections

        outcome, connections = asyncio.run(scenario())
        assert outcome.reply is not None
        assert connections.active_count == 0
        assert not connections.is_session_connected(outcome.message.session_id)
