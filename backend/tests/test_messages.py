"""Tests for MessageService: send, history, edit and soft delete."""
from datetime import timedelta

import pytest

from chatapp.errors import BadRequestError, ForbiddenError, NotFoundError
from chatapp.models import Message, MessageType
from chatapp.schemas import MessageCreate


@pytest.fixture
def room_setup(services, make_user):
    async def _setup():
        alice = await make_user("alice@example.com", "Alice", "Smith")
        bob = await make_user("bob@example.com", "Bob", "Jones")
        carol = await make_user("carol@example.com", "Carol", "White")
        room = await services.rooms.create_or_get_direct(alice.id, bob.id)
        return alice, bob, carol, room

    return _setup


async def send(services, user, room, content="hi"):
    return await services.messages.create(user.id, MessageCreate(content=content, room_id=room.id))


class TestCreate:
    @pytest.mark.asyncio
    async def test_stores_sender_and_bumps_room_activity(self, services, room_setup):
        alice, bob, _, room = await room_setup()
        before = (await services.rooms.get(room.id)).last_activity

        message = await send(services, alice, room)

        assert message.sender_id == alice.id
        assert message.sender_username == "Alice Smith"
        assert message.room_id == room.id
        assert message.message_type == MessageType.TEXT
        assert not message.is_edited and not message.is_deleted
        assert (await services.rooms.get(room.id)).last_activity > before

    @pytest.mark.asyncio
    async def test_non_member_is_forbidden(self, services, room_setup):
        _, _, carol, room = await room_setup()
        with pytest.raises(ForbiddenError):
            await send(services, carol, room)

    @pytest.mark.asyncio
    async def test_member_who_left_is_forbidden(self, services, room_setup):
        _, bob, _, room = await room_setup()
        await services.rooms.leave(bob.id, room.id)
        with pytest.raises(ForbiddenError):
            await send(services, bob, room)

    @pytest.mark.asyncio
    async def test_missing_room(self, services, room_setup):
        alice, *_ = await room_setup()
        with pytest.raises(NotFoundError):
            await services.messages.create(alice.id, MessageCreate(content="x", room_id=9999))

    @pytest.mark.asyncio
    async def test_deleted_room(self, services, room_setup):
        alice, _, _, room = await room_setup()
        await services.rooms.delete(room.id)
        with pytest.raises(NotFoundError):
            await send(services, alice, room)


class TestList:
    @pytest.mark.asyncio
    async def test_newest_first(self, services, room_setup):
        alice, bob, _, room = await room_setup()
        for text in ("one", "two", "three"):
            await send(services, alice, room, text)

        history = await services.messages.list_messages(bob.id, room.id)
        assert [m.content for m in history] == ["three", "two", "one"]

    @pytest.mark.asyncio
    async def test_limit_and_offset(self, services, room_setup):
        alice, bob, _, room = await room_setup()
        for i in range(5):
            await send(services, alice, room, f"m{i}")

        page = await services.messages.list_messages(bob.id, room.id, limit=2, offset=1)
        assert [m.content for m in page] == ["m3", "m2"]

    @pytest.mark.asyncio
    async def test_before_cursor(self, services, room_setup):
        alice, bob, _, room = await room_setup()
        sent = [await send(services, alice, room, f"m{i}") for i in range(4)]

        older = await services.messages.list_messages(bob.id, room.id, before=sent[2].timestamp)
        assert [m.content for m in older] == ["m1", "m0"]

        assert await services.messages.list_messages(
            bob.id, room.id, before=sent[0].timestamp - timedelta(seconds=1)
        ) == []

    @pytest.mark.asyncio
    async def test_excludes_soft_deleted(self, services, room_setup):
        alice, bob, _, room = await room_setup()
        keep = await send(services, alice, room, "keep")
        gone = await send(services, alice, room, "gone")
        await services.messages.soft_delete(alice.id, gone.id)

        history = await services.messages.list_messages(bob.id, room.id)
        assert [m.id for m in history] == [keep.id]

    @pytest.mark.asyncio
    async def test_non_member_is_forbidden(self, services, room_setup):
        alice, _, carol, room = await room_setup()
        await send(services, alice, room)
        with pytest.raises(ForbiddenError):
            await services.messages.list_messages(carol.id, room.id)


class TestEditAndDelete:
    @pytest.mark.asyncio
    async def test_sender_can_edit(self, services, room_setup):
        alice, _, _, room = await room_setup()
        message = await send(services, alice, room, "helo")

        edited = await services.messages.edit(alice.id, message.id, "hello")

        assert edited.content == "hello"
        assert edited.is_edited
        assert edited.edited_at is not None

    @pytest.mark.asyncio
    async def test_other_user_cannot_edit_or_delete(self, services, room_setup):
        alice, bob, _, room = await room_setup()
        message = await send(services, alice, room)

        with pytest.raises(ForbiddenError):
            await services.messages.edit(bob.id, message.id, "mine now")
        with pytest.raises(ForbiddenError):
            await services.messages.soft_delete(bob.id, message.id)

    @pytest.mark.asyncio
    async def test_missing_message(self, services, room_setup):
        alice, *_ = await room_setup()
        with pytest.raises(NotFoundError):
            await services.messages.edit(alice.id, 9999, "x")
        with pytest.raises(NotFoundError):
            await services.messages.soft_delete(alice.id, 9999)

    @pytest.mark.asyncio
    async def test_soft_deleted_message_cannot_be_edited(self, services, room_setup):
        alice, _, _, room = await room_setup()
        message = await send(services, alice, room)
        await services.messages.soft_delete(alice.id, message.id)

        with pytest.raises(BadRequestError):
            await services.messages.edit(alice.id, message.id, "revived")

    @pytest.mark.asyncio
    async def test_soft_delete_keeps_content(self, services, room_setup, db):
        alice, _, _, room = await room_setup()
        message = await send(services, alice, room, "still here")

        deleted = await services.messages.soft_delete(alice.id, message.id)
        assert deleted.is_deleted
        assert deleted.deleted_at is not None

        stored = await db.get(Message, message.id, populate_existing=True)
        assert stored.content == "still here"
