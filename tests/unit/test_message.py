import asyncio
import pytest
from datetime import datetime
from httpx import AsyncClient
from fastapi import status

from app.core.errors import AuthorizationException, BusinessLogicException, ValidationException
from app.services import chat_room_service, chat_service, message_service
from app.services.message_service import (
    BACKWARD,
    DELETED_MESSAGE_PLACEHOLDER,
    FORWARD,
    decode_cursor,
    encode_cursor,
)
from app.models.messages import Message
from app.utils.time_utils import monotonic_after


@pytest.fixture
def direct_room_factory(test_session, test_user_1, test_user_2):
    async def create():
        room, _ = await chat_room_service.find_or_create_direct_room(test_session, test_user_1.id, test_user_2.id)
        return room
    return create


class TestCursor:
    """페이지 커서 테스트"""

    def test_decode_encoded_cursor(self):
        message = Message(id=42, created_at=datetime(2024, 5, 1, 12, 30, 15, 123456))

        assert decode_cursor(encode_cursor(message)) == (message.created_at, 42)

    @pytest.mark.parametrize("cursor", ["garbage", "", "e30", "!!!"])
    def test_invalid_cursor(self, cursor):
        with pytest.raises(BusinessLogicException):
            decode_cursor(cursor)


class TestMonotonicClock:

    def test_strictly_after_previous(self):
        future = datetime(2999, 1, 1)
        assert monotonic_after(future) > future

    def test_without_previous(self):
        assert monotonic_after(None) is not None


class TestAppendMessage:
    """메시지 저장 테스트"""

    @pytest.mark.asyncio
    async def test_content_is_trimmed(self, test_session, test_user_1, direct_room_factory):
        room = await direct_room_factory()

        message = await message_service.append_message(test_session, room.id, test_user_1.id, "  hello  ")

        assert message.content == "hello"
        assert message.sender_id == test_user_1.id
        assert room.id == message.room_id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   ", "bad\x00byte", 123, ["hi"]])
    async def test_invalid_content(self, test_session, test_user_1, direct_room_factory, content):
        room = await direct_room_factory()

        with pytest.raises(ValidationException):
            await message_service.append_message(test_session, room.id, test_user_1.id, content)

    @pytest.mark.asyncio
    async def test_content_too_long(self, test_session, test_user_1, direct_room_factory, monkeypatch):
        from app.core.config import settings
        monkeypatch.setattr(settings, "max_message_length", 10)
        room = await direct_room_factory()

        with pytest.raises(ValidationException):
            await message_service.append_message(test_session, room.id, test_user_1.id, "x" * 11)

    @pytest.mark.asyncio
    async def test_outsider_cannot_send(self, test_session, test_user_3, direct_room_factory):
        room = await direct_room_factory()

        with pytest.raises(AuthorizationException):
            await message_service.append_message(test_session, room.id, test_user_3.id, "hi")

    @pytest.mark.asyncio
    async def test_room_activity_is_updated(self, test_session, test_user_1, direct_room_factory):
        room = await direct_room_factory()

        message = await message_service.append_message(test_session, room.id, test_user_1.id, "hello")
        await test_session.refresh(room)

        assert room.last_message_at == message.created_at

    @pytest.mark.asyncio
    async def test_timestamps_strictly_increase(self, test_session, test_user_1, test_user_2, direct_room_factory):
        room = await direct_room_factory()

        messages = []
        for i in range(10):
            sender = test_user_1 if i % 2 == 0 else test_user_2
            messages.append(await message_service.append_message(test_session, room.id, sender.id, f"m{i}"))

        created = [m.created_at for m in messages]
        assert created == sorted(created)
        assert len(set(created)) == len(created)

    @pytest.mark.asyncio
    async def test_concurrent_senders_keep_commit_order(
        self, session_factory, test_user_1, test_user_2, direct_room_factory, fast_retry
    ):
        """동시 전송에서도 (created_at, id) 순서가 id(커밋) 순서와 일치"""
        room = await direct_room_factory()

        async def send(index: int):
            sender = test_user_1 if index % 2 == 0 else test_user_2
            async with session_factory() as db:
                return await chat_service.send_message(db, sender.id, room.id, f"message {index}")

        await asyncio.gather(*(send(i) for i in range(12)))

        async with session_factory() as db:
            page = await message_service.list_messages(db, test_user_1.id, room.id, limit=100)

        ids = [m.id for m in page.items]
        created = [m.created_at for m in page.items]
        assert len(ids) == 12
        assert ids == sorted(ids)
        assert created == sorted(created)
        assert len(set(created)) == 12


class TestListMessages:
    """메시지 페이지 조회 테스트"""

    @pytest.mark.asyncio
    async def test_forward_pages_cover_every_message_once(self, test_session, test_user_1, direct_room_factory):
        room = await direct_room_factory()
        for i in range(7):
            await message_service.append_message(test_session, room.id, test_user_1.id, f"m{i}")

        contents = []
        cursor = None
        pages = 0
        while True:
            page = await message_service.list_messages(test_session, test_user_1.id, room.id, cursor=cursor, limit=3)
            contents.extend(m.content for m in page.items)
            pages += 1
            if page.next_cursor is None:
                break
            cursor = page.next_cursor

        assert contents == [f"m{i}" for i in range(7)]
        assert pages == 3

    @pytest.mark.asyncio
    async def test_backward_returns_newest_first(self, test_session, test_user_1, direct_room_factory):
        room = await direct_room_factory()
        for i in range(5):
            await message_service.append_message(test_session, room.id, test_user_1.id, f"m{i}")

        first = await message_service.list_messages(
            test_session, test_user_1.id, room.id, limit=2, direction=BACKWARD
        )
        second = await message_service.list_messages(
            test_session, test_user_1.id, room.id, cursor=first.next_cursor, limit=2, direction=BACKWARD
        )

        assert [m.content for m in first.items] == ["m4", "m3"]
        assert [m.content for m in second.items] == ["m2", "m1"]
        assert second.direction == BACKWARD

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page_size", [1, 2, 4, 6, 10])
    async def test_forward_and_backward_give_the_same_sequence(
        self, test_session, test_user_1, direct_room_factory, page_size
    ):
        room = await direct_room_factory()
        for i in range(6):
            await message_service.append_message(test_session, room.id, test_user_1.id, f"m{i}")

        forward = [m.id async for m in message_service.iter_messages(
            test_session, test_user_1.id, room.id, direction=FORWARD, page_size=page_size
        )]
        backward = [m.id async for m in message_service.iter_messages(
            test_session, test_user_1.id, room.id, direction=BACKWARD, page_size=page_size
        )]

        assert len(forward) == 6
        assert forward == sorted(forward)
        assert forward == list(reversed(backward))

    @pytest.mark.asyncio
    async def test_backward_from_forward_cursor_excludes_boundary(self, test_session, test_user_1, direct_room_factory):
        room = await direct_room_factory()
        for i in range(6):
            await message_service.append_message(test_session, room.id, test_user_1.id, f"m{i}")

        first = await message_service.list_messages(test_session, test_user_1.id, room.id, limit=3)
        before = await message_service.list_messages(
            test_session, test_user_1.id, room.id, cursor=first.next_cursor, limit=10, direction=BACKWARD
        )
        after = await message_service.list_messages(
            test_session, test_user_1.id, room.id, cursor=first.next_cursor, limit=10
        )

        # 커서가 가리키는 m2는 어느 쪽에도 포함되지 않음
        assert [m.content for m in first.items] == ["m0", "m1", "m2"]
        assert [m.content for m in before.items] == ["m1", "m0"]
        assert [m.content for m in after.items] == ["m3", "m4", "m5"]
        assert before.next_cursor is None

    @pytest.mark.asyncio
    async def test_new_messages_do_not_shift_forward_pages(self, test_session, test_user_1, direct_room_factory):
        room = await direct_room_factory()
        for i in range(4):
            await message_service.append_message(test_session, room.id, test_user_1.id, f"m{i}")

        first = await message_service.list_messages(test_session, test_user_1.id, room.id, limit=2)
        await message_service.append_message(test_session, room.id, test_user_1.id, "late")
        second = await message_service.list_messages(
            test_session, test_user_1.id, room.id, cursor=first.next_cursor, limit=10
        )

        assert [m.content for m in second.items] == ["m2", "m3", "late"]
        assert second.next_cursor is None

    @pytest.mark.asyncio
    async def test_empty_room(self, test_session, test_user_1, direct_room_factory):
        room = await direct_room_factory()

        page = await message_service.list_messages(test_session, test_user_1.id, room.id)

        assert page.items == []
        assert page.next_cursor is None
        assert page.direction == FORWARD

    @pytest.mark.asyncio
    async def test_outsider_cannot_list(self, test_session, test_user_3, direct_room_factory):
        room = await direct_room_factory()

        with pytest.raises(AuthorizationException):
            await message_service.list_messages(test_session, test_user_3.id, room.id)

    @pytest.mark.asyncio
    async def test_iter_messages_walks_all_pages(self, test_session, test_user_1, direct_room_factory):
        room = await direct_room_factory()
        for i in range(5):
            await message_service.append_message(test_session, room.id, test_user_1.id, f"m{i}")

        contents = [m.content async for m in message_service.iter_messages(test_session, test_user_1.id, room.id, page_size=2)]

        assert contents == [f"m{i}" for i in range(5)]


class TestEditAndDelete:

    @pytest.mark.asyncio
    async def test_sender_can_edit(self, test_session, test_user_1, direct_room_factory):
        room = await direct_room_factory()
        message = await message_service.append_message(test_session, room.id, test_user_1.id, "helo")

        edited = await message_service.edit_message(test_session, test_user_1.id, message.id, "hello")

        assert edited.content == "hello"
        assert edited.is_edited is True
        assert edited.edited_at is not None
        assert edited.created_at == message.created_at

    @pytest.mark.asyncio
    async def test_other_participant_cannot_edit_or_delete(self, test_session, test_user_1, test_user_2, direct_room_factory):
        room = await direct_room_factory()
        message = await message_service.append_message(test_session, room.id, test_user_1.id, "mine")

        with pytest.raises(AuthorizationException):
            await message_service.edit_message(test_session, test_user_2.id, message.id, "yours")
        with pytest.raises(AuthorizationException):
            await message_service.soft_delete_message(test_session, test_user_2.id, message.id)

    @pytest.mark.asyncio
    async def test_deleted_message_keeps_its_place(self, test_session, test_user_1, direct_room_factory):
        room = await direct_room_factory()
        await message_service.append_message(test_session, room.id, test_user_1.id, "first")
        second = await message_service.append_message(test_session, room.id, test_user_1.id, "second")

        await message_service.soft_delete_message(test_session, test_user_1.id, second.id)
        page = await message_service.list_messages(test_session, test_user_1.id, room.id)

        assert [m.id for m in page.items][-1] == second.id
        rendered = message_service.message_to_dict(page.items[-1])
        assert rendered["is_deleted"] is True
        assert rendered["content"] == DELETED_MESSAGE_PLACEHOLDER

        with pytest.raises(BusinessLogicException):
            await message_service.edit_message(test_session, test_user_1.id, second.id, "again")

    @pytest.mark.asyncio
    async def test_unknown_message_is_denied(self, test_session, test_user_1):
        with pytest.raises(AuthorizationException):
            await message_service.edit_message(test_session, test_user_1.id, 99999, "x")


class TestReactions:
    """반응 테스트"""

    @pytest.mark.asyncio
    async def test_reaction_is_replaced_not_duplicated(self, test_session, test_user_1, test_user_2, direct_room_factory):
        room = await direct_room_factory()
        message = await message_service.append_message(test_session, room.id, test_user_1.id, "nice")

        await message_service.react_to_message(test_session, test_user_2.id, message.id, "👍")
        await message_service.react_to_message(test_session, test_user_2.id, message.id, "🎉")
        await message_service.react_to_message(test_session, test_user_1.id, message.id, "🎉")

        summary = await message_service.get_reaction_summary(test_session, [message.id])
        assert summary == {message.id: {"🎉": 2}}

    @pytest.mark.asyncio
    async def test_remove_reaction(self, test_session, test_user_1, test_user_2, direct_room_factory):
        room = await direct_room_factory()
        message = await message_service.append_message(test_session, room.id, test_user_1.id, "nice")
        await message_service.react_to_message(test_session, test_user_2.id, message.id, "👍")

        _, removed = await message_service.remove_reaction(test_session, test_user_2.id, message.id)
        _, removed_again = await message_service.remove_reaction(test_session, test_user_2.id, message.id)

        assert removed is True
        assert removed_again is False
        assert await message_service.get_reaction_summary(test_session, [message.id]) == {}

    @pytest.mark.asyncio
    async def test_cannot_react_to_deleted_message(self, test_session, test_user_1, test_user_2, direct_room_factory):
        room = await direct_room_factory()
        message = await message_service.append_message(test_session, room.id, test_user_1.id, "oops")
        await message_service.soft_delete_message(test_session, test_user_1.id, message.id)

        with pytest.raises(BusinessLogicException):
            await message_service.react_to_message(test_session, test_user_2.id, message.id, "👍")

    @pytest.mark.asyncio
    async def test_invalid_reaction_kind(self, test_session, test_user_1, direct_room_factory):
        room = await direct_room_factory()
        message = await message_service.append_message(test_session, room.id, test_user_1.id, "nice")

        with pytest.raises(ValidationException):
            await message_service.react_to_message(test_session, test_user_1.id, message.id, "two words")

    @pytest.mark.asyncio
    async def test_outsider_cannot_react(self, test_session, test_user_1, test_user_3, direct_room_factory):
        room = await direct_room_factory()
        message = await message_service.append_message(test_session, room.id, test_user_1.id, "nice")

        with pytest.raises(AuthorizationException):
            await message_service.react_to_message(test_session, test_user_3.id, message.id, "👍")


class TestUnreadCount:

    @pytest.mark.asyncio
    async def test_mark_read_resets_unread(self, test_session, test_user_1, test_user_2, direct_room_factory):
        room = await direct_room_factory()
        await message_service.append_message(test_session, room.id, test_user_1.id, "one")
        await message_service.append_message(test_session, room.id, test_user_1.id, "two")

        assert await chat_room_service.get_unread_count(test_session, room.id, test_user_2.id) == 2
        # 본인 메시지는 세지 않음
        assert await chat_room_service.get_unread_count(test_session, room.id, test_user_1.id) == 0

        receipt = await chat_service.mark_read(test_session, test_user_2.id, room.id)
        assert receipt["unread_count"] == 0

        await message_service.append_message(test_session, room.id, test_user_1.id, "three")
        assert await chat_room_service.get_unread_count(test_session, room.id, test_user_2.id) == 1


class TestMessageAPI:
    """메시지 API 테스트"""

    @pytest.mark.asyncio
    async def test_send_and_list(self, client: AsyncClient, headers_user_1, headers_user_2, test_user_2):
        created = await client.post("/chat-rooms/direct", json={"participant_id": test_user_2.id}, headers=headers_user_1)
        room_id = created.json()["room"]["id"]

        sent = await client.post(f"/messages/{room_id}", json={"content": " hi Bob "}, headers=headers_user_1)
        assert sent.status_code == status.HTTP_201_CREATED
        assert sent.json()["content"] == "hi Bob"

        page = await client.get(f"/messages/{room_id}", headers=headers_user_2)
        assert page.status_code == status.HTTP_200_OK
        data = page.json()
        assert [m["content"] for m in data["items"]] == ["hi Bob"]
        assert data["next_cursor"] is None
        assert data["direction"] == "forward"

    @pytest.mark.asyncio
    async def test_blank_message_is_rejected(self, client: AsyncClient, headers_user_1, test_user_2):
        created = await client.post("/chat-rooms/direct", json={"participant_id": test_user_2.id}, headers=headers_user_1)
        room_id = created.json()["room"]["id"]

        response = await client.post(f"/messages/{room_id}", json={"content": "   "}, headers=headers_user_1)

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_invalid_cursor_is_bad_request(self, client: AsyncClient, headers_user_1, test_user_2):
        created = await client.post("/chat-rooms/direct", json={"participant_id": test_user_2.id}, headers=headers_user_1)
        room_id = created.json()["room"]["id"]

        response = await client.get(f"/messages/{room_id}", params={"cursor": "garbage"}, headers=headers_user_1)

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.asyncio
    async def test_outsider_gets_access_denied(self, client: AsyncClient, headers_user_1, headers_user_3, test_user_2):
        created = await client.post("/chat-rooms/direct", json={"participant_id": test_user_2.id}, headers=headers_user_1)
        room_id = created.json()["room"]["id"]

        response = await client.post(f"/messages/{room_id}", json={"content": "let me in"}, headers=headers_user_3)

        assert response.status_code == status.HTTP_403_FORBIDDEN

    @pytest.mark.asyncio
    async def test_edit_delete_and_react(self, client: AsyncClient, headers_user_1, headers_user_2, test_user_2):
        created = await client.post("/chat-rooms/direct", json={"participant_id": test_user_2.id}, headers=headers_user_1)
        room_id = created.json()["room"]["id"]
        message_id = (await client.post(f"/messages/{room_id}", json={"content": "helo"}, headers=headers_user_1)).json()["id"]

        edited = await client.put(f"/messages/item/{message_id}", json={"content": "hello"}, headers=headers_user_1)
        assert edited.status_code == status.HTTP_200_OK
        assert edited.json()["is_edited"] is True

        reacted = await client.put(f"/messages/item/{message_id}/reaction", json={"kind": "👍"}, headers=headers_user_2)
        assert reacted.status_code == status.HTTP_200_OK
        assert reacted.json()["reactions"] == {"👍": 1}

        unreacted = await client.delete(f"/messages/item/{message_id}/reaction", headers=headers_user_2)
        assert unreacted.json()["reactions"] == {}

        deleted = await client.delete(f"/messages/item/{message_id}", headers=headers_user_1)
        assert deleted.status_code == status.HTTP_200_OK
        assert deleted.json()["content"] == DELETED_MESSAGE_PLACEHOLDER
