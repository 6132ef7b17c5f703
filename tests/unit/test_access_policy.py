import logging
import pytest
from unittest.mock import AsyncMock, patch

from app.services import chat_room_service
from app.services.access_policy import RoomAction, can_access


NON_MANAGE_ACTIONS = [
    RoomAction.READ_ROOM,
    RoomAction.READ_PARTICIPANTS,
    RoomAction.SEND_MESSAGE,
    RoomAction.READ_MESSAGES,
    RoomAction.REACT,
]


class TestAccessPolicy:
    """채팅방 권한 판단 테스트"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", NON_MANAGE_ACTIONS)
    async def test_participant_is_allowed(self, test_session, test_user_1, test_user_2, action):
        room, _ = await chat_room_service.find_or_create_direct_room(test_session, test_user_1.id, test_user_2.id)

        assert await can_access(test_session, test_user_1.id, room.id, action) is True
        assert await can_access(test_session, test_user_2.id, room.id, action) is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", NON_MANAGE_ACTIONS + [RoomAction.MANAGE_ROOM])
    async def test_non_participant_is_denied(self, test_session, test_user_1, test_user_2, test_user_3, action):
        room, _ = await chat_room_service.find_or_create_direct_room(test_session, test_user_1.id, test_user_2.id)

        assert await can_access(test_session, test_user_3.id, room.id, action) is False

    @pytest.mark.asyncio
    async def test_missing_room_is_denied(self, test_session, test_user_1):
        assert await can_access(test_session, test_user_1.id, 99999, RoomAction.READ_ROOM) is False

    @pytest.mark.asyncio
    async def test_missing_identity_is_denied(self, test_session, test_user_1, test_user_2):
        room, _ = await chat_room_service.find_or_create_direct_room(test_session, test_user_1.id, test_user_2.id)

        assert await can_access(test_session, None, room.id, RoomAction.READ_ROOM) is False
        assert await can_access(test_session, test_user_1.id, None, RoomAction.READ_ROOM) is False

    @pytest.mark.asyncio
    async def test_action_accepts_string_value(self, test_session, test_user_1, test_user_2):
        room, _ = await chat_room_service.find_or_create_direct_room(test_session, test_user_1.id, test_user_2.id)

        assert await can_access(test_session, test_user_1.id, room.id, "read-messages") is True
        assert await can_access(test_session, test_user_1.id, room.id, "delete-everything") is False

    @pytest.mark.asyncio
    async def test_manage_room_for_group_creator_only(self, test_session, test_user_1, test_user_2):
        room = await chat_room_service.create_group_room(test_session, test_user_1.id, "Team", [test_user_2.id])

        assert await can_access(test_session, test_user_1.id, room.id, RoomAction.MANAGE_ROOM) is True
        # 참여자라도 생성자가 아니면 관리 불가
        assert await can_access(test_session, test_user_2.id, room.id, RoomAction.MANAGE_ROOM) is False

    @pytest.mark.asyncio
    async def test_admin_can_manage_without_membership(self, test_session, test_user_1, test_user_2, admin_user):
        room = await chat_room_service.create_group_room(test_session, test_user_1.id, "Team", [test_user_2.id])

        assert await can_access(test_session, admin_user.id, room.id, RoomAction.MANAGE_ROOM) is True
        assert await can_access(test_session, admin_user.id, room.id, RoomAction.READ_MESSAGES) is False

    @pytest.mark.asyncio
    async def test_quarantined_room_is_denied(self, test_session, test_user_1, test_user_2):
        room, _ = await chat_room_service.find_or_create_direct_room(test_session, test_user_1.id, test_user_2.id)
        room.needs_cleanup = True
        await test_session.commit()

        assert await can_access(test_session, test_user_1.id, room.id, RoomAction.READ_MESSAGES) is False

    @pytest.mark.asyncio
    async def test_read_participants_does_not_consult_registry(self, test_session, test_user_1, test_user_2):
        """참여자 목록 권한 판단이 참여자 레지스트리를 다시 호출하지 않음"""
        room, _ = await chat_room_service.find_or_create_direct_room(test_session, test_user_1.id, test_user_2.id)

        registry_calls = AsyncMock(side_effect=AssertionError("registry must not be consulted"))
        with patch("app.services.room_member_service.list_participants", registry_calls), \
             patch("app.services.room_member_service.get_participant_ids", registry_calls), \
             patch("app.services.room_member_service.find_room_member", registry_calls), \
             patch("app.services.room_member_service.is_participant", registry_calls):
            allowed = await can_access(test_session, test_user_1.id, room.id, RoomAction.READ_PARTICIPANTS)

        assert allowed is True
        registry_calls.assert_not_called()

    @pytest.mark.asyncio
    async def test_denial_reason_is_logged(self, test_session, test_user_1, test_user_2, test_user_3, caplog):
        room, _ = await chat_room_service.find_or_create_direct_room(test_session, test_user_1.id, test_user_2.id)

        with caplog.at_level(logging.INFO, logger="app.diagnostics"):
            await can_access(test_session, test_user_3.id, room.id, RoomAction.SEND_MESSAGE)

        denials = [r for r in caplog.records if getattr(r, "event_type", None) == "authorization_denied"]
        assert len(denials) == 1
        assert denials[0].reason == "not_a_participant"
        assert denials[0].action == "send-message"

    @pytest.mark.asyncio
    async def test_evaluation_error_is_denial(self, test_session, test_user_1, test_user_2):
        room, _ = await chat_room_service.find_or_create_direct_room(test_session, test_user_1.id, test_user_2.id)

        with patch("app.services.access_policy._load_room", AsyncMock(side_effect=RuntimeError("boom"))):
            allowed = await can_access(test_session, test_user_1.id, room.id, RoomAction.READ_ROOM)

        assert allowed is False
