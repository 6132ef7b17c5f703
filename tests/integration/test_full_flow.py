import pytest
from httpx import AsyncClient
from fastapi import status

from app.websockets.connection_manager import manager
from app.websockets.handlers import message_handler


class TestFullChatFlow:
    """전체 채팅 플로우 통합 테스트"""

    @pytest.mark.asyncio
    async def test_complete_chat_flow(
        self, client: AsyncClient, make_websocket, test_user_1, test_user_2, headers_user_1, headers_user_2
    ):
        """
        완전한 채팅 플로우 테스트:
        1. A가 B와 1:1 대화 시작
        2. B가 WebSocket으로 채팅방 구독
        3. A가 HTTP로 메시지 전송 → B가 실시간 수신
        4. B가 메시지 목록 조회, 읽음 처리
        5. A가 다시 대화를 시작하면 같은 채팅방
        """

        # 1. 대화 시작
        start = await client.post("/chat-rooms/direct", json={"participant_id": test_user_2.id}, headers=headers_user_1)
        assert start.status_code == status.HTTP_201_CREATED
        room = start.json()["room"]
        assert start.json()["created"] is True
        assert room["display_name"] == "Bob"

        # 2. B 연결 및 구독
        bob_socket = make_websocket()
        bob_session = await manager.connect(bob_socket, test_user_2.id)
        await message_handler.handle_message(bob_session, {"type": "subscribe", "room_id": room["id"]})
        assert bob_socket.frames("subscribed")[0]["room_id"] == room["id"]

        # 3. 메시지 전송
        sent = await client.post(f"/messages/{room['id']}", json={"content": "hello"}, headers=headers_user_1)
        assert sent.status_code == status.HTTP_201_CREATED
        await manager.drain()

        delivered = bob_socket.frames("message.created")
        assert len(delivered) == 1
        assert delivered[0]["message"]["content"] == "hello"
        assert delivered[0]["message"]["id"] == sent.json()["id"]
        assert delivered[0]["message"]["sender_id"] == test_user_1.id

        # 4. 목록 조회 및 읽음 처리
        rooms = await client.get("/chat-rooms", headers=headers_user_2)
        bob_view = rooms.json()["rooms"][0]
        assert bob_view["display_name"] == "Alice"
        assert bob_view["unread_count"] == 1
        assert bob_view["last_message"]["content"] == "hello"

        history = await client.get(f"/messages/{room['id']}", headers=headers_user_2)
        assert [m["content"] for m in history.json()["items"]] == ["hello"]

        receipt = await client.post(f"/chat-rooms/{room['id']}/read", headers=headers_user_2)
        assert receipt.status_code == status.HTTP_200_OK
        assert receipt.json()["unread_count"] == 0

        # 5. 같은 쌍의 재시작은 기존 채팅방
        again = await client.post("/chat-rooms/direct", json={"participant_id": test_user_1.id}, headers=headers_user_2)
        assert again.json()["created"] is False
        assert again.json()["room"]["id"] == room["id"]
        assert again.json()["history"] == ["requested", "resolving_room", "reused", "ready"]

    @pytest.mark.asyncio
    async def test_group_flow_with_removal(
        self, client: AsyncClient, make_websocket, test_user_1, test_user_2, test_user_3, headers_user_1, headers_user_3
    ):
        """그룹 채팅방: 참여자 제거 이후 제거된 사용자는 메시지를 받지도 읽지도 못함"""
        created = await client.post(
            "/chat-rooms/group",
            json={"name": "Weekend", "member_ids": [test_user_2.id, test_user_3.id]},
            headers=headers_user_1
        )
        room_id = created.json()["id"]

        carol_socket = make_websocket()
        carol_session = await manager.connect(carol_socket, test_user_3.id)
        await message_handler.handle_message(carol_session, {"type": "subscribe", "room_id": room_id})

        before = await client.post(f"/messages/{room_id}", json={"content": "before"}, headers=headers_user_1)
        assert before.status_code == status.HTTP_201_CREATED
        await manager.drain()

        removed = await client.delete(f"/chat-rooms/{room_id}/participants/{test_user_3.id}", headers=headers_user_1)
        assert removed.status_code == status.HTTP_204_NO_CONTENT

        await client.post(f"/messages/{room_id}", json={"content": "after"}, headers=headers_user_1)
        await manager.drain()

        contents = [f["message"]["content"] for f in carol_socket.frames("message.created")]
        assert contents == ["before"]
        assert len(carol_socket.frames("participant.removed")) == 1

        history = await client.get(f"/messages/{room_id}", headers=headers_user_3)
        assert history.status_code == status.HTTP_403_FORBIDDEN

    @pytest.mark.asyncio
    async def test_health_endpoints(self, client: AsyncClient):
        live = await client.get("/health/live")
        assert live.status_code == status.HTTP_200_OK
        assert live.json()["status"] == "alive"

        root = await client.get("/")
        assert root.json()["status"] == "running"
