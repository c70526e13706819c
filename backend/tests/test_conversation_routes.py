"""
PawMatch Backend — Conversation API Tests
===========================================

What:  End-to-end HTTP tests through the real app (middleware, exception
       handlers, routers) against a per-test SQLite database.

What we test:
    ✅ Start-or-attach: 201 when the opening message is created, 200 after
    ✅ Device → user takeover: a signed-in reply claims the device chat
    ✅ Shelter inbox: filters, user names, unread counts, 404 for others
    ✅ Replies, read markers, afterId polling, cascade delete
    ✅ Error mapping: 400 / 401 / 404 / 429 and X-Request-ID
"""

import uuid

import pytest

from pawmatch.config import settings

DEVICE = {"X-Device-Key": "dev-123"}


async def start(client, headers, animal_id, **body):
    return await client.post(
        "/api/conversations",
        json={"animalId": str(animal_id), **body},
        headers=headers,
    )


class TestStartConversation:
    @pytest.mark.asyncio
    async def test_device_start_then_attach(self, client, seed):
        first = await start(client, DEVICE, seed.a1)

        assert first.status_code == 201
        data = first.json()
        conversation = data["conversation"]
        assert conversation["animalId"] == str(seed.a1)
        assert conversation["name"] == "Bello"
        assert conversation["avatar"] == "/img/bello.jpg"
        assert conversation["shelterId"] == str(seed.s1)
        assert conversation["userId"] is None
        assert conversation["autoMessageSent"] is True
        assert conversation["lastMessage"] == data["openingMessage"]["text"]
        assert data["openingMessage"]["fromKind"] == "shelter"
        assert data["openingMessage"]["authorDisplayName"] == "Dierenasiel Utrecht"

        second = await start(client, DEVICE, seed.a1)

        assert second.status_code == 200
        assert second.json()["conversation"]["id"] == conversation["id"]
        assert second.json()["conversation"]["matchedAt"] == conversation["matchedAt"]
        assert second.json()["openingMessage"] is None

    @pytest.mark.asyncio
    async def test_auto_message_false(self, client, seed):
        response = await start(client, DEVICE, seed.a1, autoMessage=False)

        assert response.status_code == 200
        assert response.json()["conversation"]["autoMessageSent"] is False
        assert response.json()["openingMessage"] is None

    @pytest.mark.asyncio
    async def test_auto_message_custom_text(self, client, seed):
        response = await start(client, DEVICE, seed.a1, autoMessage="Welkom, Bello wacht op je!")

        assert response.status_code == 201
        assert response.json()["openingMessage"]["text"] == "Welkom, Bello wacht op je!"

    @pytest.mark.asyncio
    async def test_auto_message_off_by_setting(self, client, seed, monkeypatch):
        monkeypatch.setattr(settings, "auto_message_on_start", False)
        response = await start(client, DEVICE, seed.a1)
        assert response.status_code == 200
        assert response.json()["openingMessage"] is None

    @pytest.mark.asyncio
    async def test_animal_without_shelter(self, client, seed):
        response = await start(client, DEVICE, seed.a2)

        assert response.status_code == 200
        assert response.json()["conversation"]["shelterId"] is None
        assert response.json()["conversation"]["autoMessageSent"] is False

    @pytest.mark.asyncio
    async def test_missing_animal_id(self, client, seed):
        response = await client.post("/api/conversations", json={}, headers=DEVICE)

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert response.json()["message"] == "animalId required"

    @pytest.mark.asyncio
    async def test_malformed_animal_id(self, client, seed):
        response = await client.post("/api/conversations", json={"animalId": "bello"}, headers=DEVICE)
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid animalId"

    @pytest.mark.asyncio
    async def test_animal_id_of_wrong_type(self, client, seed):
        response = await client.post(
            "/api/conversations", json={"animalId": 123}, headers={**DEVICE, "X-Request-ID": "req-7"}
        )

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "validation_error"
        assert data["request_id"] == "req-7"
        assert data["details"]["fields"][0]["field"] == "body.animalId"

    @pytest.mark.asyncio
    async def test_unknown_animal(self, client, seed):
        response = await start(client, DEVICE, uuid.uuid4())
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_no_credentials(self, client, seed):
        response = await start(client, {}, seed.a1)

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_shelter_starts_for_user(self, client, seed, auth):
        response = await start(client, auth.shelter_headers(seed.s1), seed.a1, userId=str(seed.u2))

        assert response.status_code == 201
        assert response.json()["conversation"]["userId"] == str(seed.u2)

        own = await client.get("/api/conversations", headers=auth.user_headers(seed.u2, name="Daan"))
        assert [c["id"] for c in own.json()] == [response.json()["conversation"]["id"]]

    @pytest.mark.asyncio
    async def test_shelter_start_requires_user_id(self, client, seed, auth):
        response = await start(client, auth.shelter_headers(seed.s1), seed.a1)
        assert response.status_code == 400
        assert response.json()["message"] == "userId required"

    @pytest.mark.asyncio
    async def test_shelter_cannot_start_for_other_shelters_animal(self, client, seed, auth):
        response = await start(client, auth.shelter_headers(seed.s1), seed.a3, userId=str(seed.u1))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_shelter_start_for_unknown_user(self, client, seed, auth):
        response = await start(client, auth.shelter_headers(seed.s1), seed.a1, userId=str(uuid.uuid4()))
        assert response.status_code == 404


class TestParticipantConversations:
    @pytest.mark.asyncio
    async def test_device_chat_is_taken_over_on_sign_in(self, client, seed, auth):
        started = await start(client, DEVICE, seed.a1)
        assert started.status_code == 201
        conversation_id = started.json()["conversation"]["id"]

        reply = await client.post(
            f"/api/conversations/{seed.a1}/messages",
            json={"text": "Is Bello nog beschikbaar?"},
            headers=auth.user_headers(seed.u1, device_key="dev-123"),
        )

        assert reply.status_code == 201
        assert reply.json()["conversationId"] == conversation_id
        assert reply.json()["fromKind"] == "user"
        assert reply.json()["fromId"] == str(seed.u1)
        assert reply.json()["toKind"] == "shelter"
        assert reply.json()["authorDisplayName"] == "Sanne"

        history = await client.get(
            f"/api/conversations/{seed.a1}/messages", headers=auth.user_headers(seed.u1)
        )
        assert history.status_code == 200
        assert history.json()["conversationId"] == conversation_id
        messages = history.json()["messages"]
        assert [m["fromKind"] for m in messages] == ["shelter", "user"]
        assert messages[1]["text"] == "Is Bello nog beschikbaar?"

        inbox = await client.get(
            "/api/shelter/conversations",
            params={"animalId": str(seed.a1)},
            headers=auth.shelter_headers(seed.s1),
        )
        assert inbox.status_code == 200
        assert len(inbox.json()) == 1
        assert inbox.json()[0]["id"] == conversation_id
        assert inbox.json()[0]["userId"] == str(seed.u1)
        assert inbox.json()[0]["userName"] == "Sanne"
        assert inbox.json()[0]["unreadCount"] == 1

    @pytest.mark.asyncio
    async def test_reply_creates_conversation(self, client, seed):
        reply = await client.post(
            f"/api/conversations/{seed.a3}/messages", json={"text": "Hoi Minoes"}, headers=DEVICE
        )
        assert reply.status_code == 201

        listed = await client.get("/api/conversations", headers=DEVICE)
        assert len(listed.json()) == 1
        assert listed.json()[0]["name"] == "Minoes"
        assert listed.json()[0]["lastMessage"] == "Hoi Minoes"
        assert listed.json()[0]["autoMessageSent"] is False

    @pytest.mark.asyncio
    async def test_empty_reply_creates_nothing(self, client, seed):
        reply = await client.post(
            f"/api/conversations/{seed.a1}/messages", json={"text": "   "}, headers=DEVICE
        )

        assert reply.status_code == 400
        assert reply.json()["message"] == "text required"
        assert reply.json()["details"] == {"field": "text"}

        listed = await client.get("/api/conversations", headers=DEVICE)
        assert listed.json() == []

    @pytest.mark.asyncio
    async def test_reply_text_of_wrong_type(self, client, seed):
        reply = await client.post(f"/api/conversations/{seed.a1}/messages", json={"text": 5}, headers=DEVICE)

        assert reply.status_code == 400
        assert reply.json()["error"] == "validation_error"
        assert "request_id" in reply.json()
        assert "detail" not in reply.json()

        listed = await client.get("/api/conversations", headers=DEVICE)
        assert listed.json() == []

    @pytest.mark.asyncio
    async def test_history_of_unknown_conversation(self, client, seed):
        response = await client.get(f"/api/conversations/{seed.a1}/messages", headers=DEVICE)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_after_id(self, client, seed):
        await start(client, DEVICE, seed.a1)
        reply = await client.post(
            f"/api/conversations/{seed.a1}/messages", json={"text": "Hallo"}, headers=DEVICE
        )

        full = await client.get(f"/api/conversations/{seed.a1}/messages", headers=DEVICE)
        opening_id = full.json()["messages"][0]["id"]

        newer = await client.get(
            f"/api/conversations/{seed.a1}/messages",
            params={"afterId": opening_id},
            headers=DEVICE,
        )
        assert [m["id"] for m in newer.json()["messages"]] == [reply.json()["id"]]

    @pytest.mark.asyncio
    async def test_list_is_per_device(self, client, seed):
        await start(client, DEVICE, seed.a1)
        await start(client, {"X-Device-Key": "dev-456"}, seed.a3)

        listed = await client.get("/api/conversations", headers=DEVICE)
        assert [c["animalId"] for c in listed.json()] == [str(seed.a1)]

    @pytest.mark.asyncio
    async def test_unread_and_mark_read(self, client, seed):
        await start(client, DEVICE, seed.a1)

        listed = await client.get("/api/conversations", headers=DEVICE)
        assert listed.json()[0]["unreadCount"] == 1

        marked = await client.post(f"/api/conversations/{seed.a1}/read", headers=DEVICE)
        assert marked.status_code == 200
        assert marked.json() == {"updated": 1}

        listed = await client.get("/api/conversations", headers=DEVICE)
        assert listed.json()[0]["unreadCount"] == 0

    @pytest.mark.asyncio
    async def test_delete(self, client, seed):
        await start(client, DEVICE, seed.a1)

        deleted = await client.delete(f"/api/conversations/{seed.a1}", headers=DEVICE)
        assert deleted.status_code == 204

        history = await client.get(f"/api/conversations/{seed.a1}/messages", headers=DEVICE)
        assert history.status_code == 404
        assert (await client.get("/api/conversations", headers=DEVICE)).json() == []

        again = await client.delete(f"/api/conversations/{seed.a1}", headers=DEVICE)
        assert again.status_code == 404

    @pytest.mark.asyncio
    async def test_shelter_cannot_use_participant_routes(self, client, seed, auth):
        response = await client.get("/api/conversations", headers=auth.shelter_headers(seed.s1))
        assert response.status_code == 401


class TestShelterConversations:
    async def _started(self, client, seed, **body):
        response = await start(client, DEVICE, seed.a1, **body)
        return response.json()["conversation"]["id"]

    @pytest.mark.asyncio
    async def test_inbox_is_scoped_to_shelter(self, client, seed, auth):
        await self._started(client, seed)
        await start(client, DEVICE, seed.a3)

        s1 = await client.get("/api/shelter/conversations", headers=auth.shelter_headers(seed.s1))
        s2 = await client.get("/api/shelter/conversations", headers=auth.shelter_headers(seed.s2))

        assert [c["animalId"] for c in s1.json()] == [str(seed.a1)]
        assert [c["animalId"] for c in s2.json()] == [str(seed.a3)]

    @pytest.mark.asyncio
    async def test_inbox_requires_shelter(self, client, seed):
        response = await client.get("/api/shelter/conversations", headers=DEVICE)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_filter(self, client, seed, auth):
        response = await client.get(
            "/api/shelter/conversations",
            params={"userId": "sanne"},
            headers=auth.shelter_headers(seed.s1),
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_other_shelter_gets_404(self, client, seed, auth):
        conversation_id = await self._started(client, seed)

        history = await client.get(
            f"/api/shelter/conversations/{conversation_id}/messages",
            headers=auth.shelter_headers(seed.s2),
        )
        reply = await client.post(
            f"/api/shelter/conversations/{conversation_id}/messages",
            json={"text": "Hallo"},
            headers=auth.shelter_headers(seed.s2),
        )

        assert history.status_code == 404
        assert reply.status_code == 404

    @pytest.mark.asyncio
    async def test_malformed_conversation_id(self, client, seed, auth):
        response = await client.get(
            "/api/shelter/conversations/abc/messages", headers=auth.shelter_headers(seed.s1)
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_reply_as_animal_and_read_markers(self, client, seed, auth):
        started = await start(client, auth.user_headers(seed.u1), seed.a1)
        conversation_id = started.json()["conversation"]["id"]
        shelter = auth.shelter_headers(seed.s1)

        reply = await client.post(
            f"/api/shelter/conversations/{conversation_id}/messages",
            json={"text": "Woef! Kom je langs?", "senderKind": "animal"},
            headers=shelter,
        )
        assert reply.status_code == 201
        assert reply.json()["fromKind"] == "animal"
        assert reply.json()["fromId"] == str(seed.a1)
        assert reply.json()["toKind"] == "user"
        assert reply.json()["toId"] == str(seed.u1)
        assert reply.json()["authorDisplayName"] == "Bello"
        assert reply.json()["authorAvatar"] == "/img/bello.jpg"

        user = auth.user_headers(seed.u1)
        listed = await client.get("/api/conversations", headers=user)
        assert listed.json()[0]["unreadCount"] == 2

        await client.post(
            f"/api/conversations/{seed.a1}/messages", json={"text": "Ja, zaterdag!"}, headers=user
        )
        inbox = await client.get("/api/shelter/conversations", headers=shelter)
        assert inbox.json()[0]["unreadCount"] == 1
        assert inbox.json()[0]["lastMessage"] == "Ja, zaterdag!"

        marked = await client.post(f"/api/shelter/conversations/{conversation_id}/read", headers=shelter)
        assert marked.json() == {"updated": 1}
        inbox = await client.get("/api/shelter/conversations", headers=shelter)
        assert inbox.json()[0]["unreadCount"] == 0
        # Shelter read markers leave the adopter's unread count alone
        listed = await client.get("/api/conversations", headers=user)
        assert listed.json()[0]["unreadCount"] == 2

    @pytest.mark.asyncio
    async def test_reply_as_shelter(self, client, seed, auth):
        conversation_id = await self._started(client, seed)
        reply = await client.post(
            f"/api/shelter/conversations/{conversation_id}/messages",
            json={"text": "Welkom!"},
            headers=auth.shelter_headers(seed.s1),
        )
        assert reply.status_code == 201
        assert reply.json()["fromKind"] == "shelter"
        assert reply.json()["authorDisplayName"] == "Dierenasiel Utrecht"

    @pytest.mark.asyncio
    async def test_empty_shelter_reply(self, client, seed, auth):
        conversation_id = await self._started(client, seed)
        reply = await client.post(
            f"/api/shelter/conversations/{conversation_id}/messages",
            json={"text": ""},
            headers=auth.shelter_headers(seed.s1),
        )
        assert reply.status_code == 400

    @pytest.mark.asyncio
    async def test_opening_message_endpoint(self, client, seed, auth):
        conversation_id = await self._started(client, seed, autoMessage=False)
        shelter = auth.shelter_headers(seed.s1)

        first = await client.post(f"/api/shelter/conversations/{conversation_id}/opening-message", headers=shelter)
        assert first.status_code == 200
        assert first.json()["sent"] is True
        assert first.json()["message"]["fromKind"] == "shelter"

        second = await client.post(
            f"/api/shelter/conversations/{conversation_id}/opening-message",
            json={"text": "Nog een keer"},
            headers=shelter,
        )
        assert second.json() == {"sent": False, "message": None}

        history = await client.get(f"/api/shelter/conversations/{conversation_id}/messages", headers=shelter)
        assert len(history.json()["messages"]) == 1

    @pytest.mark.asyncio
    async def test_opening_message_with_text(self, client, seed, auth):
        conversation_id = await self._started(client, seed, autoMessage=False)
        response = await client.post(
            f"/api/shelter/conversations/{conversation_id}/opening-message",
            json={"text": "Welkom bij Dierenasiel Utrecht"},
            headers=auth.shelter_headers(seed.s1),
        )
        assert response.json()["message"]["text"] == "Welkom bij Dierenasiel Utrecht"

    @pytest.mark.asyncio
    async def test_delete(self, client, seed, auth):
        conversation_id = await self._started(client, seed)
        shelter = auth.shelter_headers(seed.s1)

        deleted = await client.delete(f"/api/shelter/conversations/{conversation_id}", headers=shelter)
        assert deleted.status_code == 204

        history = await client.get(f"/api/shelter/conversations/{conversation_id}/messages", headers=shelter)
        assert history.status_code == 404
        assert (await client.get("/api/conversations", headers=DEVICE)).json() == []

    @pytest.mark.asyncio
    async def test_trusted_shelter_header(self, client, seed, legacy_headers):
        await self._started(client, seed)
        response = await client.get("/api/shelter/conversations", headers={"X-Shelter-Id": str(seed.s1)})
        assert response.status_code == 200
        assert len(response.json()) == 1

    @pytest.mark.asyncio
    async def test_untrusted_shelter_header(self, client, seed):
        response = await client.get("/api/shelter/conversations", headers={"X-Shelter-Id": str(seed.s1)})
        assert response.status_code == 401


class TestPlatform:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["version"] == "1.0.0"

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client, seed):
        response = await client.get(
            f"/api/conversations/{seed.a1}/messages",
            headers={**DEVICE, "X-Request-ID": "req-42"},
        )
        assert response.status_code == 404
        assert response.headers["X-Request-ID"] == "req-42"
        assert response.json()["request_id"] == "req-42"

    @pytest.mark.asyncio
    async def test_request_id_is_generated(self, client, seed):
        response = await client.get("/api/conversations", headers=DEVICE)
        assert len(response.headers["X-Request-ID"]) == 8

    @pytest.mark.asyncio
    @pytest.mark.parametrize("client_id", ["x" * 65, "id with spaces", "a/b"])
    async def test_unsafe_request_id_is_replaced(self, client, seed, client_id):
        response = await client.get("/api/conversations", headers={**DEVICE, "X-Request-ID": client_id})
        assert response.headers["X-Request-ID"] != client_id
        assert len(response.headers["X-Request-ID"]) == 8

    @pytest.mark.asyncio
    async def test_rate_limit(self, client, seed, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_requests", 10)

        for _ in range(10):
            assert (await client.get("/api/conversations", headers=DEVICE)).status_code == 200
        limited = await client.get("/api/conversations", headers=DEVICE)

        assert limited.status_code == 429
        assert limited.json()["error"] == "rate_limit_exceeded"
        assert int(limited.headers["Retry-After"]) >= 1

        # A fresh device key from the same address shares the window
        rotated = await client.get("/api/conversations", headers={"X-Device-Key": "dev-456"})
        assert rotated.status_code == 429

    @pytest.mark.asyncio
    async def test_rate_limit_ignores_rotating_credentials(self, client, seed, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_requests", 10)

        statuses = []
        for i in range(12):
            headers = {"X-Device-Key": f"dev-{i}"} if i % 2 else {"Authorization": f"Bearer junk-{i}"}
            statuses.append((await client.get("/api/conversations", headers=headers)).status_code)

        assert 429 not in statuses[:10]
        assert statuses[10:] == [429, 429]
