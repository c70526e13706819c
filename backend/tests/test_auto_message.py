"""
PawMatch Backend — Opening Message Tests
==========================================

What we test:
    ✅ Default text: random intro line + blank line + suffix
    ✅ Sent at most once per conversation, attributed to the shelter
    ✅ Shelter fallback: stored reference, shelter caller, animal's shelter
    ✅ A stale in-memory flag loses the compare-and-set
"""

from unittest.mock import patch

import pytest
from sqlalchemy.orm.attributes import set_committed_value

from pawmatch.services.auto_message import AutoMessageTrigger
from pawmatch.services.conversation_store import ConversationStore
from pawmatch.services.identity import DeviceIdentity, ShelterIdentity
from pawmatch.services.message_ledger import MessageLedger


class TestBuildDefaultText:
    def test_intro_and_suffix(self):
        trigger = AutoMessageTrigger(intro_lines=["Hoi!", "Hallo daar!"], suffix="Wil je kennismaken?")
        with patch("pawmatch.services.auto_message.random.choice", return_value="Hallo daar!") as choice:
            text = trigger.build_default_text()

        assert text == "Hallo daar!\n\nWil je kennismaken?"
        choice.assert_called_once_with(["Hoi!", "Hallo daar!"])

    def test_random_line_comes_from_pool(self):
        pool = ["Hoi!", "Hallo daar!", "Goedemiddag!"]
        trigger = AutoMessageTrigger(intro_lines=pool, suffix="Groetjes")
        for _ in range(20):
            intro, suffix = trigger.build_default_text().split("\n\n")
            assert intro in pool
            assert suffix == "Groetjes"

    def test_blank_lines_are_skipped(self):
        trigger = AutoMessageTrigger(intro_lines=["", "   ", " Hoi! "], suffix="")
        assert trigger.build_default_text() == "Hoi!"

    def test_empty_pool_falls_back_to_suffix(self):
        assert AutoMessageTrigger(intro_lines=[], suffix="Groetjes").build_default_text() == "Groetjes"

    def test_nothing_configured(self):
        assert AutoMessageTrigger(intro_lines=[], suffix="  ").build_default_text() is None

    def test_defaults_from_settings(self):
        text = AutoMessageTrigger().build_default_text()
        assert text
        assert "\n\n" in text


class TestEnsureOpeningMessage:
    def setup_method(self):
        self.store = ConversationStore()
        self.ledger = MessageLedger(store=self.store)
        self.trigger = AutoMessageTrigger(
            ledger=self.ledger,
            intro_lines=["Hoi, ik ben blij dat je me leuk vindt!"],
            suffix="Groetjes van het asiel",
        )

    @pytest.mark.asyncio
    async def test_sends_once(self, db, seed):
        conversation, _ = await self.store.upsert(db, DeviceIdentity("dev-123"), seed.a1)

        message = await self.trigger.ensure_opening_message(db, conversation)

        assert message is not None
        assert message.text == "Hoi, ik ben blij dat je me leuk vindt!\n\nGroetjes van het asiel"
        assert message.from_kind == "shelter"
        assert message.from_id == seed.s1
        assert message.to_kind == "user"
        assert message.author_display_name == "Dierenasiel Utrecht"
        assert conversation.auto_message_sent is True
        assert conversation.last_message == message.text

        assert await self.trigger.ensure_opening_message(db, conversation) is None
        assert len(await self.ledger.list_by_conversation(db, conversation.id)) == 1

    @pytest.mark.asyncio
    async def test_override_text(self, db, seed):
        conversation, _ = await self.store.upsert(db, DeviceIdentity("dev-123"), seed.a1)

        message = await self.trigger.ensure_opening_message(db, conversation, override_text="  Welkom bij Bello!  ")

        assert message.text == "Welkom bij Bello!"

    @pytest.mark.asyncio
    async def test_blank_override_uses_default_text(self, db, seed):
        conversation, _ = await self.store.upsert(db, DeviceIdentity("dev-123"), seed.a1)
        message = await self.trigger.ensure_opening_message(db, conversation, override_text="   ")
        assert message.text.startswith("Hoi, ik ben blij")

    @pytest.mark.asyncio
    async def test_no_text_available(self, db, seed):
        trigger = AutoMessageTrigger(ledger=self.ledger, intro_lines=[], suffix="")
        conversation, _ = await self.store.upsert(db, DeviceIdentity("dev-123"), seed.a1)

        assert await trigger.ensure_opening_message(db, conversation) is None
        assert conversation.auto_message_sent is False

    @pytest.mark.asyncio
    async def test_no_shelter_skips(self, db, seed):
        conversation, _ = await self.store.upsert(db, DeviceIdentity("dev-123"), seed.a2)

        assert await self.trigger.ensure_opening_message(db, conversation) is None
        assert conversation.auto_message_sent is False
        assert await self.ledger.list_by_conversation(db, conversation.id) == []

    @pytest.mark.asyncio
    async def test_shelter_caller_is_attributed(self, db, seed):
        conversation, _ = await self.store.upsert(db, DeviceIdentity("dev-123"), seed.a2)

        message = await self.trigger.ensure_opening_message(db, conversation, identity=ShelterIdentity(seed.s2))

        assert message.from_id == seed.s2
        assert message.author_display_name == "Asiel Noord"
        assert conversation.shelter_id == seed.s2

    @pytest.mark.asyncio
    async def test_stale_flag_loses_compare_and_set(self, session_factory, seed):
        async with session_factory() as first:
            stale, _ = await self.store.upsert(first, DeviceIdentity("dev-123"), seed.a1)
            stale_id = stale.id
            await first.commit()

        async with session_factory() as second:
            conversation, _ = await self.store.upsert(second, DeviceIdentity("dev-123"), seed.a1)
            assert await self.trigger.ensure_opening_message(second, conversation) is not None
            await second.commit()

        async with session_factory() as third:
            conversation, _ = await self.store.upsert(third, DeviceIdentity("dev-123"), seed.a1)
            assert conversation.id == stale_id
            # What a concurrent request read before the other one committed
            set_committed_value(conversation, "auto_message_sent", False)

            assert await self.trigger.ensure_opening_message(third, conversation) is None
            assert conversation.auto_message_sent is True
            assert len(await self.ledger.list_by_conversation(third, stale_id)) == 1
