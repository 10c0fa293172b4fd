"""
Tests for MessageRepository: payload rules, ordering, paging and read receipts.
"""

import pytest
from bson import ObjectId
from pymongo.errors import ServerSelectionTimeoutError

from socialchat.core.errors import StorageError, ValidationError
from socialchat.repositories.message_repository import MessageRepository


class TestAppend:

    async def test_text_message_is_stored_with_sender_in_read_by(self, message_repo, conversation, users):
        msg = await message_repo.append(conversation["_id"], users["alice"], "text", content="hi")

        assert msg["kind"] == "text"
        assert msg["content"] == "hi"
        assert msg["media_ref"] is None
        assert msg["read_by"] == [users["alice"]]
        stored = await message_repo.find_by_id(msg["_id"])
        assert stored["sender_id"] == users["alice"]

    async def test_kind_defaults_to_text_without_media(self, message_repo, conversation, users):
        msg = await message_repo.append(conversation["_id"], users["alice"], content="  hello  ")

        assert msg["kind"] == "text"
        assert msg["content"] == "hello"

    async def test_image_message_keeps_media_reference(self, message_repo, conversation, users):
        msg = await message_repo.append(conversation["_id"], users["bob"], "image", media_ref="abc.png")

        assert msg["kind"] == "image"
        assert msg["media_ref"] == "abc.png"
        assert msg["content"] is None

    @pytest.mark.parametrize("content", [None, "", "   "])
    async def test_text_without_content_is_rejected(self, message_repo, conversation, users, content):
        with pytest.raises(ValidationError):
            await message_repo.append(conversation["_id"], users["alice"], "text", content=content)

    @pytest.mark.parametrize("kind", ["image", "video"])
    async def test_media_kind_without_reference_is_rejected(self, message_repo, conversation, users, kind):
        with pytest.raises(ValidationError):
            await message_repo.append(conversation["_id"], users["alice"], kind)

    async def test_text_with_media_reference_is_rejected(self, message_repo, conversation, users):
        with pytest.raises(ValidationError, match="media_ref"):
            await message_repo.append(conversation["_id"], users["alice"], "text", content="hi", media_ref="x.png")

    async def test_image_with_content_is_rejected(self, message_repo, conversation, users):
        with pytest.raises(ValidationError, match="content"):
            await message_repo.append(conversation["_id"], users["alice"], "image", content="hi", media_ref="x.png")

    async def test_unknown_kind_is_rejected(self, message_repo, conversation, users):
        with pytest.raises(ValidationError):
            await message_repo.append(conversation["_id"], users["alice"], "audio", media_ref="x.mp3")

    async def test_rejected_payload_stores_nothing(self, message_repo, conversation, users):
        with pytest.raises(ValidationError):
            await message_repo.append(conversation["_id"], users["alice"], "image")

        assert await message_repo.collection.count_documents({}) == 0

    async def test_driver_errors_surface_as_storage_error(self, conversation, users):
        class BrokenCollection:
            async def insert_one(self, doc):
                raise ServerSelectionTimeoutError("no primary")

        repo = MessageRepository({"messages": BrokenCollection()})

        with pytest.raises(StorageError):
            await repo.append(conversation["_id"], users["alice"], "text", content="hi")


class TestListByConversation:

    async def test_returns_newest_first(self, message_repo, conversation, users):
        ids = []
        for i in range(3):
            msg = await message_repo.append(conversation["_id"], users["alice"], content=f"m{i}")
            ids.append(msg["_id"])

        items, _ = await message_repo.list_by_conversation(conversation["_id"])

        assert [m["_id"] for m in items] == list(reversed(ids))

    async def test_caps_at_limit_and_pages_with_cursor(self, message_repo, conversation, users):
        ids = []
        for i in range(5):
            msg = await message_repo.append(conversation["_id"], users["alice"], content=f"m{i}")
            ids.append(msg["_id"])

        first, cursor = await message_repo.list_by_conversation(conversation["_id"], limit=3)
        second, last_cursor = await message_repo.list_by_conversation(conversation["_id"], limit=3, cursor=cursor)

        assert [m["_id"] for m in first] == [ids[4], ids[3], ids[2]]
        assert [m["_id"] for m in second] == [ids[1], ids[0]]
        assert cursor is not None
        assert last_cursor is None

    async def test_scoped_to_conversation(self, message_repo, conversation_repo, conversation, users):
        other = await conversation_repo.create([users["alice"], users["carol"]])
        await message_repo.append(conversation["_id"], users["alice"], content="for bob")
        await message_repo.append(other["_id"], users["alice"], content="for carol")

        items, _ = await message_repo.list_by_conversation(other["_id"])

        assert [m["content"] for m in items] == ["for carol"]

    async def test_malformed_cursor_is_rejected(self, message_repo, conversation):
        with pytest.raises(ValidationError):
            await message_repo.list_by_conversation(conversation["_id"], cursor="yesterday")


class TestMarkReadByOthers:

    async def test_adds_reader_to_messages_from_others_only(self, message_repo, conversation, users):
        from_alice = await message_repo.append(conversation["_id"], users["alice"], content="hi")
        from_bob = await message_repo.append(conversation["_id"], users["bob"], content="hey")

        modified = await message_repo.mark_read_by_others(conversation["_id"], users["bob"])

        assert modified == 1
        assert (await message_repo.find_by_id(from_alice["_id"]))["read_by"] == [users["alice"], users["bob"]]
        assert (await message_repo.find_by_id(from_bob["_id"]))["read_by"] == [users["bob"]]

    async def test_is_idempotent(self, message_repo, conversation, users):
        for text in ("one", "two"):
            await message_repo.append(conversation["_id"], users["alice"], content=text)

        await message_repo.mark_read_by_others(conversation["_id"], users["bob"])
        once, _ = await message_repo.list_by_conversation(conversation["_id"])
        second_pass = await message_repo.mark_read_by_others(conversation["_id"], users["bob"])
        twice, _ = await message_repo.list_by_conversation(conversation["_id"])

        assert second_pass == 0
        assert [m["read_by"] for m in once] == [m["read_by"] for m in twice]

    async def test_count_unread_for_ignores_own_and_read_messages(self, message_repo, conversation, users):
        await message_repo.append(conversation["_id"], users["alice"], content="one")
        await message_repo.append(conversation["_id"], users["alice"], content="two")
        await message_repo.append(conversation["_id"], users["bob"], content="mine")

        assert await message_repo.count_unread_for(conversation["_id"], users["bob"]) == 2
        await message_repo.mark_read_by_others(conversation["_id"], users["bob"])
        assert await message_repo.count_unread_for(conversation["_id"], users["bob"]) == 0


class TestLatestMessage:

    async def test_none_for_empty_conversation(self, message_repo, conversation):
        assert await message_repo.latest_message_id(conversation["_id"]) is None

    async def test_returns_newest(self, message_repo, conversation, users):
        await message_repo.append(conversation["_id"], users["alice"], content="old")
        newest = await message_repo.append(conversation["_id"], users["bob"], content="new")

        assert await message_repo.latest_message_id(conversation["_id"]) == newest["_id"]

    async def test_find_many_skips_unknown_ids(self, message_repo, conversation, users):
        msg = await message_repo.append(conversation["_id"], users["alice"], content="x")

        found = await message_repo.find_many([msg["_id"], str(ObjectId()), "garbage"])

        assert list(found) == [msg["_id"]]
