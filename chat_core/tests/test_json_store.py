import asyncio
import json
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from chat_core.domain.conversation import MessageRecord
from chat_core.domain.exceptions import BusinessError, PersistenceError
from chat_core.infrastructure.storage.json_store import LocalConversationStore


def _message(conv_id, mid, role, content, position):
    return MessageRecord(
        id=mid,
        conversation_id=conv_id,
        role=role,
        content=content,
        position=position,
        created_at=datetime.now(timezone.utc),
    )


def test_json_store_round_trip():
    with tempfile.TemporaryDirectory() as d:
        store = LocalConversationStore(root=Path(d) / ".storage", key="smart-shelf:chats")

        async def scenario():
            conv = await store.create_conversation("What is Smart Shelf?")
            await store.add_message(conv.id, _message(conv.id, "m1", "user", "What is Smart Shelf?", 0))
            await store.add_message(conv.id, _message(conv.id, "m2", "assistant", "A library app.", 1))
            return conv, await store.list_messages(conv.id)

        conv, msgs = asyncio.run(scenario())

        assert [(m.role, m.content) for m in msgs] == [
            ("user", "What is Smart Shelf?"),
            ("assistant", "A library app."),
        ]
        assert store.path.name == "smart-shelf_chats.json"
        data = json.loads(store.path.read_text(encoding="utf-8"))
        assert data[0]["id"] == conv.id
        assert data[0]["created_at"].endswith("Z")
        assert [m["id"] for m in data[0]["messages"]] == ["m1", "m2"]


def test_json_store_list_newest_first_and_limit():
    with tempfile.TemporaryDirectory() as d:
        store = LocalConversationStore(root=d, key="k")

        async def scenario():
            first = await store.create_conversation("first")
            second = await store.create_conversation("second")
            # 追加消息会刷新 updated_at，使其排到最前
            await store.add_message(first.id, _message(first.id, "m1", "user", "hi", 0))
            return first, second, await store.list_conversations(), await store.list_conversations(limit=1)

        first, second, convs, limited = asyncio.run(scenario())

        assert [c.id for c in convs] == [first.id, second.id]
        assert [c.id for c in limited] == [first.id]
        assert convs[0].storage_mode == "local"


def test_json_store_update_title():
    with tempfile.TemporaryDirectory() as d:
        store = LocalConversationStore(root=d, key="k")

        async def scenario():
            conv = await store.create_conversation("New Chat")
            await store.update_title(conv.id, "Renamed")
            return await store.list_conversations()

        convs = asyncio.run(scenario())
        assert convs[0].title == "Renamed"


def test_json_store_delete_conversation():
    with tempfile.TemporaryDirectory() as d:
        store = LocalConversationStore(root=d, key="k")

        async def scenario():
            keep = await store.create_conversation("keep")
            drop = await store.create_conversation("drop")
            await store.delete_conversation(drop.id)
            return keep, drop, await store.list_conversations()

        keep, drop, convs = asyncio.run(scenario())
        assert [c.id for c in convs] == [keep.id]

        with pytest.raises(BusinessError) as ei:
            asyncio.run(store.delete_conversation(drop.id))
        assert ei.value.code == "CONVERSATION_NOT_FOUND"


def test_json_store_delete_all():
    with tempfile.TemporaryDirectory() as d:
        store = LocalConversationStore(root=d, key="k")

        async def scenario():
            await store.create_conversation("a")
            await store.create_conversation("b")
            await store.delete_all()
            return await store.list_conversations()

        assert asyncio.run(scenario()) == []


def test_json_store_missing_file_reads_empty():
    with tempfile.TemporaryDirectory() as d:
        store = LocalConversationStore(root=d, key="k")
        assert asyncio.run(store.list_conversations()) == []


def test_json_store_corrupt_file():
    with tempfile.TemporaryDirectory() as d:
        store = LocalConversationStore(root=d, key="k")
        store.path.write_text("{not json", encoding="utf-8")
        with pytest.raises(PersistenceError) as ei:
            asyncio.run(store.list_conversations())
        assert ei.value.code == "STORE_READ_ERROR"
