"""Tests for the MongoDB record store with motor collections mocked out."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from common.database.mongodb import MongoRecordStore, NotFoundError, StoreError, prepare_row


def make_store(collections: dict[str, Any]) -> MongoRecordStore:
    store = MongoRecordStore("mongodb://localhost:27017", "cms_test")
    store._database = collections
    return store


def cursor(rows: list[dict[str, Any]]) -> MagicMock:
    result = MagicMock()
    result.to_list = AsyncMock(return_value=rows)
    return result


class TestPrepareRow:
    def test_device_defaults(self) -> None:
        row = prepare_row("devices", {"owner_id": "u1", "unique_code": "ABCD1234", "device_name": "TV"})

        assert row["status"] == "pending"
        assert row["device_id"]
        assert isinstance(row["created_at"], datetime)

    def test_explicit_values_win(self) -> None:
        row = prepare_row("devices", {"device_id": "d1", "status": "active"})

        assert row["device_id"] == "d1"
        assert row["status"] == "active"

    def test_none_values_are_dropped(self) -> None:
        row = prepare_row("playlists", {"device_id": "d1", "content_id": "c1", "order": None})

        assert "order" not in row

    def test_users_keep_identity_id(self) -> None:
        assert prepare_row("users", {"id": "kc-1"})["id"] == "kc-1"

    def test_unknown_table(self) -> None:
        with pytest.raises(StoreError):
            prepare_row("widgets", {})


class TestMongoRecordStore:
    def test_requires_connection(self) -> None:
        store = MongoRecordStore("mongodb://localhost:27017", "cms_test")

        with pytest.raises(RuntimeError):
            store.database

    @pytest.mark.asyncio
    async def test_insert_returns_row_without_object_id(self) -> None:
        devices = MagicMock()
        devices.insert_one = AsyncMock()
        store = make_store({"devices": devices})

        row = await store.insert("devices", {"owner_id": "u1", "unique_code": "ABCD1234", "device_name": "TV"})

        assert "_id" not in row
        assert row["status"] == "pending"
        devices.insert_one.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_duplicate_code(self) -> None:
        devices = MagicMock()
        devices.insert_one = AsyncMock(side_effect=DuplicateKeyError("E11000 duplicate key"))
        store = make_store({"devices": devices})

        with pytest.raises(StoreError, match="unique constraint"):
            await store.insert("devices", {"owner_id": "u1", "unique_code": "ABCD1234"})

    @pytest.mark.asyncio
    async def test_select_filters(self) -> None:
        content = MagicMock()
        content.find = MagicMock(return_value=cursor([{"content_id": "c1", "owner_id": "u1"}]))
        store = make_store({"content": content})

        rows = await store.select("content", owner_id="u1")

        assert rows == [{"content_id": "c1", "owner_id": "u1"}]
        content.find.assert_called_once_with({"owner_id": "u1"}, {"_id": False})

    @pytest.mark.asyncio
    async def test_select_one_not_found(self) -> None:
        users = MagicMock()
        users.find_one = AsyncMock(return_value=None)
        store = make_store({"users": users})

        with pytest.raises(NotFoundError):
            await store.select_one("users", id="nobody")

    @pytest.mark.asyncio
    async def test_update_returns_updated_rows(self) -> None:
        devices = MagicMock()
        devices.distinct = AsyncMock(return_value=["d1"])
        devices.update_many = AsyncMock()
        devices.find = MagicMock(return_value=cursor([{"device_id": "d1", "status": "active"}]))
        store = make_store({"devices": devices})

        rows = await store.update("devices", {"status": "active"}, device_id="d1", status="pending")

        assert rows == [{"device_id": "d1", "status": "active"}]
        devices.update_many.assert_awaited_once_with(
            {"device_id": {"$in": ["d1"]}}, {"$set": {"status": "active"}}
        )

    @pytest.mark.asyncio
    async def test_update_without_match(self) -> None:
        devices = MagicMock()
        devices.distinct = AsyncMock(return_value=[])
        devices.update_many = AsyncMock()
        store = make_store({"devices": devices})

        assert await store.update("devices", {"status": "active"}, device_id="missing") == []
        devices.update_many.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_driver_errors_become_store_errors(self) -> None:
        content = MagicMock()
        content.find = MagicMock(side_effect=ServerSelectionTimeoutError("no primary"))
        store = make_store({"content": content})

        with pytest.raises(StoreError, match="no primary"):
            await store.select("content", owner_id="u1")
