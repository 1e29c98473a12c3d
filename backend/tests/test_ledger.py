"""Tests for the metadata ledger."""
import uuid

import pytest

from conftest import make_record
from mediavault.errors import NotFoundError, StorageError, ValidationError


class TestCreateAndGet:
    @pytest.mark.asyncio
    async def test_create_then_get(self, ledger):
        record = await ledger.create(make_record("1-1-a.mp4"))
        fetched = await ledger.get(record.id)
        assert fetched.stored_name == "1-1-a.mp4"
        assert fetched.status == "approved"
        assert fetched.source == "upload"

    @pytest.mark.asyncio
    async def test_get_missing(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.get(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_duplicate_stored_name_is_refused(self, ledger):
        await ledger.create(make_record("1-1-a.mp4"))
        with pytest.raises(StorageError, match="already indexed"):
            await ledger.create(make_record("1-1-a.mp4"))

    @pytest.mark.asyncio
    async def test_find_by_id_or_stored_name(self, ledger):
        record = await ledger.create(make_record("1-1-a.mp4"))
        assert (await ledger.find(str(record.id))).id == record.id
        assert (await ledger.find("1-1-a.mp4")).id == record.id
        assert await ledger.find("nope.mp4") is None
        assert await ledger.find(str(uuid.uuid4())) is None


class TestList:
    @pytest.mark.asyncio
    async def test_newest_first(self, ledger):
        await ledger.create(make_record("old.mp4", minutes=0))
        await ledger.create(make_record("new.mp4", minutes=5))
        await ledger.create(make_record("mid.mp4", minutes=2))
        names = [r.stored_name for r in await ledger.list()]
        assert names == ["new.mp4", "mid.mp4", "old.mp4"]

    @pytest.mark.asyncio
    async def test_ties_are_broken_by_name(self, ledger):
        for name in ("c.mp4", "a.mp4", "b.mp4"):
            await ledger.create(make_record(name, minutes=1))
        first = [r.stored_name for r in await ledger.list()]
        second = [r.stored_name for r in await ledger.list()]
        assert first == second == ["a.mp4", "b.mp4", "c.mp4"]

    @pytest.mark.asyncio
    async def test_limit_and_offset(self, ledger):
        for i in range(5):
            await ledger.create(make_record(f"{i}.mp4", minutes=i))
        page = await ledger.list(limit=2, offset=1)
        assert [r.stored_name for r in page] == ["3.mp4", "2.mp4"]


class TestDeleteAndTotals:
    @pytest.mark.asyncio
    async def test_delete(self, ledger):
        record = await ledger.create(make_record("a.mp4"))
        await ledger.delete(record)
        assert await ledger.find("a.mp4") is None

    @pytest.mark.asyncio
    async def test_total_size(self, ledger):
        assert await ledger.total_size() == 0
        await ledger.create(make_record("a.mp4", size=100))
        await ledger.create(make_record("b.mp4", size=250))
        assert await ledger.total_size() == 350


class TestStatus:
    @pytest.mark.asyncio
    async def test_pending_to_approved(self, ledger):
        record = await ledger.create(make_record("a.mp4", status="pending"))
        updated = await ledger.set_status(record, "approved")
        assert updated.status == "approved"

    @pytest.mark.asyncio
    async def test_unknown_status(self, ledger):
        record = await ledger.create(make_record("a.mp4"))
        with pytest.raises(ValidationError, match="Unknown status"):
            await ledger.set_status(record, "rejected")
