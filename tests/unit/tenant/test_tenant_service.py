"""Tests for tenants and the cascading delete."""

import asyncio

import pytest

from threadkeeper.core.modules.counter.models import ChildKind
from threadkeeper.core.modules.worker.models import CreationTask
from threadkeeper.errors import NotFoundError, ValidationError


class TestTenantCrud:
    @pytest.mark.asyncio
    async def test_create_assigns_unique_tokens(self, core):
        first = await core.services.tenant.create_tenant("  Acme  ")
        second = await core.services.tenant.create_tenant("Acme")

        assert first.display_name == "Acme"
        assert first.token != second.token
        assert first.thread_count == 0
        assert (await core.services.tenant.get_tenant_by_token(first.token)).id == first.id

    @pytest.mark.asyncio
    async def test_blank_name_is_rejected(self, core):
        with pytest.raises(ValidationError):
            await core.services.tenant.create_tenant("   ")

    @pytest.mark.asyncio
    async def test_unknown_token(self, core):
        with pytest.raises(NotFoundError):
            await core.services.tenant.get_tenant_by_token("nope")

    @pytest.mark.asyncio
    async def test_rename(self, core, tenant):
        renamed = await core.services.tenant.rename_tenant(tenant.id, "Acme Helpdesk")
        assert renamed.display_name == "Acme Helpdesk"
        assert renamed.token == tenant.token

        with pytest.raises(ValidationError):
            await core.services.tenant.rename_tenant(tenant.id, "")

    @pytest.mark.asyncio
    async def test_list_is_paginated(self, core):
        for name in ("one", "two", "three"):
            await core.services.tenant.create_tenant(name)

        page = await core.services.tenant.list_tenants(limit=2, offset=0)
        assert page.total == 3
        assert len(page.items) == 2


class TestCascadeDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_everything_under_the_tenant(self, core, database, tenant, thread):
        survivor = await core.services.tenant.create_tenant("Survivor")
        await core.services.thread.create_thread(survivor.id)
        for body in ("one", "two"):
            await core.services.entry.create_entry(thread.id, body)
        await core.services.worker.drain()
        # A replayed number ends up dead-lettered under the thread
        await core.services.worker.submit(CreationTask(kind=ChildKind.ENTRY, parent_id=thread.id, number=1, payload={"body": "one"}))
        await core.services.worker.drain()
        assert len(await core.services.worker.list_dead_tasks(parent_id=thread.id)) == 1

        await core.services.tenant.delete_tenant(tenant.id)

        with pytest.raises(NotFoundError):
            await core.services.tenant.get_tenant(tenant.id)
        owned = [tenant.id, thread.id]
        assert await database["threads"].count_documents({"tenant_id": tenant.id}) == 0
        assert await database["entries"].count_documents({"thread_id": thread.id}) == 0
        assert await database["entry_index"].count_documents({"thread_id": thread.id}) == 0
        assert await database["counters"].count_documents({"parent_id": {"$in": owned}}) == 0
        assert await database["dead_tasks"].count_documents({"parent_id": {"$in": owned}}) == 0

        assert await database["threads"].count_documents({"tenant_id": survivor.id}) == 1
        assert await core.services.counter.get_high_water_mark(survivor.id, ChildKind.THREAD) == 1

    @pytest.mark.asyncio
    async def test_delete_unknown_tenant(self, core, tenant):
        await core.services.tenant.delete_tenant(tenant.id)
        with pytest.raises(NotFoundError):
            await core.services.tenant.delete_tenant(tenant.id)

    @pytest.mark.asyncio
    async def test_thread_written_during_delete_removes_itself(self, core, database, tenant, monkeypatch):
        threads = database["threads"]
        real_insert = threads.insert_one

        async def insert_then_lose_parent(document):
            result = await real_insert(document)
            await database["tenants"].delete_one({"_id": tenant.id})
            return result

        monkeypatch.setattr(threads, "insert_one", insert_then_lose_parent)
        with pytest.raises(NotFoundError):
            await core.services.thread.insert_thread(tenant.id, 1)

        assert await threads.count_documents({"tenant_id": tenant.id}) == 0

    @pytest.mark.asyncio
    async def test_creation_after_delete_dead_letters(self, core, database, tenant, monkeypatch):
        worker = core.services.worker
        real_execute = worker.execute
        gate = asyncio.Event()

        async def gated_execute(*args):
            await gate.wait()
            return await real_execute(*args)

        monkeypatch.setattr(worker, "execute", gated_execute)
        number = await core.services.thread.create_thread(tenant.id)
        await core.services.tenant.delete_tenant(tenant.id)
        gate.set()
        await worker.drain()

        assert await database["threads"].count_documents({"tenant_id": tenant.id}) == 0
        dead = await core.services.worker.list_dead_tasks(parent_id=tenant.id)
        assert [task.number for task in dead] == [number]
