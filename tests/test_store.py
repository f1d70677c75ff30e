"""Tests for the object store read and write paths."""

from __future__ import annotations

import hashlib

import pytest

from mediumroast.connectors.memory import MemoryConnector
from mediumroast.entities import COMPANIES, STUDIES, USERS
from mediumroast.errors import BackendError
from mediumroast.store import EntitySpec, ObjectStore


async def _names(connector, container):
    return [r["name"] for r in (await connector.read_collection(container)).records]


class _BrokenConnector(MemoryConnector):
    async def read_collection(self, container, *, fresh=False):
        raise BackendError("read_collection", "repository unavailable", status_code=503)


class _ExplodingConnector(MemoryConnector):
    async def read_collection(self, container, *, fresh=False):
        raise OSError("disk on fire")


class TestReads:
    @pytest.mark.asyncio
    async def test_get_all(self, studies):
        result = await studies.get_all()
        assert result.success
        assert [r["name"] for r in result.payload] == ["Study 1", "Study 2"]

    @pytest.mark.asyncio
    async def test_get_all_failure_message(self, config):
        store = ObjectStore(STUDIES, _BrokenConnector(config), config)
        result = await store.get_all()
        assert not result.success
        assert result.status_code == 503
        assert result.message["status_msg"].startswith("Failed to retrieve Studies: ")

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_backend_error(self, config):
        store = ObjectStore(STUDIES, _ExplodingConnector(config), config)
        result = await store.find_by_name("Study 1")
        assert not result.success
        assert result.status_code == 500
        assert isinstance(result.error, BackendError)

    @pytest.mark.asyncio
    async def test_find_by_x_scenario(self, studies):
        result = await studies.find_by_x("status", "active")
        assert result.success
        assert len(result.payload) == 1
        assert result.payload[0]["name"] == "Study 1"

        assert (await studies.find_by_x("", "value")).status_code == 400
        assert (await studies.find_by_name("Nonexistent")).status_code == 404

    @pytest.mark.asyncio
    async def test_search(self, studies):
        result = await studies.search({"status": "inactive"}, {"sort": "name"})
        assert [r["name"] for r in result.payload] == ["Study 2"]

    @pytest.mark.asyncio
    async def test_reads_return_copies(self, studies, connector):
        result = await studies.get_all()
        result.payload[0]["name"] = "mutated"
        assert await _names(connector, "Studies") == ["Study 1", "Study 2"]

    @pytest.mark.asyncio
    async def test_reads_ignore_locks(self, studies, connector):
        await connector.acquire_container_lock("Studies", "someone", 30000)
        assert (await studies.get_all()).success

    @pytest.mark.asyncio
    async def test_check_for_lock(self, studies, connector):
        result = await studies.check_for_lock()
        assert result.success and result.payload is False
        await connector.acquire_container_lock("Studies", "someone", 30000)
        result = await studies.check_for_lock()
        assert result.payload is True
        assert "is locked" in result.message["status_msg"]

    def test_link(self, studies):
        links = studies.link([{"name": "Study 1"}, {"name": "Study 2"}])
        assert links["Study 1"] == hashlib.sha256(b"Study 1").hexdigest()
        assert set(links) == {"Study 1", "Study 2"}


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_single(self, studies, connector):
        result = await studies.create({"name": "Study 3", "status": "active"})
        assert result.success
        assert result.message["status_msg"] == "Created [1] Studies"
        assert await _names(connector, "Studies") == ["Study 1", "Study 2", "Study 3"]
        assert not await connector.check_lock("Studies")

    @pytest.mark.asyncio
    async def test_create_many(self, studies, connector):
        result = await studies.create([{"name": "Study 3"}, {"name": "Study 4"}])
        assert result.success
        assert len(await _names(connector, "Studies")) == 4

    @pytest.mark.asyncio
    async def test_create_into_empty_container(self, config):
        connector = MemoryConnector(config)
        store = ObjectStore(STUDIES, connector, config)
        assert (await store.create({"name": "First"})).success
        assert await _names(connector, "Studies") == ["First"]

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, studies, connector):
        result = await studies.create({"name": "Study 1"})
        assert result.status_code == 400
        assert await _names(connector, "Studies") == ["Study 1", "Study 2"]
        assert not await connector.check_lock("Studies")

    @pytest.mark.asyncio
    async def test_record_without_name_rejected(self, studies):
        result = await studies.create({"status": "active"})
        assert result.status_code == 400

    @pytest.mark.asyncio
    async def test_create_while_locked(self, studies, connector):
        await connector.acquire_container_lock("Studies", "someone", 30000)
        result = await studies.create({"name": "Study 3"})
        assert result.status_code == 423
        assert await _names(connector, "Studies") == ["Study 1", "Study 2"]


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_whitelisted_field(self, studies, connector):
        result = await studies.update("Study 1", {"status": "archived"})
        assert result.success
        record = (await connector.read_collection("Studies")).records[0]
        assert record["status"] == "archived"
        assert "modification_date" in record

    @pytest.mark.asyncio
    async def test_update_forbidden_field(self, studies, connector):
        result = await studies.update("Study 1", {"owner": "mallory"})
        assert result.status_code == 403
        assert "owner" in result.message["status_msg"]
        assert "owner" not in (await connector.read_collection("Studies")).records[0]

    @pytest.mark.asyncio
    async def test_system_update_bypasses_whitelist(self, studies, connector):
        result = await studies.update("Study 1", {"owner": "ops"}, system=True)
        assert result.success
        assert (await connector.read_collection("Studies")).records[0]["owner"] == "ops"

    @pytest.mark.asyncio
    async def test_update_missing_record_does_not_lock(self, config):
        class _Recording(MemoryConnector):
            acquired = 0

            async def acquire_container_lock(self, container, owner_id, lease_ms):
                type(self).acquired += 1
                return await super().acquire_container_lock(container, owner_id, lease_ms)

        connector = _Recording(config, collections={"Studies": [{"name": "Study 1"}]})
        store = ObjectStore(STUDIES, connector, config)
        result = await store.update("Nope", {"status": "x"})
        assert result.status_code == 404
        assert _Recording.acquired == 0

    @pytest.mark.asyncio
    async def test_update_requires_patch(self, studies):
        assert (await studies.update("Study 1", {})).status_code == 400


class TestBatchUpdate:
    @pytest.mark.asyncio
    async def test_applies_all(self, studies, connector):
        result = await studies.batch_update(
            [
                {"name": "Study 1", "key": "status", "value": "closed"},
                {"name": "Study 2", "key": "description", "value": "New"},
            ]
        )
        assert result.success
        assert result.message["status_msg"] == "Updated [2] objects in [Studies]"
        records = (await connector.read_collection("Studies")).records
        assert records[0]["status"] == "closed"
        assert records[1]["description"] == "New"

    @pytest.mark.asyncio
    async def test_missing_name_writes_nothing(self, studies, connector):
        before = (await connector.read_collection("Studies")).records
        result = await studies.batch_update(
            [
                {"name": "Study 1", "key": "status", "value": "closed"},
                {"name": "Ghost", "key": "status", "value": "closed"},
            ]
        )
        assert result.status_code == 404
        assert (await connector.read_collection("Studies")).records == before

    @pytest.mark.asyncio
    async def test_forbidden_key(self, studies):
        result = await studies.batch_update(
            [{"name": "Study 1", "key": "linked_companies", "value": {}}]
        )
        assert result.status_code == 403


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete(self, studies, connector):
        result = await studies.delete("Study 2")
        assert result.success
        assert await _names(connector, "Studies") == ["Study 1"]

    @pytest.mark.asyncio
    async def test_delete_missing(self, studies):
        result = await studies.delete("Ghost")
        assert result.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_study_cascades(self, clients, connector):
        result = await clients.studies.delete("Study 1")
        assert result.success
        companies = (await connector.read_collection("Companies")).records
        interactions = (await connector.read_collection("Interactions")).records
        assert companies[0]["linked_studies"] == {}
        assert "modification_date" in companies[0]
        assert "modification_date" not in companies[1]
        assert interactions[0]["linked_studies"] == {}
        for container in ("Studies", "Companies", "Interactions"):
            assert not await connector.check_lock(container)

    @pytest.mark.asyncio
    async def test_delete_company_cascades_list_links(self, config):
        connector = MemoryConnector(
            config,
            collections={
                "Companies": [{"name": "Acme"}],
                "Interactions": [{"name": "i1", "linked_companies": ["Acme", "Globex"]}],
            },
        )
        store = ObjectStore(COMPANIES, connector, config)
        assert (await store.delete("Acme")).success
        interactions = (await connector.read_collection("Interactions")).records
        assert interactions[0]["linked_companies"] == ["Globex"]

    @pytest.mark.asyncio
    async def test_delete_blocked_by_linked_container_lock(self, clients, connector):
        await connector.acquire_container_lock("Interactions", "someone", 30000)
        result = await clients.studies.delete("Study 1")
        assert result.status_code == 423
        assert await _names(connector, "Studies") == ["Study 1", "Study 2"]
        assert not await connector.check_lock("Studies")
        assert not await connector.check_lock("Companies")


class TestAddLink:
    @pytest.mark.asyncio
    async def test_links_both_sides(self, studies, connector):
        result = await studies.add_link("Study 2", "Interactions", "Globex call")
        assert result.success
        study = (await connector.read_collection("Studies")).records[1]
        interaction = (await connector.read_collection("Interactions")).records[1]
        assert "Globex call" in study["linked_interactions"]
        assert "Study 2" in interaction["linked_studies"]
        assert study["modification_date"] == interaction["modification_date"]
        for container in ("Studies", "Interactions"):
            assert not await connector.check_lock(container)

    @pytest.mark.asyncio
    async def test_list_links_are_appended_once(self, config):
        connector = MemoryConnector(
            config,
            collections={
                "Studies": [{"name": "s1", "linked_companies": ["Acme"]}],
                "Companies": [{"name": "Globex"}],
            },
        )
        store = ObjectStore(STUDIES, connector, config)
        assert (await store.add_link("s1", "Companies", "Globex")).success
        assert (await store.add_link("s1", "Companies", "Globex")).success
        study = (await connector.read_collection("Studies")).records[0]
        assert study["linked_companies"] == ["Acme", "Globex"]

    @pytest.mark.asyncio
    async def test_missing_target_writes_nothing(self, studies, connector):
        before = (await connector.read_collection("Studies")).records
        result = await studies.add_link("Study 1", "Companies", "Initech")
        assert result.status_code == 404
        assert "Companies with name [Initech] not found" in result.status_msg
        assert (await connector.read_collection("Studies")).records == before
        assert not await connector.check_lock("Companies")

    @pytest.mark.asyncio
    async def test_cannot_link_to_self(self, studies):
        result = await studies.add_link("Study 1", "Studies", "Study 2")
        assert result.status_code == 400


class TestReadOnly:
    @pytest.mark.asyncio
    async def test_writes_rejected(self, clients):
        users = clients.users
        assert (await users.create({"name": "x"})).status_code == 405
        assert (await users.update("x", {"a": 1})).status_code == 405
        assert (await users.delete("x")).status_code == 405
        assert (await users.check_for_lock()).status_code == 405

    @pytest.mark.asyncio
    async def test_get_all_passes_payload_through(self, clients):
        result = await clients.actions.get_all()
        assert result.payload == {
            "total_count": 1,
            "workflow_runs": [{"name": "basic-reporting", "id": 7}],
        }

    @pytest.mark.asyncio
    async def test_find_by_x_over_fetched_list(self, clients):
        result = await clients.users.find_by_x("login", "hubot")
        assert result.payload == [{"login": "hubot", "role_name": "write"}]

    @pytest.mark.asyncio
    async def test_missing_metric(self, config):
        store = ObjectStore(USERS, MemoryConnector(config), config)
        result = await store.get_all()
        assert result.status_code == 404
        assert result.message["status_msg"].startswith("Failed to retrieve Users")

    @pytest.mark.asyncio
    async def test_find_by_text_without_text_fields(self, studies):
        assert (await studies.find_by_text("edge")).status_code == 400

    def test_custom_spec(self, connector):
        spec = EntitySpec(container="Notes", updatable_fields=frozenset({"body"}))
        store = ObjectStore(spec, connector)
        assert store.container == "Notes"
        assert store.config is connector.config
