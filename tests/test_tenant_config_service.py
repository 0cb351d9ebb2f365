import pytest
import pytest_asyncio

from modgate.database.db_connection import ConnectionManager
from modgate.datatypes.tenant_config import TenantConfig, get_policy_id
from modgate.moderation.moderation_errors import ValidationError
from modgate.settings.repositories import TenantConfigRepository, TenantConfigRow
from modgate.settings.tenant_config_service import TenantConfigService


@pytest_asyncio.fixture
async def db():
    manager = ConnectionManager()
    await manager.open(":memory:")
    yield manager
    await manager.close()


@pytest.mark.asyncio
async def test_repository_round_trip(db):
    repo = TenantConfigRepository()
    row = TenantConfigRow(tenant_id="g1", tenant_name="Guild", policy_preset="strict", enabled=False, log_channel="42")

    async with db.transaction() as conn:
        await repo.upsert(conn, row)

    async with db.read() as conn:
        fetched = await repo.get(conn, "g1")
        everything = await repo.get_all(conn)

    assert fetched == row
    assert list(everything) == ["g1"]


@pytest.mark.asyncio
async def test_repository_delete_reports_removal(db):
    repo = TenantConfigRepository()
    async with db.transaction() as conn:
        await repo.upsert(conn, TenantConfigRow("g1", "", "balanced", True, None))

    async with db.transaction() as conn:
        assert await repo.delete(conn, "g1") is True
        assert await repo.delete(conn, "g1") is False


@pytest.mark.asyncio
async def test_failed_transaction_rolls_back(db):
    repo = TenantConfigRepository()
    with pytest.raises(RuntimeError):
        async with db.transaction() as conn:
            await repo.upsert(conn, TenantConfigRow("g1", "", "balanced", True, None))
            raise RuntimeError("abort")

    async with db.read() as conn:
        assert await repo.get(conn, "g1") is None


@pytest.mark.asyncio
async def test_create_then_get_through_cache(db):
    service = TenantConfigService(db)
    await service.create(TenantConfig("g1", policy_preset="permissive", log_channel="99"))

    config = await service.get("g1")

    assert config.policy_id == "discord-permissive"
    assert config.log_channel == "99"
    assert service.cache.get_cache_stats()["size"] == 1


@pytest.mark.asyncio
async def test_update_invalidates_cached_value(db):
    service = TenantConfigService(db)
    await service.create(TenantConfig("g1"))
    assert (await service.get("g1")).enabled is True

    updated = await service.update("g1", enabled=False, policy_preset="strict")

    assert updated.enabled is False
    cached = await service.get("g1")
    assert cached.enabled is False
    assert cached.policy_id == "discord-strict"


@pytest.mark.asyncio
async def test_update_missing_tenant_returns_none(db):
    assert await TenantConfigService(db).update("ghost", enabled=False) is None


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(db):
    service = TenantConfigService(db)
    await service.create(TenantConfig("g1"))
    with pytest.raises(ValidationError):
        await service.update("g1", tenant_id="g2")


@pytest.mark.asyncio
async def test_create_rejects_unknown_preset(db):
    with pytest.raises(ValidationError):
        await TenantConfigService(db).create(TenantConfig("g1", policy_preset="lenient"))


@pytest.mark.asyncio
async def test_delete_invalidates_cached_value(db):
    service = TenantConfigService(db)
    await service.create(TenantConfig("g1"))
    await service.get("g1")

    assert await service.delete("g1") is True
    assert await service.get("g1") is None
    assert await service.delete("g1") is False


@pytest.mark.asyncio
async def test_list_all(db):
    service = TenantConfigService(db)
    await service.create(TenantConfig("a"))
    await service.create(TenantConfig("b", enabled=False))

    configs = await service.list_all()

    assert sorted(configs) == ["a", "b"]
    assert configs["b"].enabled is False


def test_unknown_preset_falls_back_to_balanced():
    assert get_policy_id("strict") == "discord-strict"
    assert get_policy_id("whatever") == "discord-balanced"


@pytest.mark.asyncio
async def test_connection_requires_open():
    manager = ConnectionManager()
    assert manager.is_open is False
    with pytest.raises(RuntimeError):
        manager.connection
