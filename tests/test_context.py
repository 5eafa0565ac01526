import pytest

from signal_client.auth import StaticIdentityProvider, TokenIdentityProvider
from signal_client.context import ClientContext
from signal_client.core.errors import NotAuthenticatedError, StoreClosedError
from signal_client.core.settings import Settings
from signal_client.storage.blobs import HttpBlobStore, MemoryBlobStore
from signal_client.store import MemoryDocumentStore, Query, build_store
from signal_client.store.sql import SqlDocumentStore


def test_effective_database_url_prefers_test_database() -> None:
    config = Settings(
        DATABASE_URL="sqlite:///./prod.db",
        TEST_DATABASE_URL="sqlite://",
        USE_TEST_DATABASE=True,
    )

    assert config.effective_database_url == "sqlite://"
    assert Settings(DATABASE_URL="sqlite:///./prod.db").effective_database_url == "sqlite:///./prod.db"


@pytest.mark.asyncio
async def test_build_store_selects_backend() -> None:
    assert isinstance(build_store(Settings()), MemoryDocumentStore)

    sql = build_store(Settings(SIGNAL_STORE_BACKEND="sql", DATABASE_URL="sqlite://"))
    assert isinstance(sql, SqlDocumentStore)
    await sql.close()


@pytest.mark.asyncio
async def test_from_settings_wires_configured_backends() -> None:
    context = ClientContext.from_settings(
        Settings(
            SIGNAL_BLOB_BASE_URL="https://blobs.test",
            SIGNAL_AUTH_TOKEN_SECRET="secret",
        )
    )

    assert isinstance(context.blobs, HttpBlobStore)
    assert isinstance(context.identity, TokenIdentityProvider)
    await context.close()

    plain = ClientContext.from_settings(Settings())
    assert isinstance(plain.blobs, MemoryBlobStore)
    assert isinstance(plain.identity, StaticIdentityProvider)
    await plain.close()


@pytest.mark.asyncio
async def test_signed_out_context_has_no_viewer(anonymous) -> None:
    assert anonymous.viewer is None
    assert anonymous.viewer_id is None
    with pytest.raises(NotAuthenticatedError):
        anonymous.require_viewer()


@pytest.mark.asyncio
async def test_context_manager_closes_everything(test_settings) -> None:
    async with ClientContext(settings=test_settings) as context:
        subscription = await context.subscribe(Query("posts"), lambda changes: None)
        assert subscription.active

    assert subscription.cancelled
    with pytest.raises(StoreClosedError):
        await context.store.get("posts", "p1")


def test_settings_only_expose_client_options() -> None:
    assert "app_name" not in Settings.model_fields
    assert "app_version" not in Settings.model_fields
    assert Settings().store_backend == "memory"
