from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from shirtforge.services.admin_config import (
    AdminAuthError,
    AdminConfigClient,
    AdminConfigStore,
    default_admin_config,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_load_merges_saved_file_over_defaults(tmp_path):
    path = tmp_path / "adminConfig.json"
    path.write_text(json.dumps({"imageSource": "stock", "featuredProducts": ["p1"]}), encoding="utf-8")
    store = AdminConfigStore(path=path, password="secret")

    config = store.load()

    assert config["imageSource"] == "stock"
    assert config["blueprintId"] == 6
    assert store.featured_product_ids() == ["p1"]


def test_unreadable_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "adminConfig.json"
    path.write_text("{not json", encoding="utf-8")
    store = AdminConfigStore(path=path, password="secret")

    assert store.load() == default_admin_config()


def test_wrong_password_leaves_config_untouched(tmp_path):
    store = AdminConfigStore(path=tmp_path / "adminConfig.json", password="secret")
    store.load()
    before = store.get()

    with pytest.raises(AdminAuthError, match="Invalid admin password"):
        store.update(password="wrong", partial={"shirtPrice": 1})

    assert store.get() == before
    assert not (tmp_path / "adminConfig.json").exists()


def test_update_is_a_shallow_merge_and_persists(tmp_path):
    path = tmp_path / "adminConfig.json"
    store = AdminConfigStore(path=path, password="secret")
    store.load()

    config, persisted = store.update(password="secret", partial={"shirtPrice": 2999, "customFlag": True})

    assert persisted is True
    assert config["shirtPrice"] == 2999
    assert config["customFlag"] is True
    assert config["blueprintId"] == 6
    assert json.loads(path.read_text(encoding="utf-8"))["shirtPrice"] == 2999


def test_failed_save_keeps_update_in_memory(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    store = AdminConfigStore(path=blocker / "adminConfig.json", password="secret")

    config, persisted = store.update(password="secret", partial={"debugMode": True})

    assert persisted is False
    assert config["debugMode"] is True
    assert store.get()["debugMode"] is True


def test_public_view_hides_featured_ids(tmp_path):
    store = AdminConfigStore(path=tmp_path / "adminConfig.json", password="secret")
    store.update(password="secret", partial={"featuredProducts": ["p1", "p2"]})

    assert "featuredProducts" not in store.public_view()
    assert store.featured_product_ids() == ["p1", "p2"]


def test_get_returns_a_copy(tmp_path):
    store = AdminConfigStore(path=tmp_path / "adminConfig.json", password="secret")
    config = store.get()
    config["customPromptSuggestions"].append("mutated")

    assert store.get()["customPromptSuggestions"] == []


def test_client_caches_for_five_minutes():
    clock = FakeClock()
    calls = {"count": 0}

    async def fetch():
        calls["count"] += 1
        return {"imageSource": "stock"}

    client = AdminConfigClient(fetch=fetch, clock=clock)

    assert asyncio.run(client.get())["imageSource"] == "stock"
    clock.now = 299
    asyncio.run(client.get())
    assert calls["count"] == 1
    clock.now = 301
    asyncio.run(client.get())
    assert calls["count"] == 2


def test_client_serves_stale_value_when_rate_limited():
    clock = FakeClock()
    responses = iter([{"imageSource": "huggingface", "blueprintId": 12}])

    async def fetch():
        try:
            return next(responses)
        except StopIteration:
            request = httpx.Request("GET", "http://localhost/api/admin/config")
            raise httpx.HTTPStatusError(
                "Too Many Requests",
                request=request,
                response=httpx.Response(429, request=request),
            ) from None

    client = AdminConfigClient(fetch=fetch, clock=clock)
    asyncio.run(client.get())
    clock.now = 400

    config = asyncio.run(client.get())

    assert config["imageSource"] == "huggingface"
    assert config["blueprintId"] == 12


def test_client_falls_back_to_defaults_without_cache():
    async def fetch():
        raise httpx.ConnectError("refused")

    config = asyncio.run(AdminConfigClient(fetch=fetch).get())

    assert config["blueprintId"] == 6
    assert config["printProviderId"] == 103
