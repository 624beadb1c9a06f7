import json
import os
import stat

import pytest

from auth.token_store import FileTokenStore, MemoryTokenStore, StoredTokens


@pytest.mark.asyncio
async def test_memory_store_save_load() -> None:
    store = MemoryTokenStore()
    payload = StoredTokens("access", "refresh", 1234, "account.person")

    await store.save(payload)

    assert await store.load() == payload


@pytest.mark.asyncio
async def test_memory_store_load_missing() -> None:
    assert await MemoryTokenStore().load() is None


@pytest.mark.asyncio
async def test_memory_store_clear() -> None:
    store = MemoryTokenStore()
    await store.save(StoredTokens("access", "refresh", 1234))

    await store.clear()

    assert await store.load() is None


@pytest.mark.asyncio
async def test_file_store_save_load(tmp_path) -> None:
    store = FileTokenStore(tmp_path / "tokens.json")
    payload = StoredTokens("access", "refresh", 1234, "account.person")

    await store.save(payload)

    assert await store.load() == payload


@pytest.mark.asyncio
async def test_file_store_without_scope(tmp_path) -> None:
    store = FileTokenStore(tmp_path / "tokens.json")
    payload = StoredTokens("access", "refresh", 1234)

    await store.save(payload)

    assert await store.load() == payload


@pytest.mark.asyncio
async def test_file_store_persists(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    payload = StoredTokens("access", "refresh", 1234, "account.person")

    await FileTokenStore(path).save(payload)

    assert await FileTokenStore(path).load() == payload


@pytest.mark.asyncio
async def test_file_store_uses_camel_case_keys(tmp_path) -> None:
    path = tmp_path / "tokens.json"

    await FileTokenStore(path).save(StoredTokens("access", "refresh", 1234, "account.person"))

    assert json.loads(path.read_text(encoding="utf-8")) == {
        "accessToken": "access",
        "refreshToken": "refresh",
        "expiresAt": 1234,
        "scope": "account.person",
    }


@pytest.mark.asyncio
async def test_file_store_overwrites_whole_record(tmp_path) -> None:
    store = FileTokenStore(tmp_path / "tokens.json")
    await store.save(StoredTokens("access-1", "refresh-1", 1000, "account.person"))

    await store.save(StoredTokens("access-2", "refresh-2", 2000))

    assert await store.load() == StoredTokens("access-2", "refresh-2", 2000)


@pytest.mark.asyncio
async def test_file_store_clear(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    store = FileTokenStore(path)
    await store.save(StoredTokens("access", "refresh", 1234))

    await store.clear()

    assert await store.load() is None
    assert not path.exists()


@pytest.mark.asyncio
async def test_file_store_clear_missing_file(tmp_path) -> None:
    store = FileTokenStore(tmp_path / "missing.json")

    await store.clear()

    assert await store.load() is None


@pytest.mark.asyncio
async def test_file_store_creates_parent_dirs(tmp_path) -> None:
    path = tmp_path / "nested" / "dir" / "tokens.json"

    await FileTokenStore(path).save(StoredTokens("access", "refresh", 1234))

    assert path.exists()


@pytest.mark.asyncio
async def test_file_store_leaves_no_temp_files(tmp_path) -> None:
    store = FileTokenStore(tmp_path / "tokens.json")

    await store.save(StoredTokens("access", "refresh", 1234))

    assert [entry.name for entry in tmp_path.iterdir()] == ["tokens.json"]


@pytest.mark.skipif(os.name != "posix", reason="POSIX file modes only")
@pytest.mark.asyncio
async def test_file_store_owner_only_permissions(tmp_path) -> None:
    path = tmp_path / "tokens.json"

    await FileTokenStore(path).save(StoredTokens("access", "refresh", 1234))

    assert stat.S_IMODE(path.stat().st_mode) == 0o600


@pytest.mark.asyncio
async def test_file_store_rejects_non_object(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(RuntimeError, match="expected top-level JSON object"):
        await FileTokenStore(path).load()


@pytest.mark.asyncio
async def test_file_store_rejects_missing_refresh_token(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    path.write_text(json.dumps({"accessToken": "a", "expiresAt": 1}), encoding="utf-8")

    with pytest.raises(RuntimeError, match="refreshToken"):
        await FileTokenStore(path).load()
