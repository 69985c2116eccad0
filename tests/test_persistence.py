import pytest

from module.persistence.sqlite import ACCOUNTS_KEY, SQLitePersistence
from utils.crypto import TokenCipher, TokenDecryptError


@pytest.fixture
def store():
    s = SQLitePersistence(":memory:")
    yield s
    s.close()


def test_kv_set_get_delete(store):
    store.set("k", {"a": 1})
    store.set("k", {"a": 2})
    assert store.get("k") == {"a": 2}

    store.delete("k")
    assert store.get("k", "missing") == "missing"


def test_accounts_live_under_fixed_key(store):
    store.save_accounts([{"account_id": "CR100"}])

    assert store.get(ACCOUNTS_KEY) == [{"account_id": "CR100"}]
    assert store.load_accounts() == [{"account_id": "CR100"}]


def test_load_accounts_tolerates_garbage(store):
    assert store.load_accounts() == []
    store.set(ACCOUNTS_KEY, {"not": "a list"})
    assert store.load_accounts() == []


def test_file_store_creates_parent_dir(tmp_path):
    path = tmp_path / "nested" / "accounts.db"
    s = SQLitePersistence(str(path))
    s.save_accounts([{"account_id": "CR1"}])
    s.close()

    reopened = SQLitePersistence(str(path))
    assert reopened.load_accounts() == [{"account_id": "CR1"}]
    reopened.close()


# ------------------------- TokenCipher ------------------------- #


def test_cipher_round_trip_is_not_plaintext():
    cipher = TokenCipher(TokenCipher.generate_key())

    stored = cipher.encrypt("a1-secret-token")

    assert "a1-secret-token" not in stored
    assert cipher.decrypt(stored) == "a1-secret-token"


def test_cipher_rejects_tampering_and_wrong_key():
    cipher = TokenCipher(TokenCipher.generate_key())
    stored = cipher.encrypt("a1-secret-token")

    with pytest.raises(TokenDecryptError):
        TokenCipher(TokenCipher.generate_key()).decrypt(stored)

    tampered = stored[:-4] + ("AAAA" if not stored.endswith("AAAA") else "BBBB")
    with pytest.raises(TokenDecryptError):
        cipher.decrypt(tampered)


def test_cipher_reads_key_from_env(monkeypatch):
    key = TokenCipher.generate_key()
    monkeypatch.setenv("COPY_MASTER_KEY", key)

    assert TokenCipher().decrypt(TokenCipher(key).encrypt("x")) == "x"


def test_cipher_without_key(monkeypatch):
    monkeypatch.delenv("COPY_MASTER_KEY", raising=False)
    with pytest.raises(ValueError):
        TokenCipher().encrypt("x")
