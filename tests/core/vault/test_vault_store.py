"""
Tests for encrypted on-disk persistence.
"""

import json
import os
import stat
from datetime import datetime, timedelta, timezone

import pytest

from polygon_agent.core.recovery import DecryptionFailure, MissingSession, RequestNotFound
from polygon_agent.core.vault import InMemoryKeyProvider, VaultStore
from polygon_agent.core.wallet.handshake import EphemeralHandshake
from polygon_agent.core.wallet.models import PendingRequest, WalletSession

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _session(name="main"):
    return WalletSession(
        wallet_name=name,
        wallet_address="0x" + "ab" * 20,
        chain_id=137,
        chain_name="polygon",
        explicit_session={"pk": "0x01"},
        implicit_session={"pk": "0x02", "attestation": {}, "identitySignature": "0x03"},
        created_at=NOW,
    )


def _request(rid, wallet="main", created_at=NOW):
    return PendingRequest(
        request_id=rid,
        wallet_name=wallet,
        chain_name="polygon",
        created_at=created_at,
        handshake=EphemeralHandshake.generate(timedelta(hours=2), now=created_at),
    )


class TestSessions:

    def test_save_and_load(self, store):
        store.save_session(_session())
        loaded = store.load_session("main")
        assert loaded.wallet_address == "0x" + "ab" * 20
        assert loaded.created_at == NOW

    def test_nothing_written_in_clear(self, store):
        path = store.save_session(_session())
        raw = json.loads(path.read_text())
        assert set(raw) == {"iv", "ciphertext", "tag"}
        assert "ab" * 20 not in path.read_text()

    def test_file_and_dir_permissions(self, store):
        path = store.save_session(_session())
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert stat.S_IMODE(os.stat(store.wallets_dir).st_mode) == 0o700

    def test_root_is_owner_only(self, tmp_path):
        previous = os.umask(0o022)
        try:
            store = VaultStore.open(tmp_path / "home" / ".polygon-agent", InMemoryKeyProvider())
            store.save_session(_session())
        finally:
            os.umask(previous)
        assert stat.S_IMODE(os.stat(store.root).st_mode) == 0o700
        assert stat.S_IMODE(os.stat(store.root.parent).st_mode) == 0o700

    def test_existing_root_is_tightened(self, tmp_path):
        root = tmp_path / "state"
        root.mkdir(mode=0o755)
        os.chmod(root, 0o755)
        store = VaultStore.open(root, InMemoryKeyProvider())
        store.save_identity("0x" + "01" * 32)
        assert stat.S_IMODE(os.stat(root).st_mode) == 0o700

    def test_no_temp_files_left(self, store):
        store.save_session(_session())
        store.save_session(_session())
        assert [p.name for p in store.wallets_dir.iterdir()] == ["main.json"]

    def test_last_writer_wins(self, store):
        store.save_session(_session())
        replacement = _session()
        replacement.wallet_address = "0x" + "cd" * 20
        store.save_session(replacement)
        assert store.load_session("main").wallet_address == "0x" + "cd" * 20

    def test_missing_session(self, store):
        with pytest.raises(MissingSession):
            store.load_session("nope")

    def test_list_and_delete(self, store):
        store.save_session(_session("main"))
        store.save_session(_session("alt"))
        assert store.list_sessions() == ["alt", "main"]
        assert store.delete_session("alt") is True
        assert store.delete_session("alt") is False
        assert store.list_sessions() == ["main"]

    def test_rejects_path_like_names(self, store):
        with pytest.raises(ValueError):
            store.load_session("../escape")

    def test_other_key_cannot_read(self, store):
        store.save_session(_session())
        other = VaultStore.open(store.root, InMemoryKeyProvider())
        with pytest.raises(DecryptionFailure):
            other.load_session("main")


class TestRequests:

    def test_save_load_delete(self, store):
        store.save_request(_request("rid1"))
        loaded = store.load_request("rid1")
        assert loaded.wallet_name == "main"
        assert store.delete_request("rid1") is True
        with pytest.raises(RequestNotFound):
            store.load_request("rid1")

    def test_find_latest_for_wallet(self, store):
        store.save_request(_request("older", created_at=NOW))
        store.save_request(_request("newer", created_at=NOW + timedelta(minutes=5)))
        store.save_request(_request("other", wallet="alt", created_at=NOW + timedelta(minutes=10)))
        assert store.find_request_for_wallet("main").request_id == "newer"

    def test_find_for_unknown_wallet(self, store):
        with pytest.raises(RequestNotFound):
            store.find_request_for_wallet("main")


class TestIdentity:

    def test_absent_identity(self, store):
        assert store.load_identity() is None

    def test_round_trip(self, store):
        store.save_identity("0x" + "01" * 32)
        assert store.load_identity() == "0x" + "01" * 32
