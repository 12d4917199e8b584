"""Tests for the token store."""

import json
import os
import sys

import pytest

from bottlecap_runner.credentials import CredentialStoreError, TokenStore, validate_token


@pytest.fixture
def store(tmp_path) -> TokenStore:
    return TokenStore(path=tmp_path / "credentials.json")


class TestTokenStore:

    def test_get_without_file_is_none(self, store):
        assert store.get() is None

    def test_set_then_get(self, store):
        store.set("bc_runner_abc")
        assert store.get() == "bc_runner_abc"

    def test_set_replaces(self, store):
        store.set("bc_runner_old")
        store.set("bc_runner_new")
        assert store.get() == "bc_runner_new"

    def test_delete(self, store):
        store.set("bc_runner_abc")
        store.delete()
        assert store.get() is None

    def test_delete_missing_is_not_an_error(self, store):
        store.delete()
        store.delete()
        assert store.get() is None

    def test_entries_are_keyed_by_service_and_account(self, tmp_path):
        path = tmp_path / "credentials.json"
        runner = TokenStore(path=path)
        other = TokenStore(service="other-app", account="token", path=path)

        runner.set("bc_runner_abc")
        other.set("something-else")
        runner.delete()

        assert runner.get() is None
        assert other.get() == "something-else"
        assert json.loads(path.read_text()) == {"other-app/token": "something-else"}

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_file_is_private(self, store):
        store.set("bc_runner_abc")
        assert os.stat(store.path).st_mode & 0o077 == 0

    def test_corrupt_file_raises(self, store):
        store.path.write_text("{not json")
        with pytest.raises(CredentialStoreError):
            store.get()

    def test_non_object_file_raises(self, store):
        store.path.write_text("[1, 2, 3]")
        with pytest.raises(CredentialStoreError):
            store.set("bc_runner_abc")


class TestValidateToken:

    def test_accepts_runner_token(self):
        validate_token("bc_runner_0123456789")

    @pytest.mark.parametrize("token", ["", "abc", "bc_user_123", " bc_runner_x"])
    def test_rejects_other_tokens(self, token):
        with pytest.raises(ValueError, match="bc_runner_"):
            validate_token(token)
