"""Tests for credential resolution."""

import pytest

from conftest import make_token
from log_tailer.credentials import Credentials, resolve_credentials, resolve_foreign_key
from log_tailer.errors import CredentialError


class TestResolveCredentials:
    def test_user_id_claim_preferred(self):
        creds = resolve_credentials(make_token({"userId": "u-1", "sub": "s-1", "agentId": "a-1"}))
        assert creds.identity == "u-1"
        assert creds.claims["agentId"] == "a-1"

    def test_falls_back_to_sub(self, token):
        assert resolve_credentials(token).identity == "user-1"

    def test_blank_token(self):
        for blank in ("", "   "):
            with pytest.raises(CredentialError, match="blank token"):
                resolve_credentials(blank)

    def test_garbage_token(self):
        with pytest.raises(CredentialError, match="could not decode"):
            resolve_credentials("not-a-jwt")

    def test_missing_identity(self):
        with pytest.raises(CredentialError, match="user id"):
            resolve_credentials(make_token({"agentId": "a-1"}))

    def test_signature_not_checked(self):
        token = make_token({"sub": "user-1"})
        header, payload, _ = token.split(".")
        assert resolve_credentials(f"{header}.{payload}.c2lnbmF0dXJl").identity == "user-1"


class TestResolveForeignKey:
    def test_from_claim(self):
        creds = Credentials(identity="u", claims={"agentId": "a-1"})
        assert resolve_foreign_key(creds, "agentId") == "a-1"

    def test_explicit_value_wins(self):
        creds = Credentials(identity="u", claims={"agentId": "a-1"})
        assert resolve_foreign_key(creds, "agentId", "explicit") == "explicit"

    def test_missing_claim(self):
        creds = Credentials(identity="u", claims={})
        with pytest.raises(CredentialError, match="agentId"):
            resolve_foreign_key(creds, "agentId")

    def test_non_string_claim(self):
        creds = Credentials(identity="u", claims={"agentId": 42})
        assert resolve_foreign_key(creds, "agentId") == "42"
