"""
Tests for the error registry and the RealifyError handler.
"""

from unittest.mock import patch

import pytest
import yaml
from fastapi import FastAPI
from fastapi.testclient import TestClient

from realify.auth.session_auth import AuthenticatedUser, get_optional_user
from realify.core import errors
from realify.core.errors import RealifyError
from realify.core.errors.middleware import realify_error_handler
from realify.core.errors.registry import ErrorRegistry, RegistryValidationError, error_registry


def _write_registry(tmp_path, entries):
    path = tmp_path / "registry.yaml"
    path.write_text(yaml.safe_dump({"schema_version": 1, "errors": entries}))
    return str(path)


def _entry(**overrides):
    entry = {
        "code": "RLF-GEN-009",
        "domain": "GEN",
        "kind": "test_kind",
        "title": "Test",
        "severity": "INFO",
        "retryable": False,
        "http_status": 400,
        "safe_message": "Nope.",
    }
    entry.update(overrides)
    return entry


class TestRealifyError:
    def test_rejects_malformed_code(self):
        with pytest.raises(ValueError):
            RealifyError("GEN-1")

    def test_message_includes_detail(self):
        assert str(RealifyError("RLF-GEN-001", detail="missing prompt")) == "RLF-GEN-001: missing prompt"


class TestRegistry:
    def test_every_referenced_code_is_registered(self):
        codes = errors.referenced_codes()
        assert errors.GENERATION_FAILED in codes
        for code in codes:
            assert error_registry.get(code) is not None, code

    def test_required_code_missing(self, tmp_path):
        with pytest.raises(RegistryValidationError, match="RLF-GEN-010"):
            ErrorRegistry().load(_write_registry(tmp_path, [_entry()]), required=["RLF-GEN-009", "RLF-GEN-010"])

    def test_non_error_status(self, tmp_path):
        with pytest.raises(RegistryValidationError):
            ErrorRegistry().load(_write_registry(tmp_path, [_entry(http_status=200)]))

    def test_unsupported_schema_version(self, tmp_path):
        path = tmp_path / "registry.yaml"
        path.write_text(yaml.safe_dump({"schema_version": 2, "errors": [_entry()]}))
        with pytest.raises(RegistryValidationError):
            ErrorRegistry().load(str(path))

    def test_failed_load_keeps_previous_entries(self, tmp_path):
        registry = ErrorRegistry()
        registry.load(_write_registry(tmp_path, [_entry()]))
        with pytest.raises(RegistryValidationError):
            registry.load(_write_registry(tmp_path, [_entry(), _entry()]))
        assert registry.get("RLF-GEN-009") is not None

    @pytest.mark.parametrize("code,status", [
        (errors.NOT_AUTHENTICATED, 401),
        (errors.NO_SUBSCRIPTION, 403),
        (errors.LIMIT_REACHED, 403),
        (errors.INVALID_PLAN, 400),
        (errors.WEBHOOK_VERIFICATION_FAILED, 400),
        (errors.SERVERS_BUSY, 503),
        (errors.GENERATION_FAILED, 500),
    ])
    def test_http_status(self, code, status):
        assert error_registry.lookup(code).http_status == status

    def test_missing_fields(self, tmp_path):
        entry = _entry()
        del entry["safe_message"]
        with pytest.raises(RegistryValidationError):
            ErrorRegistry().load(_write_registry(tmp_path, [entry]))

    def test_domain_mismatch(self, tmp_path):
        with pytest.raises(RegistryValidationError):
            ErrorRegistry().load(_write_registry(tmp_path, [_entry(domain="BILL")]))

    def test_duplicate_code(self, tmp_path):
        with pytest.raises(RegistryValidationError):
            ErrorRegistry().load(_write_registry(tmp_path, [_entry(), _entry()]))

    def test_lookup_unknown(self):
        with pytest.raises(KeyError):
            error_registry.lookup("RLF-SYS-999")


class TestErrorHandler:
    @pytest.fixture
    def client(self):
        app = FastAPI()
        app.add_exception_handler(RealifyError, realify_error_handler)

        @app.get("/limit")
        async def limit():
            raise RealifyError(errors.LIMIT_REACHED, detail="cost=10 remaining=4")

        @app.get("/unknown")
        async def unknown():
            raise RealifyError("RLF-SYS-999")

        return TestClient(app)

    def test_structured_body(self, client):
        resp = client.get("/limit")
        assert resp.status_code == 403
        assert resp.json() == {
            "error": "limit_reached",
            "code": "RLF-BILL-003",
            "message": error_registry.lookup(errors.LIMIT_REACHED).safe_message,
            "retryable": False,
        }

    def test_detail_never_exposed(self, client):
        assert "remaining=4" not in client.get("/limit").text

    def test_unregistered_code(self, client):
        resp = client.get("/unknown")
        assert resp.status_code == 500
        assert resp.json()["error"] == "internal_error"


class TestUnhandledErrors:
    def test_catch_all_returns_json(self, app):
        app.dependency_overrides[get_optional_user] = lambda: AuthenticatedUser(user_id="u")
        with patch("realify.routers.gallery._get_db_session", side_effect=RuntimeError("boom")):
            resp = TestClient(app, raise_server_exceptions=False).get("/api/gallery")

        assert resp.status_code == 500
        assert resp.json() == {"error": "internal_error", "message": "An unexpected error occurred."}
