# tests/services/test_validation_service.py
"""
Tests for ValidationService - declarative credential field validation.
"""

import json

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from idbridge.services.validation_service import (
    MAX_CERT_DURATION,
    ROUTE_RULES,
    FieldKind,
    ValidationRule,
    ValidationService,
    is_cert_duration,
    is_email,
    is_password,
    is_public_key,
)

SIGN_IN_RULES = ROUTE_RULES[("POST", "/api/sign_in")]
PROVISION_RULES = ROUTE_RULES[("POST", "/api/provision")]

RS_KEY = {"algorithm": "RS", "n": "1234567890123456789", "e": "65537"}
DS_KEY = {"algorithm": "DS", "y": "a1b2", "p": "FFFF", "q": "c3", "g": "02"}


def pem_for(private_key) -> str:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode("ascii")


@pytest.fixture(scope="module")
def rsa_pem():
    return pem_for(rsa.generate_private_key(public_exponent=65537, key_size=2048))


@pytest.fixture(scope="module")
def ec_pem():
    return pem_for(ec.generate_private_key(ec.SECP256R1()))


class TestValidationService:
    """Test ValidationService rule sets"""

    @pytest.fixture
    def validation_service(self):
        """Create ValidationService instance"""
        return ValidationService()

    # ===========================================
    # RULE LOOKUP
    # ===========================================

    def test_rules_for_known_routes(self, validation_service):
        assert validation_service.rules_for("POST", "/api/sign_in") == SIGN_IN_RULES
        assert validation_service.rules_for("post", "/api/provision") == PROVISION_RULES

    def test_rules_for_unknown_routes(self, validation_service):
        assert validation_service.rules_for("GET", "/api/sign_in") is None
        assert validation_service.rules_for("POST", "/api/unknown") is None

    def test_custom_route_rules(self):
        service = ValidationService({("PUT", "/api/email"): (ValidationRule("email", FieldKind.EMAIL),)})

        assert service.rules_for("PUT", "/api/email") is not None
        assert service.rules_for("POST", "/api/sign_in") is None

    # ===========================================
    # SIGN-IN FIELDS
    # ===========================================

    def test_valid_sign_in(self, validation_service):
        result = validation_service.validate(
            SIGN_IN_RULES, {"email": "alice@example.com", "password": "correct horse"}
        )

        assert result.valid is True
        assert result.errors == []

    def test_bad_email_only(self, validation_service):
        result = validation_service.validate(
            SIGN_IN_RULES, {"email": "not-an-email", "password": "hunter2hunter2"}
        )

        assert result.valid is False
        assert result.fields == ["email"]
        assert result.errors[0].code == "invalid"

    def test_every_failure_reported(self, validation_service):
        """Malformed email and missing password are both listed"""
        result = validation_service.validate(SIGN_IN_RULES, {"email": "alice@"})

        assert result.valid is False
        assert result.fields == ["email", "password"]
        assert [e.code for e in result.errors] == ["invalid", "missing"]

    @pytest.mark.parametrize("missing", [None, ""])
    def test_empty_values_count_as_missing(self, validation_service, missing):
        result = validation_service.validate(
            SIGN_IN_RULES, {"email": missing, "password": "correct horse"}
        )
        assert [(e.field, e.code) for e in result.errors] == [("email", "missing")]

    def test_extra_fields_ignored(self, validation_service):
        result = validation_service.validate(SIGN_IN_RULES, {
            "email": "alice@example.com",
            "password": "correct horse",
            "remember_me": "yes",
            "nonsense": {"deep": [1, 2, 3]},
        })
        assert result.valid is True

    def test_optional_field_may_be_absent(self, validation_service):
        rules = (ValidationRule("email", FieldKind.EMAIL, required=False),)

        assert validation_service.validate(rules, {}).valid is True
        assert validation_service.validate(rules, {"email": "nope"}).fields == ["email"]

    def test_error_serialization(self, validation_service):
        result = validation_service.validate(SIGN_IN_RULES, {"email": "leaky-value", "password": "short"})
        payload = [error.to_dict() for error in result.errors]

        assert [entry["field"] for entry in payload] == ["email", "password"]
        assert set(payload[0]) == {"field", "code", "message"}
        # Submitted values are never echoed back
        assert "leaky-value" not in json.dumps(payload)
        assert "short" not in json.dumps(payload)

    # ===========================================
    # PROVISIONING FIELDS
    # ===========================================

    def test_valid_provision(self, validation_service, ec_pem):
        result = validation_service.validate(PROVISION_RULES, {"pubkey": ec_pem, "duration": "3600"})
        assert result.valid is True

    def test_invalid_provision(self, validation_service):
        result = validation_service.validate(PROVISION_RULES, {"pubkey": "ssh-rsa AAAA", "duration": "0"})
        assert result.fields == ["pubkey", "duration"]


class TestEmail:
    """Email address shape"""

    @pytest.mark.parametrize("value", [
        "alice@example.com",
        "first.last+tag@mail.example.co.uk",
        "o'brien@example.org",
        "x@a-b.io",
    ])
    def test_valid(self, value):
        assert is_email(value) is True

    @pytest.mark.parametrize("value", [
        "not-an-email",
        "alice@",
        "@example.com",
        "alice@localhost",
        "alice@@example.com",
        "alice@exa_mple.com",
        "alice@-example.com",
        ".alice@example.com",
        "al..ice@example.com",
        "alice example@example.com",
        "a" * 65 + "@example.com",
        "alice@" + "a" * 250 + ".com",
        None,
        42,
        ["alice@example.com"],
    ])
    def test_invalid(self, value):
        assert is_email(value) is False


class TestPassword:
    """Password length bounds"""

    @pytest.mark.parametrize("value", ["x" * 8, "x" * 80, "correct horse battery staple"])
    def test_valid(self, value):
        assert is_password(value) is True

    @pytest.mark.parametrize("value", ["", "x" * 7, "x" * 81, None, 12345678])
    def test_invalid(self, value):
        assert is_password(value) is False


class TestPublicKey:
    """Public key formats"""

    def test_rsa_pem(self, rsa_pem):
        assert is_public_key(rsa_pem) is True

    def test_ec_pem(self, ec_pem):
        assert is_public_key(ec_pem) is True

    def test_pem_with_surrounding_whitespace(self, ec_pem):
        assert is_public_key(f"\n  {ec_pem}\n") is True

    @pytest.mark.parametrize("value", [RS_KEY, DS_KEY])
    def test_serialized_objects(self, value):
        assert is_public_key(value) is True
        assert is_public_key(json.dumps(value)) is True

    @pytest.mark.parametrize("value", [
        {"algorithm": "RS", "n": "12ab", "e": "65537"},
        {"algorithm": "RS", "n": "123"},
        {"algorithm": "DS", "y": "zz", "p": "1", "q": "1", "g": "1"},
        {"algorithm": "EC", "x": "1", "y": "2"},
        {"algorithm": ["RS"], "n": "1", "e": "3"},
        {"algorithm": "RS", "n": 123, "e": 3},
        {},
    ])
    def test_bad_serialized_objects(self, value):
        assert is_public_key(value) is False

    def test_corrupted_pem(self, ec_pem):
        lines = ec_pem.splitlines()
        lines[1] = lines[1][::-1]
        assert is_public_key("\n".join(lines)) is False

    @pytest.mark.parametrize("value", [
        "",
        "ssh-rsa AAAAB3NzaC1yc2E",
        "-----BEGIN PUBLIC KEY-----\nnot base64\n-----END PUBLIC KEY-----",
        "[1, 2, 3]",
        "{not json",
        None,
        12345,
    ])
    def test_invalid(self, value):
        assert is_public_key(value) is False

    def test_oversized(self):
        assert is_public_key({"algorithm": "RS", "n": "1" * 9000, "e": "3"}) is False
        assert is_public_key(json.dumps(RS_KEY) + " " * 9000) is False


class TestCertDuration:
    """Certificate lifetime in seconds"""

    @pytest.mark.parametrize("value", [1, 3600, MAX_CERT_DURATION, "1", "86400"])
    def test_valid(self, value):
        assert is_cert_duration(value) is True

    @pytest.mark.parametrize("value", [
        0, -1, MAX_CERT_DURATION + 1, "0", "86401", "-5", "1.5", "abc", "", " 60",
        1.5, True, False, None, "9" * 40,
    ])
    def test_invalid(self, value):
        assert is_cert_duration(value) is False
