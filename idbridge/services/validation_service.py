# idbridge/services/validation_service.py
"""
Input Validation Service for the identity bridge.

Checks the shape of credential fields before any route handler runs.
Validation is purely syntactic: it never asks whether an email is known
or a key is trusted, that is the business layer's job.
"""

from dataclasses import dataclass, field as dataclass_field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple
import json
import logging
import re

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.serialization import load_pem_public_key

logger = logging.getLogger(__name__)


class FieldKind(str, Enum):
    """Closed set of field shapes a rule can require"""
    EMAIL = "email"
    PASSWORD = "password"
    PUBLIC_KEY = "public_key"
    CERT_DURATION = "cert_duration"


@dataclass(frozen=True)
class ValidationRule:
    """A named field requirement attached to a route"""
    field: str
    kind: FieldKind
    required: bool = True


@dataclass(frozen=True)
class FieldError:
    """One failing field"""
    field: str
    code: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "code": self.code, "message": self.message}


@dataclass
class ValidationResult:
    """Result of input validation"""
    valid: bool
    errors: List[FieldError] = dataclass_field(default_factory=list)

    @property
    def fields(self) -> List[str]:
        return [error.field for error in self.errors]


RuleSet = Tuple[ValidationRule, ...]

# ===========================================
# PREDICATES
# ===========================================

MAX_EMAIL_LENGTH = 254
MAX_LOCAL_PART_LENGTH = 64
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 80
MAX_PUBLIC_KEY_LENGTH = 8192
MAX_CERT_DURATION = 24 * 60 * 60

_LOCAL_PART = re.compile(r"[A-Za-z0-9!#$%&'*+/=?^_`{|}~-]+(?:\.[A-Za-z0-9!#$%&'*+/=?^_`{|}~-]+)*")
_DOMAIN = re.compile(
    r"(?:[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?\.)+"
    r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
)
_DECIMAL = re.compile(r"[0-9]{1,2048}")
_HEX = re.compile(r"[0-9a-fA-F]{1,2048}")

# Serialized public key forms: algorithm -> parameter pattern
_SERIALIZED_KEY_PARAMS: Dict[str, Tuple[Tuple[str, ...], Any]] = {
    "RS": (("n", "e"), _DECIMAL),
    "DS": (("y", "p", "q", "g"), _HEX),
}


def is_email(value: Any) -> bool:
    """RFC 5322-shaped address: dot-atom local part, LDH domain with at least two labels"""
    if not isinstance(value, str) or len(value) > MAX_EMAIL_LENGTH:
        return False
    local, sep, domain = value.rpartition("@")
    if not sep or len(local) > MAX_LOCAL_PART_LENGTH:
        return False
    return bool(_LOCAL_PART.fullmatch(local)) and bool(_DOMAIN.fullmatch(domain))


def is_password(value: Any) -> bool:
    return isinstance(value, str) and MIN_PASSWORD_LENGTH <= len(value) <= MAX_PASSWORD_LENGTH


def _is_serialized_key(value: Mapping[str, Any]) -> bool:
    algorithm = value.get("algorithm")
    if not isinstance(algorithm, str):
        return False
    params = _SERIALIZED_KEY_PARAMS.get(algorithm)
    if params is None:
        return False
    names, pattern = params
    return all(isinstance(value.get(name), str) and pattern.fullmatch(value[name]) for name in names)


def is_public_key(value: Any) -> bool:
    """
    A PEM SubjectPublicKeyInfo, or a serialized key object such as
    {"algorithm": "RS", "n": "...", "e": "65537"} (also accepted as a JSON string).
    """
    if isinstance(value, dict):
        return len(json.dumps(value)) <= MAX_PUBLIC_KEY_LENGTH and _is_serialized_key(value)
    if not isinstance(value, str) or len(value) > MAX_PUBLIC_KEY_LENGTH:
        return False

    text = value.strip()
    if text.startswith("-----BEGIN PUBLIC KEY-----"):
        try:
            load_pem_public_key(text.encode("ascii"))
        except (ValueError, TypeError, UnsupportedAlgorithm):
            return False
        return True

    try:
        decoded = json.loads(text)
    except ValueError:
        return False
    return isinstance(decoded, dict) and _is_serialized_key(decoded)


def is_cert_duration(value: Any) -> bool:
    """Whole seconds between 1 and 24 hours, as an int or a decimal string"""
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        if not _DECIMAL.fullmatch(value) or len(value) > 6:
            return False
        value = int(value)
    return isinstance(value, int) and 1 <= value <= MAX_CERT_DURATION


PREDICATES: Dict[FieldKind, Callable[[Any], bool]] = {
    FieldKind.EMAIL: is_email,
    FieldKind.PASSWORD: is_password,
    FieldKind.PUBLIC_KEY: is_public_key,
    FieldKind.CERT_DURATION: is_cert_duration,
}

INVALID_MESSAGES: Dict[FieldKind, str] = {
    FieldKind.EMAIL: "Must be a valid email address",
    FieldKind.PASSWORD: f"Must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH} characters",
    FieldKind.PUBLIC_KEY: "Must be a well-formed public key",
    FieldKind.CERT_DURATION: f"Must be a whole number of seconds between 1 and {MAX_CERT_DURATION}",
}


def _is_missing(fields: Mapping[str, Any], name: str) -> bool:
    value = fields.get(name)
    return value is None or value == ""


class ValidationService:
    """
    Declarative field validation.

    Every rule of a rule set is checked, so the client gets the complete
    list of problems in one response instead of fixing them one by one.
    """

    def __init__(self, route_rules: Optional[Mapping[Tuple[str, str], RuleSet]] = None):
        self.route_rules: Dict[Tuple[str, str], RuleSet] = dict(
            ROUTE_RULES if route_rules is None else route_rules
        )

    def rules_for(self, method: str, path: str) -> Optional[RuleSet]:
        return self.route_rules.get((method.upper(), path))

    def validate(self, rules: Sequence[ValidationRule], fields: Mapping[str, Any]) -> ValidationResult:
        """
        Validate request fields against a rule set.

        Args:
            rules: Requirements declared by the route
            fields: Parsed request fields; names without a rule are ignored

        Returns:
            ValidationResult listing every failing field
        """
        errors: List[FieldError] = []

        for rule in rules:
            if _is_missing(fields, rule.field):
                if rule.required:
                    errors.append(FieldError(rule.field, "missing", "This field is required"))
                continue

            if not PREDICATES[rule.kind](fields[rule.field]):
                errors.append(FieldError(rule.field, "invalid", INVALID_MESSAGES[rule.kind]))

        if errors:
            logger.debug(f"Validation failed for fields: {[e.field for e in errors]}")
            return ValidationResult(valid=False, errors=errors)
        return ValidationResult(valid=True)


# Rule sets per (method, path)
ROUTE_RULES: Dict[Tuple[str, str], RuleSet] = {
    ("POST", "/api/sign_in"): (
        ValidationRule("email", FieldKind.EMAIL),
        ValidationRule("password", FieldKind.PASSWORD),
    ),
    ("POST", "/api/provision"): (
        ValidationRule("pubkey", FieldKind.PUBLIC_KEY),
        ValidationRule("duration", FieldKind.CERT_DURATION),
    ),
}
