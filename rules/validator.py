"""Validation and normalization of redirect rules and the hourly rate.

Every function here is pure and total: malformed input never raises, it
produces a result object carrying a :class:`ValidationError` that the UI
shows next to the offending field.
"""

from __future__ import annotations

import math
import re
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, localcontext
from enum import Enum
from typing import Mapping, Optional, Union
from urllib.parse import quote, unquote, urlsplit, urlunsplit

from core.models import Rule

_LABEL_RE = re.compile(r"[a-z0-9-]+")
_DECIMAL_RE = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", re.ASCII)
_FORBIDDEN_HOST_CHARS = ("/", " ", ":", "?")
_FORBIDDEN_URL_HOST_CHARS = frozenset(" #%/:<>?@[\\]^|")
_ALLOWED_SCHEMES = {"http", "https"}
_DEFAULT_PORTS = {"http": 80, "https": 443}
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"
_QUERY_SAFE = _PATH_SAFE + "?"


class ValidationErrorCode(str, Enum):
    """Kinds of validation failure."""

    INVALID_HOSTNAME = "invalid_hostname"
    INVALID_URL = "invalid_url"
    UNSUPPORTED_SCHEME = "unsupported_scheme"
    SELF_LOOP = "self_loop"
    NOT_A_NUMBER = "not_a_number"
    NEGATIVE = "negative"


@dataclass(frozen=True, slots=True)
class ValidationError:
    code: ValidationErrorCode
    message: str


@dataclass(frozen=True, slots=True)
class HostnameResult:
    valid: bool
    value: str = ""
    error: Optional[ValidationError] = None


@dataclass(frozen=True, slots=True)
class UrlResult:
    valid: bool
    value: str = ""
    hostname: str = ""
    error: Optional[ValidationError] = None


@dataclass(frozen=True, slots=True)
class RuleValidation:
    """Outcome of :func:`validate_rule`.

    Hostname problems land in ``source_error``; URL problems and self-loops
    land in ``target_error``. At most one of them is set.
    """

    valid: bool
    normalized: Optional[Rule] = None
    source_error: Optional[ValidationError] = None
    target_error: Optional[ValidationError] = None

    @property
    def first_error(self) -> Optional[ValidationError]:
        return self.source_error or self.target_error


@dataclass(frozen=True, slots=True)
class HourlyRateResult:
    valid: bool
    value: Optional[float] = None
    error: Optional[ValidationError] = None


def make_id() -> str:
    """Mint a new opaque rule identifier."""

    return str(uuid.uuid4())


def _hostname_error(message: str) -> HostnameResult:
    return HostnameResult(valid=False, error=ValidationError(ValidationErrorCode.INVALID_HOSTNAME, message))


def _url_error(code: ValidationErrorCode, message: str) -> UrlResult:
    return UrlResult(valid=False, error=ValidationError(code, message))


def _as_text(raw: object) -> str:
    if raw is None:
        return ""
    return str(raw)


def validate_hostname(raw: object) -> HostnameResult:
    """Trim, lowercase and check a bare hostname such as ``old.example.com``."""

    normalized = _as_text(raw).strip().lower()
    if not normalized:
        return _hostname_error("Hostname is required.")
    if any(char in normalized for char in _FORBIDDEN_HOST_CHARS):
        return _hostname_error("Hostname must not include scheme, path, spaces, or query.")

    labels = normalized.split(".")
    if len(labels) < 2:
        return _hostname_error("Hostname must include at least one dot.")
    for label in labels:
        if not label:
            return _hostname_error("Hostname labels cannot be empty.")
        if not _LABEL_RE.fullmatch(label):
            return _hostname_error("Hostname can only use letters, numbers, dots, and hyphens.")
        if label.startswith("-") or label.endswith("-"):
            return _hostname_error("Hostname labels cannot start or end with hyphen.")
    return HostnameResult(valid=True, value=normalized)


def _canonical_host(hostname: str) -> Optional[str]:
    """Decode percent-escapes and map the host to its lowercase ASCII form.

    Returns ``None`` when the decoded host cannot be used as a hostname.
    """

    if ":" in hostname:
        return hostname.lower()
    try:
        decoded = unquote(hostname, errors="strict")
        # nameprep folds fullwidth and other compatibility forms
        host = decoded.encode("idna").decode("ascii").lower()
    except UnicodeError:
        return None
    if not host or any(char in _FORBIDDEN_URL_HOST_CHARS or ord(char) <= 0x20 for char in host):
        return None
    return host


def _canonical_netloc(parts, scheme: str, hostname: str) -> str:
    host = f"[{hostname}]" if ":" in hostname else hostname
    userinfo = ""
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo += f":{parts.password}"
        userinfo += "@"
    port = parts.port
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        return f"{userinfo}{host}:{port}"
    return f"{userinfo}{host}"


def validate_target_url(raw: object) -> UrlResult:
    """Check that ``raw`` is an absolute http(s) URL and canonicalize it."""

    trimmed = _as_text(raw).strip()
    if not trimmed:
        return _url_error(ValidationErrorCode.INVALID_URL, "Target URL is required.")

    invalid = "Target URL must be a valid absolute URL."
    try:
        parts = urlsplit(trimmed)
    except ValueError:
        return _url_error(ValidationErrorCode.INVALID_URL, invalid)
    if not parts.scheme:
        return _url_error(ValidationErrorCode.INVALID_URL, invalid)

    scheme = parts.scheme.lower()
    if scheme not in _ALLOWED_SCHEMES:
        return _url_error(
            ValidationErrorCode.UNSUPPORTED_SCHEME,
            "Target URL must start with http:// or https://.",
        )

    if any(char.isspace() or ord(char) < 0x20 for char in parts.netloc):
        return _url_error(ValidationErrorCode.INVALID_URL, invalid)
    try:
        parts.port
    except ValueError:
        return _url_error(ValidationErrorCode.INVALID_URL, invalid)
    hostname = _canonical_host(parts.hostname or "")
    if not hostname:
        return _url_error(ValidationErrorCode.INVALID_URL, invalid)

    canonical = urlunsplit(
        (
            scheme,
            _canonical_netloc(parts, scheme, hostname),
            quote(parts.path, safe=_PATH_SAFE) or "/",
            quote(parts.query, safe=_QUERY_SAFE),
            quote(parts.fragment, safe=_QUERY_SAFE),
        )
    )
    return UrlResult(valid=True, value=canonical, hostname=hostname)


RuleDraft = Union[Rule, Mapping[str, object]]


def _draft_field(draft: RuleDraft, name: str) -> object:
    if isinstance(draft, Mapping):
        return draft.get(name)
    return getattr(draft, name, None)


def validate_rule(draft: RuleDraft) -> RuleValidation:
    """Validate a whole rule; hostname errors win over URL errors."""

    host_result = validate_hostname(_draft_field(draft, "source_hostname"))
    if not host_result.valid:
        return RuleValidation(valid=False, source_error=host_result.error)

    target_result = validate_target_url(_draft_field(draft, "target_url"))
    if not target_result.valid:
        return RuleValidation(valid=False, target_error=target_result.error)

    if target_result.hostname == host_result.value:
        return RuleValidation(
            valid=False,
            target_error=ValidationError(
                ValidationErrorCode.SELF_LOOP,
                "Target URL hostname cannot match source hostname (self-loop).",
            ),
        )

    rule_id = _draft_field(draft, "id")
    normalized = Rule(
        id=str(rule_id or make_id()),
        enabled=bool(_draft_field(draft, "enabled")),
        source_hostname=host_result.value,
        target_url=target_result.value,
    )
    return RuleValidation(valid=True, normalized=normalized)


def validate_hourly_rate(raw: object) -> HourlyRateResult:
    """Parse the hourly-rate text field. Empty input means "unset"."""

    trimmed = _as_text(raw).strip()
    if not trimmed:
        return HourlyRateResult(valid=True, value=None)

    not_a_number = HourlyRateResult(
        valid=False,
        error=ValidationError(ValidationErrorCode.NOT_A_NUMBER, "Hourly rate must be a valid number."),
    )
    if not _DECIMAL_RE.fullmatch(trimmed):
        return not_a_number
    parsed = Decimal(trimmed)
    if not math.isfinite(float(parsed)):
        return not_a_number
    if parsed < 0:
        return HourlyRateResult(
            valid=False,
            error=ValidationError(ValidationErrorCode.NEGATIVE, "Hourly rate cannot be negative."),
        )
    with localcontext() as ctx:
        # wide enough for any finite double
        ctx.prec = 400
        rounded = parsed.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return HourlyRateResult(valid=True, value=float(rounded) + 0.0)


__all__ = [
    "HostnameResult",
    "HourlyRateResult",
    "RuleValidation",
    "UrlResult",
    "ValidationError",
    "ValidationErrorCode",
    "make_id",
    "validate_hostname",
    "validate_hourly_rate",
    "validate_rule",
    "validate_target_url",
]
