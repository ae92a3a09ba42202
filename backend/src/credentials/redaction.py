"""
Credential redaction and audit logging utilities.

SECURITY REQUIREMENTS:
- Shopify customer tokens, fallback passwords and their encrypted blobs
  NEVER appear in logs
- ALLOWED in logs: user_id, shopify customer id, provider, expiry times
- Every token lifecycle transition that touches credentials is audited

Audit Events:
- credential.token_renewed
- credential.token_reauthenticated
- credential.reauth_required
- credential.customer_provisioned
- credential.customer_orphaned

Usage:
    from src.credentials.redaction import CredentialAuditLogger, AuditEventType

    audit = CredentialAuditLogger()
    audit.log(
        event_type=AuditEventType.TOKEN_RENEWED,
        user_id=user.id,
        metadata={"new_expires_at": expires_at.isoformat()},
    )
"""

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Dict

logger = logging.getLogger(__name__)

REDACTED_VALUE = "[REDACTED]"


class AuditEventType(str, Enum):
    """Credential audit event types."""
    TOKEN_RENEWED = "credential.token_renewed"
    TOKEN_REAUTHENTICATED = "credential.token_reauthenticated"
    TOKEN_REAUTH_REQUIRED = "credential.reauth_required"
    CUSTOMER_PROVISIONED = "credential.customer_provisioned"
    CUSTOMER_ORPHANED = "credential.customer_orphaned"


CREDENTIAL_SECRET_PATTERNS = [
    re.compile(r"(shpat_[a-fA-F0-9]+)"),  # Shopify Admin access tokens
    re.compile(r"(shpss_[a-zA-Z0-9]+)"),  # Shopify shared secrets
    re.compile(r"\b[0-9a-f]{32}:[0-9a-f]+\b"),  # CredentialVault blobs
    re.compile(r"(bearer\s+[A-Za-z0-9._-]+)", re.IGNORECASE),
    re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\b"),  # JWTs
]

# Key names that may carry secrets. Matched as substrings.
SECRET_KEY_PATTERNS = (
    "token", "secret", "credential", "bearer", "oauth",
    "api_key", "apikey", "password", "cookie",
)

# Safe keys that would otherwise match SECRET_KEY_PATTERNS.
ALLOWED_KEYS = ("token_state",)


def is_credential_secret_key(key: str) -> bool:
    """
    Check if a key name indicates a credential secret.

    Args:
        key: The key name to check

    Returns:
        True if the key likely contains a secret
    """
    key_lower = key.lower()
    if key_lower in ALLOWED_KEYS:
        return False
    return any(pattern in key_lower for pattern in SECRET_KEY_PATTERNS)


def redact_credential_value(value: Any) -> Any:
    """
    Redact secret patterns from a credential value.

    Args:
        value: The value to redact

    Returns:
        Redacted value
    """
    if not isinstance(value, str):
        return value

    result = value
    for pattern in CREDENTIAL_SECRET_PATTERNS:
        result = pattern.sub(REDACTED_VALUE, result)
    return result


def redact_credential_data(data: Any, _depth: int = 0) -> Any:
    """
    Recursively redact credential secrets from a data structure.

    SECURITY:
    - Always use this before logging credential-related data

    Args:
        data: Dictionary, list, or other data structure

    Returns:
        Copy of data with secrets redacted
    """
    # Prevent infinite recursion
    if _depth > 10:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if is_credential_secret_key(str(key)):
                result[key] = REDACTED_VALUE
            else:
                result[key] = redact_credential_data(value, _depth + 1)
        return result

    if isinstance(data, list):
        return [redact_credential_data(item, _depth + 1) for item in data]

    if isinstance(data, str):
        return redact_credential_value(data)

    return data


class CredentialAuditLogger:
    """
    Structured audit logger for credential operations.

    SECURITY:
    - Tokens and passwords are NEVER logged
    - metadata is redacted before it reaches the log record
    """

    def __init__(self):
        self.logger = logging.getLogger("credentials.audit")

    def log(
        self,
        event_type: AuditEventType,
        user_id: Optional[int] = None,
        shopify_customer_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        level: int = logging.INFO,
    ) -> None:
        """
        Log an audit event.

        Args:
            event_type: Type of audit event
            user_id: Local user id
            shopify_customer_id: Shopify customer GID (allowed in logs)
            metadata: Additional context (will be redacted)
            level: Log level for the record
        """
        safe_metadata = redact_credential_data(metadata) if metadata else {}

        audit_record = {
            "event_type": event_type.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "user_id": user_id,
            "shopify_customer_id": shopify_customer_id,
            **safe_metadata,
        }

        self.logger.log(
            level,
            f"Credential audit: {event_type.value}",
            extra=audit_record,
        )


class CredentialLoggingFilter(logging.Filter):
    """
    Logging filter that redacts credential secrets from log records.

    Usage:
        handler.addFilter(CredentialLoggingFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_credential_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = redact_credential_data(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    redact_credential_value(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        # Redact extra fields
        for key in list(record.__dict__.keys()):
            if is_credential_secret_key(key):
                setattr(record, key, REDACTED_VALUE)
            elif isinstance(getattr(record, key), str):
                setattr(record, key, redact_credential_value(getattr(record, key)))

        return True


def setup_credential_logging(level: int = logging.INFO) -> None:
    """
    Configure credential-safe logging.

    Call this during application startup. The filter is attached to the
    root handlers so records from every module pass through it.
    """
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

    credential_filter = CredentialLoggingFilter()
    for handler in root.handlers:
        if not any(isinstance(f, CredentialLoggingFilter) for f in handler.filters):
            handler.addFilter(credential_filter)

    logger.info("Credential logging configured with redaction filter")
