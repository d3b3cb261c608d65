"""Shared utilities for the Sukoon platform."""
from .clock import format_timestamp, parse_timestamp, utc_now
from .pii import hash_pii, hash_text_for_audit, configure_pii_salt

__all__ = [
    "hash_pii",
    "hash_text_for_audit",
    "configure_pii_salt",
    "format_timestamp",
    "parse_timestamp",
    "utc_now",
]
