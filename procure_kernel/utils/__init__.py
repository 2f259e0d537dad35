"""Utility functions for the procure kernel."""

from procure_kernel.utils.hashing import canonicalize_json, hash_audit_entry, hash_payload

__all__ = ["canonicalize_json", "hash_payload", "hash_audit_entry"]
