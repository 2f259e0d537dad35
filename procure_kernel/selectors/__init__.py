"""Read-only query selectors."""

from procure_kernel.selectors.audit_log_selector import AuditLogSelector

__all__ = ["AuditLogSelector"]
