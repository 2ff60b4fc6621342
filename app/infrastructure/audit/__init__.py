"""
Audit trail for emergency actions (trigger, acknowledge, resolve).
"""

from app.infrastructure.audit.audit_logger import AuditLogger

__all__ = ["AuditLogger"]
