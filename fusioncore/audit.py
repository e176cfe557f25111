"""Structured audit logging for resolution outcomes and decisions."""

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog


class AuditLogger:
    """Emits one structured event per resolution outcome, decision and error.

    Complements the per-account audit history: the history travels with the
    fused account, these events go to the log pipeline.
    """

    SENSITIVE_KEYS = ["password", "token", "secret", "credential", "private_key"]

    def __init__(self, name: str = "fusion.audit"):
        """Initialize audit logger.

        Args:
            name: Name of the stdlib logger events are routed through
        """
        self._configure_logger()
        self.logger = structlog.get_logger(name)
        self._context = threading.local()

    def _configure_logger(self):
        """Configure structured logger with proper processors."""
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.format_exc_info,
                self._add_audit_context,
                self._sanitize_sensitive_data,
                structlog.processors.JSONRenderer(),
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

    def _add_audit_context(self, logger, method_name, event_dict):
        """Add audit context to log entries."""
        event_dict["audit_timestamp"] = datetime.now(timezone.utc).isoformat()
        event_dict["audit_version"] = "1.0"

        for key, value in getattr(self._context, "fields", {}).items():
            event_dict.setdefault(key, value)

        return event_dict

    def _sanitize_sensitive_data(self, logger, method_name, event_dict):
        """Mask values whose key looks like a secret."""

        def sanitize_value(key: str, value: Any) -> Any:
            key_lower = key.lower()
            if any(term in key_lower for term in self.SENSITIVE_KEYS):
                return "***REDACTED***"
            if isinstance(value, dict):
                return {k: sanitize_value(k, v) for k, v in value.items()}
            if isinstance(value, list):
                return [sanitize_value(f"item_{i}", v) for i, v in enumerate(value)]
            return value

        for key, value in list(event_dict.items()):
            event_dict[key] = sanitize_value(key, value)

        return event_dict

    @contextmanager
    def audit_context(self, **kwargs):
        """Context manager adding fields to every audit event inside it.

        Usage:
            with audit_logger.audit_context(pass_id="p-42"):
                audit_logger.log_resolution(...)
        """
        previous = dict(getattr(self._context, "fields", {}))
        self._context.fields = {**previous, **kwargs}
        try:
            yield
        finally:
            self._context.fields = previous

    def log_resolution(
        self,
        account_id: str,
        source: str,
        state: str,
        identity_id: Optional[str] = None,
        candidates: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        """Log where an unresolved account ended up.

        Args:
            account_id: Source account id
            source: Source system name
            state: Resolution state reached
            identity_id: Linked identity, if any
            candidates: Viable candidates with their mean scores
        """
        log_data = {
            "event_type": "resolution",
            "account_id": account_id,
            "source": source,
            "state": state,
        }
        if identity_id:
            log_data["identity_id"] = identity_id
        if candidates:
            log_data["candidates"] = candidates

        self.logger.info("resolution", **log_data)

    def log_decision(
        self,
        decision_key: str,
        fused_id: str,
        submitter_id: str,
        applied: bool,
        reason: Optional[str] = None,
    ) -> None:
        """Log a human decision being applied or ignored."""
        log_data = {
            "event_type": "decision",
            "decision": decision_key,
            "fused_id": fused_id,
            "submitter_id": submitter_id,
            "applied": applied,
        }
        if reason:
            log_data["reason"] = reason

        if applied:
            self.logger.info("decision_applied", **log_data)
        else:
            self.logger.warning("decision_ignored", **log_data)

    def log_error(
        self,
        error_type: str,
        error_message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log a handled resolution error."""
        log_data = {
            "event_type": "error",
            "error_type": error_type,
            "error_message": error_message,
        }
        if context:
            log_data["context"] = context

        self.logger.error("resolution_error", **log_data)
