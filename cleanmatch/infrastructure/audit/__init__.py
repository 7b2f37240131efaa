"""
Admin action logging for privileged operations.
"""

from cleanmatch.infrastructure.audit.admin_log import AdminActionLog, admin_action_log

__all__ = ["AdminActionLog", "admin_action_log"]
