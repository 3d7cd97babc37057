"""Built-in hooks and interceptors."""

from agentflow.policies.audit import AuditHook
from agentflow.policies.performance import PerformanceInterceptor, ToolMonitorInterceptor
from agentflow.policies.quota import TokenLimitHook
from agentflow.policies.security import (
    SafetyInterceptor,
    SecurityHook,
    check_security,
    filter_sensitive_info,
)
from agentflow.policies.trimming import MessageTrimmingHook

__all__ = [
    "AuditHook",
    "MessageTrimmingHook",
    "PerformanceInterceptor",
    "SafetyInterceptor",
    "SecurityHook",
    "TokenLimitHook",
    "ToolMonitorInterceptor",
    "check_security",
    "filter_sensitive_info",
]
