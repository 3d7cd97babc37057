"""Latency and success statistics for model and tool calls."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

from agentflow.runtime.interceptors import (
    Interceptor,
    ModelRequest,
    ModelResponse,
    ToolRequest,
    ToolResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_SLOW_CALL_MS = 5000


class PerformanceInterceptor(Interceptor):
    """Times every model call and keeps running latency statistics.

    Failures are counted and re-raised unchanged.
    """

    name = "performance_interceptor"

    def __init__(self, slow_call_ms: int = DEFAULT_SLOW_CALL_MS) -> None:
        self.slow_call_ms = slow_call_ms
        self._lock = threading.Lock()
        self._total_calls = 0
        self._failed_calls = 0
        self._slow_calls = 0
        self._total_ms = 0.0
        self._max_ms = 0.0
        self._min_ms: float | None = None

    def intercept(self, request: ModelRequest, call_next: Any) -> ModelResponse:
        started = time.perf_counter()
        logger.debug("Model call started: messages=%d", len(request.messages))
        try:
            response: ModelResponse = call_next(request)
        except Exception as exc:
            elapsed = (time.perf_counter() - started) * 1000
            with self._lock:
                self._failed_calls += 1
            logger.error("Model call failed after %.1fms: %s", elapsed, exc)
            raise

        elapsed = (time.perf_counter() - started) * 1000
        slow = elapsed > self.slow_call_ms
        with self._lock:
            self._total_calls += 1
            self._total_ms += elapsed
            self._max_ms = max(self._max_ms, elapsed)
            self._min_ms = elapsed if self._min_ms is None else min(self._min_ms, elapsed)
            if slow:
                self._slow_calls += 1
        if slow:
            logger.warning("Slow model call: %.1fms (threshold %dms)", elapsed, self.slow_call_ms)
        else:
            logger.info("Model call finished in %.1fms", elapsed)
        return response

    def statistics(self) -> dict[str, Any]:
        with self._lock:
            calls = self._total_calls
            return {
                "total_calls": calls,
                "failed_calls": self._failed_calls,
                "slow_calls": self._slow_calls,
                "total_time_ms": round(self._total_ms, 2),
                "avg_time_ms": round(self._total_ms / calls, 2) if calls else 0.0,
                "max_time_ms": round(self._max_ms, 2),
                "min_time_ms": round(self._min_ms or 0.0, 2),
            }


class ToolMonitorInterceptor(Interceptor):
    """Counts tool outcomes and turns tool exceptions into error responses."""

    name = "tool_monitor_interceptor"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total_calls = 0
        self._success_calls = 0
        self._failed_calls = 0

    def intercept(self, request: ToolRequest, call_next: Any) -> ToolResponse:
        started = time.perf_counter()
        logger.info("Tool call started: %s args=%s", request.name, request.arguments)
        try:
            response: ToolResponse = call_next(request)
        except Exception as exc:
            elapsed = (time.perf_counter() - started) * 1000
            with self._lock:
                self._total_calls += 1
                self._failed_calls += 1
            logger.error("Tool %s failed after %.1fms: %s", request.name, elapsed, exc)
            return ToolResponse(name=request.name, error=f"Tool execution failed: {exc}")

        elapsed = (time.perf_counter() - started) * 1000
        with self._lock:
            self._total_calls += 1
            if response.ok:
                self._success_calls += 1
            else:
                self._failed_calls += 1
        logger.info("Tool %s finished in %.1fms", request.name, elapsed)
        return response

    def statistics(self) -> dict[str, Any]:
        with self._lock:
            total = self._total_calls
            success_rate = self._success_calls / total * 100 if total else 100.0
            return {
                "total_calls": total,
                "success_calls": self._success_calls,
                "failed_calls": self._failed_calls,
                "success_rate": round(success_rate, 2),
            }
