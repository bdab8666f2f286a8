"""Structured logging context for OmniBridge processing."""

from __future__ import annotations

import contextvars
import logging
import uuid

from app.logging import get_logger

trace_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("omnibridge_trace_id", default="")
tenant_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("omnibridge_tenant_id", default="")


def set_trace_id(value: str | None = None) -> str:
    if not value:
        value = uuid.uuid4().hex[:12]
    trace_id_var.set(value)
    return value


def get_trace_id() -> str:
    return trace_id_var.get()


def set_tenant_id(value) -> None:
    tenant_id_var.set(str(value) if value else "")


class OmniBridgeLoggerAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        extra = kwargs.get("extra") or {}
        trace_id = trace_id_var.get()
        tenant_id = tenant_id_var.get()
        if trace_id and "trace_id" not in extra:
            extra["trace_id"] = trace_id
        if tenant_id and "tenant_id" not in extra:
            extra["tenant_id"] = tenant_id
        kwargs["extra"] = extra
        return msg, kwargs


def get_omnibridge_logger(name: str) -> logging.LoggerAdapter:
    return OmniBridgeLoggerAdapter(get_logger(name), {})
