from __future__ import annotations

from contextvars import ContextVar, Token
from dataclasses import dataclass

request_id_context: ContextVar[str | None] = ContextVar("request_id", default=None)


@dataclass(frozen=True)
class TraceContext:
    trace_id: str | None
    request_id: str | None


def get_request_id() -> str | None:
    return request_id_context.get()


def bind_request_id(request_id: str) -> Token[str | None]:
    return request_id_context.set(request_id)


def reset_request_id(token: Token[str | None]) -> None:
    request_id_context.reset(token)
