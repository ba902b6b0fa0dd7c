from __future__ import annotations

"""
structlog configuration for the relay.

Every event is a snake_case name plus key/value context::

    log = get_logger(__name__)
    log.info("badge_issued", badge_id=rec.id, tx=tx_id)

Request-scoped values (request_id, trace_id) are bound by the request-id
middleware and merged into each event through contextvars. Secrets and
anything that could link a credential nonce to provider audit data are
masked before rendering, including inside nested dicts.

Level and format come from Settings (LOG_LEVEL, LOG_FORMAT).
"""

import logging
from typing import Any, Dict, List, Mapping

import structlog
from structlog.contextvars import merge_contextvars

MASK = "***"

REDACT_KEYS = frozenset(
    {
        "authorization",
        "api_key",
        "private_key",
        "issuer_private_key",
        "password",
        "secret",
        "signature",
        "token",
        "nonce",
        "provider_data",
        "provider_payload",
    }
)

# Loggers owned by libraries; they share our handler and stay quiet below WARNING.
_ROUTED = ("uvicorn", "uvicorn.error", "uvicorn.access")
_QUIET = ("asyncio", "httpx", "httpcore")

# Prefix of the event name -> pipeline tag, so dashboards can filter one flow.
_PIPELINES = (
    ("verification_", "verify"),
    ("badge_", "issuance"),
    ("vote_", "vote"),
    ("ledger_", "ledger"),
)


def _mask(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: (MASK if str(k).lower() in REDACT_KEYS else _mask(v)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_mask(v) for v in value]
    return value


def redact(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in list(event_dict.items()):
        if value is None:
            continue
        if key.lower() in REDACT_KEYS:
            event_dict[key] = MASK
        elif isinstance(value, (Mapping, list, tuple)):
            event_dict[key] = _mask(value)
    return event_dict


def tag_pipeline(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event = event_dict.get("event")
    if isinstance(event, str) and "pipeline" not in event_dict:
        for prefix, name in _PIPELINES:
            if event.startswith(prefix):
                event_dict["pipeline"] = name
                break
    return event_dict


def _shared(service_name: str, with_tracebacks: bool) -> List[Any]:
    def add_service(_: Any, __: str, ev: Dict[str, Any]) -> Dict[str, Any]:
        ev.setdefault("service", service_name)
        return ev

    chain: List[Any] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        merge_contextvars,
        add_service,
        tag_pipeline,
        redact,
    ]
    if with_tracebacks:
        chain.append(structlog.processors.format_exc_info)
    return chain


def setup_logging(
    level: str | int = "INFO",
    log_format: str = "json",
    *,
    service_name: str = "sybilshield-relay",
) -> None:
    """
    Route structlog and stdlib logging (uvicorn included) through one handler.

    ``log_format="console"`` renders colored, human-readable lines and leaves
    tracebacks to the console renderer; anything else renders JSON.
    """
    if isinstance(level, str):
        level = level.upper()
    console = log_format.lower() == "console"
    renderer = structlog.dev.ConsoleRenderer(colors=True) if console else structlog.processors.JSONRenderer(sort_keys=True)
    shared = _shared(service_name, with_tracebacks=not console)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=shared,
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name in _ROUTED:
        lg = logging.getLogger(name)
        lg.handlers[:] = [handler]
        lg.propagate = False
        lg.setLevel(level)
    for name in _QUIET:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request_context(**kv: Any) -> None:
    structlog.contextvars.bind_contextvars(**{k: v for k, v in kv.items() if v})


def clear_request_context(*keys: str) -> None:
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()


__all__ = [
    "MASK",
    "REDACT_KEYS",
    "redact",
    "tag_pipeline",
    "setup_logging",
    "get_logger",
    "bind_request_context",
    "clear_request_context",
]
