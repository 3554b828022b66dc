"""Shared application context for reusable dependencies."""
from __future__ import annotations

from typing import Any, Callable, Optional

_get_conn: Optional[Callable[[], Any]] = None
_get_current_user: Optional[Callable[..., Any]] = None
_billing_config: Optional[Any] = None
_billing_service: Optional[Any] = None


def configure(
    *,
    get_conn: Callable[[], Any],
    get_current_user: Callable[..., Any],
    billing_config: Optional[Any] = None,
    billing_service: Optional[Any] = None,
) -> None:
    """Register application-wide dependencies required by modular routers."""

    global _get_conn
    global _get_current_user
    global _billing_config
    global _billing_service

    _get_conn = get_conn
    _get_current_user = get_current_user
    _billing_config = billing_config
    _billing_service = billing_service


def reset() -> None:
    global _get_conn
    global _get_current_user
    global _billing_config
    global _billing_service

    _get_conn = None
    _get_current_user = None
    _billing_config = None
    _billing_service = None


def _require(value: Optional[Any], name: str) -> Any:
    if value is None:
        raise RuntimeError(f"Application context has not been configured yet: {name}")
    return value


def get_conn() -> Any:
    conn_factory = _require(_get_conn, "get_conn")
    return conn_factory()


def get_current_user(*args: Any, **kwargs: Any) -> Any:
    dependency = _require(_get_current_user, "get_current_user")
    return dependency(*args, **kwargs)


def get_billing_config() -> Any:
    return _require(_billing_config, "billing_config")


def get_billing_service() -> Any:
    return _require(_billing_service, "billing_service")
