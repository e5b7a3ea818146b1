import logging
import sqlite3
from typing import Any

import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from shop_translator import db
from shop_translator.config import settings

log = structlog.get_logger(__name__)

SENTRY_LEVELS = {"QUALITY": "warning", "COMPLETENESS": "warning", "VALIDATION": "warning"}


def init_sentry() -> bool:
    if not settings.sentry_dsn:
        log.info("sentry disabled, SENTRY_DSN not set")
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        release=settings.app_version,
        traces_sample_rate=0.1 if settings.app_env == "prod" else 1.0,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            StarletteIntegration(transaction_style="endpoint"),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        send_default_pii=False,
        before_send_transaction=_filter_transactions,
    )
    log.info("sentry initialized", environment=settings.app_env)
    return True


def _filter_transactions(event: dict, hint: dict) -> dict | None:
    if event.get("transaction") in ("/health", "/version"):
        return None
    return event


class ErrorReporter:
    """Audit sink for non-retryable faults and quality incidents.

    Every report lands in the ``error_log`` table and the structured log; it is
    also forwarded to Sentry when a client is active. Reporting never raises
    into the caller.
    """

    def report(
        self,
        category: str,
        code: str,
        context: dict[str, Any] | None = None,
        message: str = "",
        exc: BaseException | None = None,
    ) -> None:
        context = context or {}
        log.warning("incident reported", category=category, code=code, error_message=message, **_flat(context))

        try:
            db.add_error_log(category, code, message or None, context)
        except sqlite3.Error as db_exc:
            log.error("incident not persisted", category=category, code=code, error=str(db_exc))

        if sentry_sdk.get_client().is_active():
            with sentry_sdk.new_scope() as scope:
                scope.set_tag("incident.category", category)
                scope.set_tag("incident.code", code)
                scope.set_context("incident", context)
                if exc is not None:
                    sentry_sdk.capture_exception(exc)
                else:
                    sentry_sdk.capture_message(
                        f"{category}/{code}: {message}" if message else f"{category}/{code}",
                        level=SENTRY_LEVELS.get(category, "error"),
                    )

    def list_incidents(self, limit: int = 100, category: str | None = None) -> list[dict]:
        return db.list_error_log(limit=limit, category=category)


def _flat(context: dict[str, Any]) -> dict[str, Any]:
    # structlog kwargs must not collide with the event's own keys
    return {f"ctx_{k}" if k in ("category", "code", "event") else k: v for k, v in context.items()}
