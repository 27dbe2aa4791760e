"""
Sentry configuration for error tracking.

Captures unhandled request errors plus failures in background consumers
(rule engine, webhook delivery, retry sweeps).
"""
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from pyra_engine.config import settings
from pyra_engine.logging_config import logger


def configure_sentry():
    """
    Initialize Sentry with FastAPI and SQLAlchemy integrations.

    Requires SENTRY_DSN environment variable to be set.
    """
    dsn = settings.SENTRY_DSN

    if not dsn:
        logger.warning("sentry_disabled", reason="SENTRY_DSN not set")
        return

    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
        before_send=add_context,
        # Sample rate: capture 10% of transactions for performance monitoring
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
        release=settings.APP_VERSION,
    )

    logger.info("sentry_initialized", environment=settings.ENVIRONMENT)


def add_context(event, hint):
    """Tag every error event with the service name."""
    event.setdefault("tags", {})["service"] = settings.APP_NAME
    return event


def capture_exception(exc_info=None, **context):
    """
    Capture an exception to Sentry.

    Extra keyword arguments are attached to the event, e.g.
    capture_exception(e, consumer="rule_engine", event_id=event.id)
    """
    if not sentry_sdk.get_client().is_active():
        return
    with sentry_sdk.new_scope() as scope:
        for key, value in context.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exc_info)

