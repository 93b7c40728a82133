"""
Sentry Error Monitoring Configuration
Optional error tracking for the rebalancer API and CLI
"""
import os
import logging
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

SENSITIVE_KEYS = ['private_key', 'module_private_key', 'signature', 'secret', 'mnemonic', 'seed', 'dsn']


def filter_sensitive_data(event, hint):
    """Remove module key material from Sentry events."""
    # Filter request body
    if 'request' in event and 'data' in event['request']:
        data = event['request']['data']
        if isinstance(data, dict):
            for key in list(data):
                if key.lower() in SENSITIVE_KEYS:
                    data[key] = '[FILTERED]'

    # Filter exception values that might contain keys
    if 'exception' in event and 'values' in event['exception']:
        for exc in event['exception']['values']:
            value = exc.get('value') or ''
            if any(key in value.lower() for key in SENSITIVE_KEYS):
                exc['value'] = '[FILTERED - sensitive data]'

    # Never ship the raw key even if it leaked into a message
    module_key = os.getenv("MODULE_PRIVATE_KEY")
    if module_key and 'message' in event and module_key in str(event['message']):
        event['message'] = '[FILTERED - sensitive data]'

    return event


def init_sentry(dsn: str = None, environment: str = None):
    """Initialize Sentry when a DSN is configured. Returns True if enabled."""
    dsn = dsn or os.getenv("SENTRY_DSN")

    if not dsn:
        logging.getLogger("Sentry").info("No SENTRY_DSN found - error tracking disabled")
        return False

    environment = environment or os.getenv("REBALANCER_ENV", "development")
    release = os.getenv("COMMIT_SHA", "local")

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.2,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            StarletteIntegration(),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR
            ),
        ],
        before_send=filter_sensitive_data,
        send_default_pii=False,
        release=f"safe-yield-rebalancer@{release}",
        ignore_errors=[
            ConnectionRefusedError,
            TimeoutError,
        ],
    )

    logging.getLogger("Sentry").info(f"Initialized for {environment} (release: {release[:8]})")
    return True


def capture_rebalance_breadcrumb(action: str, wallet: str = None, details: dict = None):
    """Add breadcrumb for a rebalance step."""
    sentry_sdk.add_breadcrumb(
        category="rebalance",
        message=action,
        level="info",
        data={"wallet": wallet[:10] + "..." if wallet else None, **(details or {})}
    )
