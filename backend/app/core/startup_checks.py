from __future__ import annotations

import logging

from app.core.config import settings

logger = logging.getLogger(__name__)


def _is_production() -> bool:
    env = (settings.environment or "").strip().lower()
    return env in {"prod", "production"}


def _looks_like_localhost(url: str | None) -> bool:
    value = (url or "").strip().lower()
    if not value:
        return False
    return "localhost" in value or "127.0.0.1" in value


def _append_if(problems: list[str], *, condition: bool, message: str) -> None:
    if condition:
        problems.append(message)


def _validate_shopify_settings(problems: list[str]) -> None:
    _append_if(
        problems,
        condition=not (settings.shopify_api_key or "").strip(),
        message="SHOPIFY_API_KEY must be set in production.",
    )
    _append_if(
        problems,
        condition=len((settings.shopify_api_secret or "").strip()) < 16,
        message="SHOPIFY_API_SECRET must be set to the app's client secret.",
    )


def _validate_core_production_settings(problems: list[str]) -> None:
    _append_if(
        problems,
        condition=_looks_like_localhost(settings.database_url),
        message="DATABASE_URL must not point at localhost in production.",
    )
    _append_if(
        problems,
        condition=settings.analytics_raw_event_limit <= 0,
        message="ANALYTICS_RAW_EVENT_LIMIT must be a positive integer.",
    )
    _append_if(
        problems,
        condition=not (settings.sentry_dsn or "").strip(),
        message="SENTRY_DSN must be configured in production.",
    )
    owner_secret = (settings.owner_dashboard_secret or "").strip()
    _append_if(
        problems,
        condition=bool(owner_secret) and len(owner_secret) < 16,
        message="OWNER_DASHBOARD_SECRET must be at least 16 characters when set.",
    )


def validate_production_settings() -> None:
    """Fail fast on insecure defaults when running in production."""
    if not _is_production():
        return

    problems: list[str] = []
    _validate_shopify_settings(problems)
    _validate_core_production_settings(problems)

    if settings.upsell_fallback_product_handles:
        logger.info(
            "upsell_fallback_handles_enabled",
            extra={"handles": len(settings.upsell_fallback_product_handles)},
        )

    if problems:
        raise RuntimeError("Production configuration checks failed:\n- " + "\n- ".join(problems))
