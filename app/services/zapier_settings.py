"""ZapierSettingsService: materializes outbound webhook settings from the admin key/value store.

Stored keys are "zapier_<field>". Missing or unparseable values fall back to
the process configuration defaults.
"""

import structlog

from app.core.config import Settings
from app.core.exceptions import WebhookConfigurationError
from app.repositories.protocols import SettingsRepository
from app.schemas.webhooks import ZapierSettings, ZapierSettingsUpdate, ZapierSettingsView

logger = structlog.get_logger(__name__)

KEY_PREFIX = "zapier_"
_FIELDS = list(ZapierSettings.model_fields)
_TRUE_VALUES = {"true", "1", "yes", "on"}
# An explicit null or empty string clears these
_CLEARABLE = {"webhook_url", "webhook_secret"}


def _key(field: str) -> str:
    return f"{KEY_PREFIX}{field}"


def _encode(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def defaults_from_config(config: Settings) -> ZapierSettings:
    return ZapierSettings(
        webhook_url=config.zapier_webhook_url,
        webhook_enabled=config.zapier_webhook_enabled,
        webhook_timeout=config.zapier_webhook_timeout,
        webhook_retry_attempts=config.zapier_webhook_retry_attempts,
        webhook_retry_delay=config.zapier_webhook_retry_delay,
        include_customer_data=config.zapier_include_customer_data,
        include_order_items=config.zapier_include_order_items,
        include_pricing_data=config.zapier_include_pricing_data,
        include_shipping_data=config.zapier_include_shipping_data,
        webhook_secret=config.zapier_webhook_secret,
    )


class ZapierSettingsService:
    def __init__(self, repository: SettingsRepository, config: Settings):
        self.repository = repository
        self.config = config

    async def get(self) -> ZapierSettings:
        """Effective settings: stored values layered over configured defaults."""
        defaults = defaults_from_config(self.config)
        stored = await self.repository.get_values([_key(f) for f in _FIELDS])

        values = defaults.model_dump()
        for field in _FIELDS:
            raw = stored.get(_key(field))
            if raw is None:
                continue
            current = values[field]
            try:
                if isinstance(current, bool):
                    values[field] = raw.strip().lower() in _TRUE_VALUES
                elif isinstance(current, int):
                    values[field] = int(raw)
                else:
                    values[field] = raw
            except ValueError:
                logger.warning("zapier_setting_unparseable", key=_key(field), value=raw)
        return ZapierSettings(**values)

    async def update(self, patch: ZapierSettingsUpdate) -> ZapierSettings:
        """Persist the provided fields and return the new effective settings.

        Raises:
            WebhookConfigurationError: If the result would be enabled without a URL
        """
        changes = {
            field: ("" if value is None else value)
            for field, value in patch.model_dump(exclude_unset=True).items()
            if value is not None or field in _CLEARABLE
        }
        current = await self.get()
        merged = current.model_copy(update=changes)
        if merged.webhook_enabled and not merged.webhook_url:
            raise WebhookConfigurationError("A webhook URL is required to enable the integration")

        if changes:
            await self.repository.set_values({_key(k): _encode(v) for k, v in changes.items()})
            logger.info(
                "zapier_settings_updated",
                fields=sorted(changes),
                webhook_enabled=merged.webhook_enabled,
            )
        return merged

    @staticmethod
    def redact(settings: ZapierSettings) -> ZapierSettingsView:
        data = settings.model_dump(exclude={"webhook_secret"})
        return ZapierSettingsView(**data, has_webhook_secret=bool(settings.webhook_secret))
