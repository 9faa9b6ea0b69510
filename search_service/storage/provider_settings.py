"""Per-tenant provider and vector store settings.

Tenants configure their embedding/rerank providers in ``llm_configs`` and
may override vector store connection details in ``settings``. API keys are
stored encrypted by the settings UI; decrypting them is delegated to the
``decrypt_key`` callable supplied by the host application.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

from libs.common.db import Database
from libs.vector_store.base import VectorStoreSettings

logger = structlog.get_logger("search_service.storage.provider_settings")

KeyDecryptor = Callable[[str], str]

VECTOR_SETTING_KEYS = (
    "vector_host",
    "vector_port",
    "vector_collection",
    "vector_distance_metric",
)


def _identity(value: str) -> str:
    return value


@dataclass(frozen=True)
class ProviderConfig:
    """An OpenAI-compatible provider endpoint for one tenant."""
    config_type: str
    base_url: str
    api_key: str
    model: str
    enabled: bool = True
    timeout: Optional[float] = None  # seconds


class ProviderSettingsRepository:
    """Reads ``llm_configs`` and ``settings`` rows for a tenant."""

    def __init__(
        self,
        db: Database,
        default_vector_settings: VectorStoreSettings,
        decrypt_key: KeyDecryptor = _identity,
    ):
        self.db = db
        self.default_vector_settings = default_vector_settings
        self.decrypt_key = decrypt_key

    async def get_provider_config(self, tenant_id: int, config_type: str) -> Optional[ProviderConfig]:
        """Return the tenant's preferred config of ``config_type``.

        Default configs win, then lower ``priority`` values, then older rows.
        """
        row = await self.db.fetchrow(
            """
            SELECT base_url, api_key_encrypted, model, enabled, timeout
            FROM llm_configs
            WHERE user_id = $1 AND config_type = $2
            ORDER BY is_default DESC, priority ASC, id ASC
            LIMIT 1
            """,
            tenant_id,
            config_type,
        )
        if row is None:
            return None

        timeout_ms = row["timeout"]
        return ProviderConfig(
            config_type=config_type,
            base_url=row["base_url"].rstrip("/"),
            api_key=self.decrypt_key(row["api_key_encrypted"]),
            model=row["model"],
            enabled=bool(row["enabled"]),
            timeout=timeout_ms / 1000.0 if timeout_ms else None,
        )

    async def get_vector_settings(self, tenant_id: int) -> VectorStoreSettings:
        """Return the tenant's vector store settings, defaults filled in."""
        rows = await self.db.fetch(
            "SELECT key, value FROM settings WHERE user_id = $1 AND key = ANY($2::text[])",
            tenant_id,
            list(VECTOR_SETTING_KEYS),
        )
        values: Dict[str, str] = {row["key"]: row["value"] for row in rows}
        default = self.default_vector_settings

        port = default.port
        if values.get("vector_port"):
            try:
                port = int(values["vector_port"])
            except ValueError:
                logger.warning("Ignoring invalid vector_port setting", tenant_id=tenant_id, value=values["vector_port"])

        return VectorStoreSettings(
            host=values.get("vector_host") or default.host,
            port=port,
            collection=values.get("vector_collection") or default.collection,
            distance_metric=values.get("vector_distance_metric") or default.distance_metric,
        )
