"""
Supplier configuration loader.

Loads supplier definitions (mode, tenants, guard settings) from YAML.
String values may reference environment variables as ``${NAME}``.
"""
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from ..config import AppSettings
from ..domain.entities import (
    RateLimitPolicy,
    SupplierConfig,
    SupplierMode,
    TenantConfig,
)
from ..domain.exceptions import ConfigurationException

logger = logging.getLogger(__name__)

_ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

_MODE_ALIASES = {
    "webhook": SupplierMode.WEBHOOK,
    "api": SupplierMode.API_POLL,
    "api-poll": SupplierMode.API_POLL,
    "api_poll": SupplierMode.API_POLL,
}


class SupplierConfigLoader:
    """
    Parses supplier configuration files into SupplierConfig objects.

    Any malformed entry aborts loading; a half-configured supplier set is
    never returned.
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        default_rate_limit: Optional[RateLimitPolicy] = None,
    ):
        self._environ = environ if environ is not None else os.environ
        self._default_rate_limit = default_rate_limit or RateLimitPolicy()

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "SupplierConfigLoader":
        """Loader whose fallback rate limit comes from the ingestion settings."""
        ingestion = settings.ingestion
        return cls(default_rate_limit=RateLimitPolicy(
            requests=ingestion.default_rate_limit,
            per_seconds=ingestion.default_rate_window_seconds,
        ))

    def load_from_file(self, file_path: Path) -> List[SupplierConfig]:
        """
        Load suppliers from a YAML file.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ConfigurationException: If an entry is invalid.
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"Supplier config file not found: {file_path}")

        logger.info(f"Loading suppliers from {file_path}")

        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        return self.load_from_dict(data or {})

    def load_from_dict(self, data: Dict[str, Any]) -> List[SupplierConfig]:
        suppliers_data = data.get("suppliers") or {}
        if not isinstance(suppliers_data, dict):
            raise ConfigurationException("'suppliers' must be a mapping of name -> definition")

        suppliers = []
        for name, supplier_data in suppliers_data.items():
            supplier = self._parse_supplier(str(name), supplier_data or {})
            suppliers.append(supplier)
            logger.debug(
                f"Loaded supplier: {supplier.name} "
                f"(mode={supplier.mode.value}, tenants={len(supplier.tenants)})"
            )

        if not suppliers:
            logger.warning("No suppliers defined")
        return suppliers

    def _parse_supplier(self, name: str, data: Dict[str, Any]) -> SupplierConfig:
        name = name.lower()
        data = self._expand(data)

        mode_value = str(data.get("mode", "webhook")).lower()
        mode = _MODE_ALIASES.get(mode_value)
        if mode is None:
            raise ConfigurationException(
                f"Supplier '{name}' has unknown mode '{mode_value}'",
                details={"supplier": name, "mode": mode_value},
            )

        options = dict(data.get("api") or {})
        for key, value in (data.get("options") or {}).items():
            options.setdefault(key, value)

        return SupplierConfig(
            name=name,
            mode=mode,
            adapter=str(data.get("adapter", name)).lower(),
            display_name=data.get("name"),
            enabled=bool(data.get("enabled", True)),
            subscription_name=data.get("subscription_name") or None,
            allowed_ips=tuple(ip for ip in (data.get("allowed_ips") or []) if ip),
            skip_ip_check=bool(data.get("skip_ip_check", False)),
            rate_limit=self._parse_rate_limit(name, data.get("rate_limit")),
            tenants=self._parse_tenants(name, data.get("tenants") or {}),
            options=options,
        )

    def _parse_rate_limit(self, supplier: str, value: Any) -> RateLimitPolicy:
        """
        Accepts ``{requests, per_seconds}`` or the compact
        ``"<requests>,<minutes>"`` form.
        """
        if value is None:
            return self._default_rate_limit

        try:
            if isinstance(value, dict):
                policy = RateLimitPolicy(
                    requests=int(value["requests"]),
                    per_seconds=int(value.get("per_seconds", 60)),
                )
            else:
                requests, _, minutes = str(value).partition(",")
                policy = RateLimitPolicy(
                    requests=int(requests),
                    per_seconds=int(minutes or 1) * 60,
                )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationException(
                f"Supplier '{supplier}' has invalid rate_limit {value!r}",
                details={"supplier": supplier},
            ) from e

        if policy.requests <= 0 or policy.per_seconds <= 0:
            raise ConfigurationException(
                f"Supplier '{supplier}' rate_limit must be positive",
                details={"supplier": supplier},
            )
        return policy

    def _parse_tenants(self, supplier: str, data: Dict[str, Any]) -> Dict[str, TenantConfig]:
        if not isinstance(data, dict):
            raise ConfigurationException(
                f"Supplier '{supplier}' tenants must be a mapping",
                details={"supplier": supplier},
            )

        tenants = {}
        for tenant_name, tenant_data in data.items():
            tenant_data = tenant_data or {}
            key = str(tenant_name).lower()
            tenants[key] = TenantConfig(
                name=key,
                destination_url=tenant_data.get("webhook_url") or tenant_data.get("destination_url") or None,
                api_key=tenant_data.get("api_key") or None,
            )
            if tenants[key].destination_url is None:
                # Not fatal at load time: deliveries to this tenant fail as configuration errors.
                logger.warning(f"Tenant '{key}' of supplier '{supplier}' has no destination URL")
        return tenants

    def _expand(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: self._expand(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._expand(v) for v in value]
        if isinstance(value, str):
            return self._expand_string(value)
        return value

    def _expand_string(self, value: str) -> Optional[str]:
        whole = _ENV_REFERENCE.fullmatch(value)
        if whole:
            # A value that is only a reference resolves to None when unset
            resolved = self._environ.get(whole.group(1))
            return resolved if resolved not in (None, "") else whole.group(2)

        return _ENV_REFERENCE.sub(
            lambda m: self._environ.get(m.group(1)) or (m.group(2) or ""),
            value,
        )
