"""
Supplier registry.

Built once at process start from the supplier configuration and handed to
every component that needs to resolve a supplier. The set of suppliers
only changes through an explicit ``reload``.
"""
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional

from ..config import AppSettings, get_settings
from ..domain.entities import SupplierConfig, SupplierMode, TenantConfig
from ..domain.exceptions import ConfigurationException, UnknownSupplierException
from .base import PollingAdapter, SupplierAdapter
from .dejong import DejongAdapter
from .franke import FrankeAdapter
from .loader import SupplierConfigLoader
from .schaerer import SchaererAdapter
from .wmf import WMFAdapter

logger = logging.getLogger(__name__)


AdapterFactory = Callable[[SupplierConfig, AppSettings], SupplierAdapter]

ADAPTER_FACTORIES: Mapping[str, AdapterFactory] = MappingProxyType({
    "wmf": lambda config, settings: WMFAdapter(
        config, allowed_webhook_rate=settings.ingestion.allowed_webhook_rate
    ),
    "schaerer": lambda config, settings: SchaererAdapter(config),
    "franke": lambda config, settings: FrankeAdapter(
        config, allowed_webhook_rate=settings.ingestion.allowed_webhook_rate
    ),
    "dejong": lambda config, settings: DejongAdapter(
        config,
        page_limit=settings.polling.page_limit,
        max_pages=settings.polling.max_pages,
        timeout=settings.polling.request_timeout,
    ),
})


class SupplierRegistry:
    """
    Lookup of supplier adapters by name.

    Provides:
    - Resolution of a supplier name to its adapter
    - Mode lookup (webhook or api-poll)
    - Tenant configuration lookup for delivery
    """

    def __init__(self, adapters: Iterable[SupplierAdapter] = ()):
        self._adapters: Mapping[str, SupplierAdapter] = self._index(adapters)

    @classmethod
    def from_configs(
        cls,
        configs: Iterable[SupplierConfig],
        settings: Optional[AppSettings] = None,
        factories: Optional[Mapping[str, AdapterFactory]] = None,
    ) -> "SupplierRegistry":
        """
        Create a registry from supplier configurations.

        Raises:
            ConfigurationException: If a supplier names an unknown adapter
                or its adapter's mode disagrees with the configured mode.
        """
        return cls(cls._build_adapters(configs, settings, factories))

    @classmethod
    def from_file(
        cls,
        file_path: Path,
        settings: Optional[AppSettings] = None,
    ) -> "SupplierRegistry":
        settings = settings or get_settings()
        configs = SupplierConfigLoader.from_settings(settings).load_from_file(file_path)
        registry = cls.from_configs(configs, settings)
        logger.info(f"Initialized supplier registry with {len(registry)} suppliers")
        return registry

    @staticmethod
    def _build_adapters(
        configs: Iterable[SupplierConfig],
        settings: Optional[AppSettings],
        factories: Optional[Mapping[str, AdapterFactory]],
    ) -> List[SupplierAdapter]:
        settings = settings or get_settings()
        factories = factories if factories is not None else ADAPTER_FACTORIES

        adapters = []
        for config in configs:
            if not config.enabled:
                logger.info(f"Supplier '{config.name}' is disabled, not registering")
                continue

            factory = factories.get(config.adapter)
            if factory is None:
                raise ConfigurationException(
                    f"Supplier '{config.name}' uses unknown adapter '{config.adapter}'",
                    details={"supplier": config.name, "adapter": config.adapter},
                )

            adapter = factory(config, settings)
            if adapter.mode != config.mode:
                raise ConfigurationException(
                    f"Supplier '{config.name}' is configured as {config.mode.value} "
                    f"but adapter '{config.adapter}' works in {adapter.mode.value} mode",
                    details={"supplier": config.name},
                )
            adapters.append(adapter)
        return adapters

    @staticmethod
    def _index(adapters: Iterable[SupplierAdapter]) -> Mapping[str, SupplierAdapter]:
        indexed: Dict[str, SupplierAdapter] = {}
        for adapter in adapters:
            key = adapter.name.lower()
            if key in indexed:
                raise ValueError(f"Supplier '{key}' is already registered")
            indexed[key] = adapter
            logger.debug(f"Registered supplier: {key} (mode={adapter.mode.value})")
        return MappingProxyType(indexed)

    def reload(
        self,
        configs: Iterable[SupplierConfig],
        settings: Optional[AppSettings] = None,
    ) -> None:
        """
        Replace the registered suppliers.

        The new set is fully built before it becomes visible; a failing
        configuration leaves the current set in place.
        """
        adapters = self._index(self._build_adapters(configs, settings, None))
        previous = set(self._adapters)
        self._adapters = adapters
        logger.info(
            f"Supplier registry reloaded: {len(adapters)} suppliers "
            f"(added={sorted(set(adapters) - previous)}, "
            f"removed={sorted(previous - set(adapters))})"
        )

    def resolve(self, name: str) -> SupplierAdapter:
        """
        Get the adapter for a supplier.

        Raises:
            UnknownSupplierException: If the supplier is not registered.
        """
        adapter = self._adapters.get((name or "").lower())
        if adapter is None:
            raise UnknownSupplierException(name)
        return adapter

    def get(self, name: str) -> Optional[SupplierAdapter]:
        return self._adapters.get((name or "").lower())

    def config_of(self, name: str) -> SupplierConfig:
        return self.resolve(name).config

    def mode_of(self, name: str) -> SupplierMode:
        return self.resolve(name).mode

    def list_by_mode(self, mode: SupplierMode) -> List[str]:
        return sorted(name for name, adapter in self._adapters.items() if adapter.mode == mode)

    def polling_adapters(self) -> List[PollingAdapter]:
        return [
            adapter for name, adapter in sorted(self._adapters.items())
            if adapter.mode == SupplierMode.API_POLL
        ]

    def tenant_config(self, supplier: str, tenant: str) -> Optional[TenantConfig]:
        adapter = self.get(supplier)
        if adapter is None:
            return None
        return adapter.config.tenant(tenant)

    def names(self) -> List[str]:
        return sorted(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)

    def __contains__(self, name: str) -> bool:
        return (name or "").lower() in self._adapters

    def __iter__(self) -> Iterator[SupplierAdapter]:
        return iter(self._adapters[name] for name in sorted(self._adapters))
