"""
Source Registry - Adapters and Their Priority Lists

The SourceRegistry owns every SourceAdapter instance and the ordered list of
adapter names to try for each data kind. The FailoverFetcher asks it for the
adapters of one kind, in priority order, and never sees configuration.

Design Benefits:
    - Single source of truth for available adapters
    - Priority lists per data kind (price / candle / orderbook), changeable at
      runtime with set_priority()
    - Sources can be disabled at runtime without losing their place in the
      priority lists (set_enabled)
    - Centralized lifecycle management (initialize/shutdown)

Priority changes never affect a fetch already in progress: sources_for()
returns a fresh list and the fetcher snapshots it before the first attempt.

Example Usage:
    registry = build_default_registry()
    await registry.initialize_all()

    adapters = registry.sources_for(DataKind.CANDLE)   # [OKXSource, BinanceSource, ...]
    registry.set_priority(DataKind.PRICE, ["okx", "binance"])
"""

from typing import Dict, Iterable, List, Optional, Set, Union

from core.config import Settings, settings as default_settings
from core.logging import logger
from core.schemas import CAPABILITY_FOR_KIND, DataKind, SourceDescriptor, SourceStatus
from core.source_adapter import SourceAdapter


class SourceRegistry:
    """
    Central registry of source adapters.

    Attributes:
        sources: Mapping of adapter name to adapter instance
        priorities: Mapping of DataKind to ordered adapter names

    Example:
        >>> registry = SourceRegistry([BinanceSource(), OKXSource()])
        >>> registry.set_priority("price", ["okx", "binance"])
        >>> [a.name for a in registry.sources_for("price")]
        ['okx', 'binance']
    """

    def __init__(
        self,
        adapters: Optional[Iterable[SourceAdapter]] = None,
        priorities: Optional[Dict[Union[DataKind, str], List[str]]] = None
    ):
        self.sources: Dict[str, SourceAdapter] = {}
        self.priorities: Dict[DataKind, List[str]] = {kind: [] for kind in DataKind}
        self.disabled: Set[str] = set()

        for adapter in adapters or []:
            self.register(adapter)

        if priorities:
            for kind, names in priorities.items():
                self.set_priority(kind, names)
        else:
            # Registration order for every kind the adapter supports
            for kind in DataKind:
                self.priorities[kind] = [
                    name for name, adapter in self.sources.items()
                    if adapter.supports(CAPABILITY_FOR_KIND[kind])
                ]

        logger.info(f"SourceRegistry initialized with {len(self.sources)} source(s): {', '.join(self.sources.keys())}")

    # ============================================
    # Registration & Retrieval
    # ============================================

    def register(self, adapter: SourceAdapter) -> None:
        """
        Raises:
            ValueError: If an adapter with the same name is already registered
        """
        if adapter.name in self.sources:
            raise ValueError(f"Source '{adapter.name}' is already registered")
        self.sources[adapter.name] = adapter

    def get_source(self, name: str) -> SourceAdapter:
        """
        Get an adapter by name (case-insensitive).

        Raises:
            ValueError: If the source is not registered
        """
        name = name.lower()
        if name not in self.sources:
            available = ", ".join(self.sources.keys())
            raise ValueError(f"Source '{name}' is not registered. Available sources: {available}")
        return self.sources[name]

    def has_source(self, name: str) -> bool:
        return name.lower() in self.sources

    def list_sources(self) -> List[str]:
        return list(self.sources.keys())

    # ============================================
    # Priority Lists
    # ============================================

    def sources_for(self, kind: Union[DataKind, str]) -> List[SourceAdapter]:
        """Enabled adapters for a data kind, highest priority first (a new list each call)."""
        return [
            self.sources[name]
            for name in self.priorities[DataKind(kind)]
            if name not in self.disabled
        ]

    def set_priority(self, kind: Union[DataKind, str], names: List[str]) -> None:
        """
        Replace the priority list for one data kind.

        Raises:
            ValueError: Unknown kind, unregistered source, or duplicate name
        """
        kind = DataKind(kind)
        ordered = [name.lower() for name in names]

        unknown = [name for name in ordered if name not in self.sources]
        if unknown:
            raise ValueError(f"Cannot prioritize unregistered source(s): {', '.join(unknown)}")
        if len(set(ordered)) != len(ordered):
            raise ValueError(f"Duplicate source in {kind.value} priority list: {ordered}")

        self.priorities[kind] = ordered
        logger.info(f"{kind.value} source priority: {' > '.join(ordered) or '(none)'}")

    def descriptors(self, kind: Union[DataKind, str]) -> List[SourceDescriptor]:
        return [
            adapter.describe(priority)
            for priority, adapter in enumerate(self.sources_for(kind))
        ]

    # ============================================
    # Enable / Disable
    # ============================================

    def set_enabled(self, name: str, enabled: bool) -> None:
        """
        Take a source out of (or back into) every failover list.

        A disabled source keeps its position, so re-enabling it restores the
        previous order.

        Raises:
            ValueError: If the source is not registered
        """
        name = self.get_source(name).name
        if enabled:
            self.disabled.discard(name)
        else:
            self.disabled.add(name)
        logger.info(f"Source {name} {'enabled' if enabled else 'disabled'}")

    def is_enabled(self, name: str) -> bool:
        return name.lower() not in self.disabled

    def status(self) -> List[SourceStatus]:
        """
        Registration-order status of every source.

        ranks maps each data kind to the source's position in that kind's
        priority list (None if the source is not listed for it).
        """
        statuses = []
        for name, adapter in self.sources.items():
            ranks = {
                kind.value: (self.priorities[kind].index(name) if name in self.priorities[kind] else None)
                for kind in DataKind
            }
            statuses.append(SourceStatus(
                name=name,
                enabled=name not in self.disabled,
                capabilities=dict(adapter.capabilities),
                ranks=ranks,
            ))
        return statuses

    # ============================================
    # Lifecycle Management
    # ============================================

    async def initialize_all(self) -> None:
        """Initialize every adapter; one failing adapter does not stop the rest."""
        logger.info("Initializing all sources...")

        for name, adapter in self.sources.items():
            try:
                await adapter.initialize()
            except Exception as e:
                logger.error(f"✗ Failed to initialize {name}: {e}")

    async def shutdown_all(self) -> None:
        logger.info("Shutting down all sources...")

        for name, adapter in self.sources.items():
            try:
                await adapter.shutdown()
            except Exception as e:
                logger.error(f"✗ Error shutting down {name}: {e}")

        logger.info("All sources shut down")

    async def health_check_all(self) -> Dict[str, bool]:
        """
        Example:
            >>> await registry.health_check_all()
            {'binance': True, 'okx': False}
        """
        health_status = {}
        for name, adapter in self.sources.items():
            try:
                health_status[name] = await adapter.health_check()
            except Exception as e:
                logger.error(f"Health check failed for {name}: {e}")
                health_status[name] = False

        return health_status

    # ============================================
    # Utility Methods
    # ============================================

    def __repr__(self) -> str:
        return f"<SourceRegistry(sources={list(self.sources.keys())})>"

    def __len__(self) -> int:
        return len(self.sources)


# ============================================
# Default Registry Factory
# ============================================

def build_adapter(name: str, config: Settings) -> SourceAdapter:
    """
    Create one adapter from configuration.

    Raises:
        ValueError: If the name is not a known source
    """
    # Import here to avoid circular imports
    # (each exchange package imports from core)
    from exchanges.backend_proxy import BackendProxySource
    from exchanges.binance import BinanceSource
    from exchanges.coingecko import CoinGeckoSource
    from exchanges.okx import OKXSource

    timeout = config.fetch_timeout
    factories = {
        "binance": lambda: BinanceSource(base_url=config.binance_base_url, timeout=timeout),
        "okx": lambda: OKXSource(base_url=config.okx_base_url, relays=config.okx_relays_list, timeout=timeout),
        "coingecko": lambda: CoinGeckoSource(base_url=config.coingecko_base_url, timeout=timeout),
        "backend_proxy": lambda: BackendProxySource(base_url=config.backend_proxy_url, timeout=timeout),
    }
    if name not in factories:
        raise ValueError(f"Unknown source '{name}'. Must be one of: {', '.join(factories)}")
    return factories[name]()


def build_default_registry(config: Optional[Settings] = None) -> SourceRegistry:
    """
    Build a registry holding every adapter named in any configured priority list.

    Example:
        >>> registry = build_default_registry()
        >>> registry.list_sources()
        ['binance', 'okx', 'coingecko']
    """
    config = config or default_settings

    names: List[str] = []
    for kind in DataKind:
        for name in config.source_order(kind.value):
            if name not in names:
                names.append(name)

    adapters = [build_adapter(name, config) for name in names]
    priorities = {kind: config.source_order(kind.value) for kind in DataKind}
    return SourceRegistry(adapters, priorities)
