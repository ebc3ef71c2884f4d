"""
Engine adapter registry.

Maps each EngineType to the adapter that serves it. The registry is
replaceable as a whole (tests inject fakes) or per engine via ``register``.
"""

from typing import Dict, Optional, Union

from dbbroker.core.errors import UnsupportedEngineError
from dbbroker.models.descriptors import EngineType
from dbbroker.services.adapters.base import (
    ConnectionTestResult,
    EngineAdapter,
    classify_engine_error,
)
from dbbroker.services.adapters.clickhouse import ClickHouseAdapter
from dbbroker.services.adapters.mongodb import DisabledMongoAdapter
from dbbroker.services.adapters.sql import SqlEngineAdapter

__all__ = [
    "AdapterRegistry",
    "ConnectionTestResult",
    "EngineAdapter",
    "classify_engine_error",
    "get_adapter_registry",
]


class AdapterRegistry:
    """Lookup table of engine adapters keyed by EngineType."""

    def __init__(self, adapters: Optional[Dict[EngineType, EngineAdapter]] = None):
        self._adapters: Dict[EngineType, EngineAdapter] = dict(adapters or {})

    @classmethod
    def default(cls) -> "AdapterRegistry":
        return cls({
            EngineType.POSTGRESQL: SqlEngineAdapter(EngineType.POSTGRESQL),
            EngineType.MYSQL: SqlEngineAdapter(EngineType.MYSQL),
            EngineType.CLICKHOUSE: ClickHouseAdapter(),
            EngineType.MONGODB: DisabledMongoAdapter(),
        })

    def register(self, engine_type: EngineType, adapter: EngineAdapter) -> None:
        self._adapters[engine_type] = adapter

    def get(self, engine_type: Union[EngineType, str]) -> EngineAdapter:
        try:
            return self._adapters[EngineType(engine_type)]
        except (KeyError, ValueError):
            raise UnsupportedEngineError(context={"engine_type": str(engine_type)})


# Singleton
_registry: Optional[AdapterRegistry] = None


def get_adapter_registry() -> AdapterRegistry:
    """Get the singleton AdapterRegistry instance."""
    global _registry
    if _registry is None:
        _registry = AdapterRegistry.default()
    return _registry
