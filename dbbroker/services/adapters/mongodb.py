"""MongoDB adapter: registered so the engine is recognised, but every call is refused."""

from typing import Any, Dict, List

from dbbroker.core.errors import FeatureDisabledError
from dbbroker.models.descriptors import Descriptor, EngineType
from dbbroker.services.adapters.base import ConnectionTestResult, EngineAdapter
from dbbroker.services.classifier import MONGODB_DISABLED_MESSAGE


class DisabledMongoAdapter(EngineAdapter):
    engine_type = EngineType.MONGODB

    def test_connection(self, descriptor: Descriptor) -> ConnectionTestResult:
        raise FeatureDisabledError(MONGODB_DISABLED_MESSAGE)

    def list_tables(self, descriptor: Descriptor) -> List[str]:
        raise FeatureDisabledError(MONGODB_DISABLED_MESSAGE)

    def fetch_sample_rows(self, descriptor: Descriptor, table_name: str, limit: int) -> List[Dict[str, Any]]:
        raise FeatureDisabledError(MONGODB_DISABLED_MESSAGE)
