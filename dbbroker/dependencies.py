"""
Composition root.

Builds the process-wide Broker and its collaborators once. Routes receive
them through FastAPI ``Depends``; tests swap them via
``app.dependency_overrides``.
"""

from typing import Optional

from dbbroker.auth.revocation import RevokedTokenRegistry
from dbbroker.config import settings
from dbbroker.services.adapters import get_adapter_registry
from dbbroker.services.broker import Broker
from dbbroker.services.connection_store import ConnectionStore
from dbbroker.services.lifecycle import LifecycleManager

_revocations: Optional[RevokedTokenRegistry] = None
_broker: Optional[Broker] = None


def get_revocation_registry() -> RevokedTokenRegistry:
    """Get the singleton RevokedTokenRegistry instance."""
    global _revocations
    if _revocations is None:
        _revocations = RevokedTokenRegistry(revoked=settings.revoked_user_ids)
    return _revocations


def get_broker() -> Broker:
    """Get the singleton Broker instance."""
    global _broker
    if _broker is None:
        store = ConnectionStore()
        adapters = get_adapter_registry()
        _broker = Broker(
            store=store,
            adapters=adapters,
            lifecycle=LifecycleManager(store, adapters),
            revocations=get_revocation_registry(),
        )
    return _broker
