"""
Module: inventory_kernel.db.tenancy
Responsibility: Route every ledger and reconciliation call to exactly one
    tenant store through an explicit TenantContext.
Architecture position: Kernel > DB.  Imports db/engine.py and domain/clock.py.

Invariants enforced:
    - There is no ambient "current tenant".  Every service entrypoint that
      touches persisted state receives a TenantContext.
    - One engine per tenant store, created lazily and reused.
    - A TenantContext only ever opens sessions on its own store, so no
      cross-tenant read can happen inside a single call.

Failure modes:
    - ConfigurationError when the URL resolver does not know the tenant.
"""

import atexit
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Generator

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.db.engine import (
    create_session_factory,
    create_store_engine,
    create_tables,
    session_scope,
)
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.exceptions import ConfigurationError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.tenancy")


@dataclass(frozen=True)
class TenantContext:
    """
    Handle on one tenant's store.

    Contract:
        Passed explicitly into every operation.  ``session_scope()`` opens a
        committed-or-rolled-back transaction on this tenant's store only.
    """

    tenant_id: str
    session_factory: sessionmaker[Session] = field(repr=False)
    clock: Clock = field(default_factory=SystemClock, repr=False)

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        with session_scope(self.session_factory) as session:
            yield session


class TenantStoreRegistry:
    """
    Lazily builds and caches one engine per tenant store.

    Contract:
        ``url_resolver(tenant_id)`` returns the tenant's database URL or
        None when the tenant is unknown.
    """

    def __init__(
        self,
        url_resolver: Callable[[str], str | None],
        clock: Clock | None = None,
        create_schema: bool = False,
        echo: bool = False,
    ):
        self._url_resolver = url_resolver
        self._clock = clock or SystemClock()
        self._create_schema = create_schema
        self._echo = echo
        self._engines: dict[str, Engine] = {}
        self._factories: dict[str, sessionmaker[Session]] = {}
        self._lock = threading.Lock()
        _registries.append(self)

    def context_for(self, tenant_id: str) -> TenantContext:
        """Return a TenantContext bound to ``tenant_id``'s store."""
        with self._lock:
            factory = self._factories.get(tenant_id)
            if factory is None:
                url = self._url_resolver(tenant_id)
                if not url:
                    raise ConfigurationError(
                        f"No store configured for tenant {tenant_id}",
                        tenant_id=tenant_id,
                    )
                engine = create_store_engine(url, echo=self._echo)
                if self._create_schema:
                    create_tables(engine)
                factory = create_session_factory(engine)
                self._engines[tenant_id] = engine
                self._factories[tenant_id] = factory
                logger.info("tenant_store_opened", extra={"tenant_id": tenant_id})
        return TenantContext(tenant_id=tenant_id, session_factory=factory, clock=self._clock)

    def engine_for(self, tenant_id: str) -> Engine:
        self.context_for(tenant_id)
        return self._engines[tenant_id]

    def dispose_all(self) -> None:
        with self._lock:
            for engine in self._engines.values():
                engine.dispose()
            self._engines.clear()
            self._factories.clear()


_registries: list[TenantStoreRegistry] = []


def _atexit_dispose() -> None:
    """Release pooled connections of every registry on process exit."""
    for registry in _registries:
        registry.dispose_all()


atexit.register(_atexit_dispose)
