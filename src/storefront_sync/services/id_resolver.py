"""Batch resolution of storefront ids to internal row ids."""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_sync.infrastructure.database.models import Base, Category, Customer, Product
from storefront_sync.services.payloads import Payload, is_reference

logger = structlog.get_logger()

REFERENCE_MODELS: dict[str, type[Base]] = {
    "customers": Customer,
    "products": Product,
    "categories": Category,
}


@dataclass
class ReferenceMaps:
    """external id -> internal id, one map per referenced table."""

    maps: dict[str, dict[int, str]] = field(default_factory=dict)

    def resolve(self, table: str, external_id: int | None) -> str | None:
        """Internal id for ``external_id``; None for sentinels and unknown ids."""
        if not is_reference(external_id):
            return None
        return self.maps.get(table, {}).get(external_id)


class IdResolver:
    """Resolves every reference in a batch with one query per table.

    Unresolved references are not errors: referential integrity is advisory,
    so a missing customer or product simply becomes NULL.
    """

    async def fetch_ids(
        self,
        session: AsyncSession,
        table: str,
        tenant_id: str,
        external_ids: Iterable[int],
    ) -> dict[int, str]:
        """Map the given external ids of ``table`` to internal ids for a tenant."""
        wanted = sorted(set(external_ids))
        if not wanted:
            return {}

        model = REFERENCE_MODELS[table]
        result = await session.execute(
            select(model.id, model.external_id).where(
                model.tenant_id == tenant_id,
                model.external_id.in_(wanted),
            )
        )
        return {row.external_id: row.id for row in result}

    async def resolve(
        self,
        session: AsyncSession,
        tenant_id: str,
        records: Sequence[Payload],
    ) -> ReferenceMaps:
        """Collect the distinct, non-sentinel references of a batch and look them up."""
        wanted: dict[str, set[int]] = defaultdict(set)
        for record in records:
            for table, external_ids in record.references().items():
                wanted[table].update(i for i in external_ids if is_reference(i))

        refs = ReferenceMaps()
        for table, external_ids in wanted.items():
            if not external_ids:
                continue
            refs.maps[table] = await self.fetch_ids(session, table, tenant_id, external_ids)

        logger.debug(
            "Resolved batch references",
            tenant_id=tenant_id,
            requested={t: len(ids) for t, ids in wanted.items()},
            resolved={t: len(m) for t, m in refs.maps.items()},
        )
        return refs
