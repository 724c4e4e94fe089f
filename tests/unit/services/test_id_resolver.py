"""Unit tests for batch reference resolution."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront_sync.infrastructure.database.models import Customer, Product
from storefront_sync.services.id_resolver import IdResolver, ReferenceMaps
from storefront_sync.services.payloads import OrderPayload, ProductPayload


def _order(customer_id: int, product_ids: list[int]) -> OrderPayload:
    return OrderPayload.model_validate(
        {
            "wc_order_id": 1,
            "date_created": "2026-02-01T00:00:00Z",
            "status": "completed",
            "total": 1.0,
            "customer_id": customer_id,
            "items": [{"wc_product_id": pid} for pid in product_ids],
        }
    )


class TestReferenceMaps:
    def test_sentinels_never_resolve(self) -> None:
        refs = ReferenceMaps(maps={"customers": {0: "zero", -1: "neg"}})
        assert refs.resolve("customers", 0) is None
        assert refs.resolve("customers", -1) is None
        assert refs.resolve("customers", None) is None

    def test_unknown_id_resolves_to_none(self) -> None:
        refs = ReferenceMaps(maps={"customers": {5: "abc"}})
        assert refs.resolve("customers", 5) == "abc"
        assert refs.resolve("customers", 6) is None
        assert refs.resolve("products", 5) is None


@pytest.mark.asyncio
async def test_resolves_known_references_per_tenant(
    session_factory: async_sessionmaker[AsyncSession], tenant_id: str, other_tenant_id: str
) -> None:
    async with session_factory() as session, session.begin():
        await session.execute(
            insert(Customer),
            [
                {"id": "cust-a", "tenant_id": tenant_id, "external_id": 7},
                {"id": "cust-other", "tenant_id": other_tenant_id, "external_id": 8},
            ],
        )
        await session.execute(
            insert(Product),
            [{"id": "prod-a", "tenant_id": tenant_id, "external_id": 11, "name": "Mug"}],
        )

    async with session_factory() as session:
        refs = await IdResolver().resolve(
            session, tenant_id, [_order(7, [11, 12]), _order(8, [0])]
        )

    assert refs.resolve("customers", 7) == "cust-a"
    # Rows of another tenant are invisible
    assert refs.resolve("customers", 8) is None
    assert refs.resolve("products", 11) == "prod-a"
    assert refs.resolve("products", 12) is None


@pytest.mark.asyncio
async def test_one_query_per_referenced_table() -> None:
    resolver = IdResolver()
    resolver.fetch_ids = AsyncMock(return_value={})

    await resolver.resolve(AsyncMock(), "tenant", [_order(3, [4, 4, 5]), _order(3, [5])])

    tables = sorted(call.args[1] for call in resolver.fetch_ids.await_args_list)
    assert tables == ["customers", "products"]
    calls = {call.args[1]: call.args[3] for call in resolver.fetch_ids.await_args_list}
    assert calls["customers"] == {3}
    assert calls["products"] == {4, 5}


@pytest.mark.asyncio
async def test_no_query_when_batch_has_only_sentinels() -> None:
    resolver = IdResolver()
    resolver.fetch_ids = AsyncMock(return_value={})
    products = [
        ProductPayload.model_validate({"wc_product_id": 1, "name": "A", "category_id": 0}),
        ProductPayload.model_validate({"wc_product_id": 2, "name": "B"}),
    ]

    refs = await resolver.resolve(AsyncMock(), "tenant", products)

    resolver.fetch_ids.assert_not_awaited()
    assert refs.maps == {}
