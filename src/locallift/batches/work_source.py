from typing import Generic, Iterable, Protocol, Sequence, TypeVar

from locallift.batches.batch_models import BatchFilter, WorkItem
from locallift.main.logging import get_logger

logger = get_logger(__name__)

PayloadT = TypeVar("PayloadT")
PayloadT_co = TypeVar("PayloadT_co", covariant=True)


class WorkItemSource(Protocol[PayloadT_co]):
    async def load_items(self, batch_filter: BatchFilter) -> Sequence[WorkItem[PayloadT_co]]:
        """Return eligible items in deterministic order. Empty when nothing is due."""
        ...


class TenantGroup(Generic[PayloadT]):
    """Items of one tenant, in the order the source returned them."""

    __slots__ = ("tenant_id", "items")

    def __init__(self, tenant_id: str, items: list[WorkItem[PayloadT]]):
        self.tenant_id = tenant_id
        self.items = items

    def __len__(self) -> int:
        return len(self.items)

    def __repr__(self) -> str:
        return f"TenantGroup(tenant_id={self.tenant_id!r}, items={len(self.items)})"


def group_by_tenant(items: Iterable[WorkItem[PayloadT]]) -> list[TenantGroup[PayloadT]]:
    """Group items by tenant, keeping both group and item order stable."""
    groups: dict[str, TenantGroup[PayloadT]] = {}
    for item in items:
        group = groups.get(item.tenant_id)
        if group is None:
            group = groups[item.tenant_id] = TenantGroup(item.tenant_id, [])
        group.items.append(item)
    return list(groups.values())


def exclude_tenants(
    items: Sequence[WorkItem[PayloadT]],
    allowed_tenant_ids: set[str],
    reason: str,
) -> list[WorkItem[PayloadT]]:
    kept = [item for item in items if item.tenant_id in allowed_tenant_ids]
    excluded = {item.tenant_id for item in items} - allowed_tenant_ids
    if excluded:
        logger.info(
            f"Excluding {len(items) - len(kept)} items from {len(excluded)} tenants: {reason}",
            extra={"excluded_tenants": sorted(excluded), "reason": reason},
        )
    return kept

