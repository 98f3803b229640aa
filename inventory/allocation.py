"""
Consignment batch allocation.

Sales consume batches oldest shipment first (FIFO) and reversals give
quantity back newest shipment first (LIFO). Reversal does not remember
which batches a sale originally drew from, so with several batches
involved it is not an exact inverse of consumption.
"""

from dataclasses import dataclass, field

from inventory.models import Consignment

ACTIVE = Consignment.Status.ACTIVE


@dataclass(frozen=True)
class Allocation:
    consignment_id: object
    quantity: int


@dataclass(frozen=True)
class AllocationPlan:
    requested: int
    allocations: tuple = field(default_factory=tuple)

    @property
    def allocated(self):
        return sum(allocation.quantity for allocation in self.allocations)

    @property
    def unallocated(self):
        return max(self.requested - self.allocated, 0)

    def as_dict(self):
        return {allocation.consignment_id: allocation.quantity for allocation in self.allocations}


def available_quantity(batch) -> int:
    return batch.quantity - batch.sold_quantity - batch.returned_quantity


def _by_date(batches):
    # sorted() is stable, so batches sharing a date keep the caller's order.
    return sorted(batches, key=lambda batch: batch.date)


def plan_consumption(batches, quantity) -> AllocationPlan:
    """Spread ``quantity`` over active batches, oldest first, up to each batch's available balance."""
    remaining = int(quantity)
    allocations = []
    for batch in _by_date(batches):
        if remaining <= 0:
            break
        if batch.status != ACTIVE:
            continue
        take = min(remaining, available_quantity(batch))
        if take <= 0:
            continue
        allocations.append(Allocation(batch.id, take))
        remaining -= take
    return AllocationPlan(requested=max(int(quantity), 0), allocations=tuple(allocations))


def plan_reversal(batches, quantity) -> AllocationPlan:
    """Give ``quantity`` back to batches of any status, newest first, up to each batch's sold count."""
    remaining = int(quantity)
    allocations = []
    for batch in reversed(_by_date(batches)):
        if remaining <= 0:
            break
        take = min(remaining, batch.sold_quantity)
        if take <= 0:
            continue
        allocations.append(Allocation(batch.id, take))
        remaining -= take
    return AllocationPlan(requested=max(int(quantity), 0), allocations=tuple(allocations))


def apply_consumption(batches, plan: AllocationPlan):
    """Add the planned quantities to ``sold_quantity``; returns the batches that changed."""
    return _apply(batches, plan, sign=1)


def apply_reversal(batches, plan: AllocationPlan):
    return _apply(batches, plan, sign=-1)


def _apply(batches, plan, *, sign):
    by_id = {batch.id: batch for batch in batches}
    changed = []
    for allocation in plan.allocations:
        batch = by_id[allocation.consignment_id]
        batch.sold_quantity += sign * allocation.quantity
        changed.append(batch)
    return changed


def load_batches(salon_id, product_id, *, lock=False):
    """Every batch for the salon/product pair ordered by shipment date then creation time."""
    qs = Consignment.objects.filter(salon_id=salon_id, product_id=product_id).order_by("date", "created_at")
    if lock:
        qs = qs.select_for_update()
    return list(qs)


def pool_available(salon_id, product_id) -> int:
    return sum(
        max(available_quantity(batch), 0)
        for batch in load_batches(salon_id, product_id)
        if batch.status == ACTIVE
    )
