import asyncio
from dataclasses import dataclass
from typing import Optional

from . import config
from .errors import GatewayUnavailable
from .helpers import now_ts
from .infra.logging import get_logger
from .lifecycle import OrderLifecycle
from .model import Order, Store
from .model.kv import KVStore
from .payments import PaymentAdapter

log = get_logger("reconcile")


def k_attempts(order_id: int) -> str:
    return f"recon:attempts:{order_id}"


@dataclass
class SweepStats:
    checked: int = 0
    applied: int = 0
    failed: int = 0
    cancelled: int = 0
    errors: int = 0


class Reconciler:
    """Polls the gateway for pending orders whose webhook never arrived.

    Each "not paid yet" answer counts as one attempt; the order is marked
    failed on the last allowed attempt. Gateway errors are not counted.
    """

    def __init__(self, store: Store, gateway: PaymentAdapter,
                 lifecycle: OrderLifecycle, kv: KVStore,
                 interval: float = config.RECONCILE_INTERVAL_SECONDS,
                 max_attempts: int = config.RECONCILE_MAX_ATTEMPTS,
                 min_age: float = config.RECONCILE_MIN_AGE_SECONDS,
                 max_age: float = config.RECONCILE_MAX_AGE_SECONDS,
                 check_delay: float = config.RECONCILE_CHECK_DELAY_SECONDS
                 ) -> None:
        self.store = store
        self.gateway = gateway
        self.lifecycle = lifecycle
        self.kv = kv
        self.interval = interval
        self.max_attempts = max_attempts
        self.min_age = min_age
        self.max_age = max_age
        self.check_delay = check_delay
        self._task: Optional[asyncio.Task] = None

    async def sweep(self, now: Optional[float] = None) -> SweepStats:
        now = now_ts() if now is None else now
        orders = await self.store.pending_orders_for_reconcile(
            self.gateway.reference_prefix,
            created_after=now - self.max_age,
            created_before=now - self.min_age,
        )
        stats = SweepStats()
        for i, order in enumerate(orders):
            if i and self.check_delay:
                await asyncio.sleep(self.check_delay)
            await self._check(order, stats)
        if orders:
            log.info("sweep.done", pending=len(orders), **vars(stats))
        return stats

    async def _check(self, order: Order, stats: SweepStats) -> None:
        stats.checked += 1
        try:
            status = await self.gateway.check_status(order.provider_reference)
        except GatewayUnavailable as e:
            stats.errors += 1
            log.warning("check.gateway_error", order_id=order.id,
                        error=e.message)
            return

        if status["status"] == "paid":
            result = await self.lifecycle.apply_payment_success(
                order.id, status["payment_id"]
            )
            await self.kv.delete(k_attempts(order.id))
            if result.applied:
                stats.applied += 1
            return
        if status["status"] == "cancelled":
            await self.lifecycle.mark_cancelled(order.id, "link cancelled")
            await self.kv.delete(k_attempts(order.id))
            stats.cancelled += 1
            return
        if status["status"] == "expired":
            await self.lifecycle.mark_failed(order.id, "link expired")
            await self.kv.delete(k_attempts(order.id))
            stats.failed += 1
            return

        attempts = await self.kv.incr(k_attempts(order.id),
                                      ttl=int(self.max_age))
        if attempts >= self.max_attempts:
            await self.lifecycle.mark_failed(
                order.id, f"unpaid after {attempts} checks"
            )
            await self.kv.delete(k_attempts(order.id))
            stats.failed += 1

    # ----------------------------
    # background task
    # ----------------------------
    async def run(self) -> None:
        while True:
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                # keep the loop alive; the next tick retries
                log.exception("sweep.failed")
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
