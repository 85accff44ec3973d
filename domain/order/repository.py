"""
Order repository interfaces - what the lifecycle needs from the store.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import Order, Refund, OrderActivity, DeliveryStatus, OrderStatus


class OrderRepository(ABC):
    """Order store; updates are conditional on the previously read state."""

    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """Fetch an order by id"""
        pass

    @abstractmethod
    async def add(self, order: Order) -> Order:
        """Insert an order (orders are created by checkout; used by seeding and tests)"""
        pass

    @abstractmethod
    async def update_if_state(
        self,
        order_id: str,
        changes: dict,
        expected_status: OrderStatus,
        expected_delivery_status: Optional[DeliveryStatus],
    ) -> Optional[Order]:
        """Apply `changes` only if the row still holds the expected pair.

        Returns the updated order, or None when another writer got there first.
        """
        pass

    @abstractmethod
    async def list_open_deliveries(self, limit: int = 500) -> List[Order]:
        """Orders with a tracking number whose delivery is not finished"""
        pass

    @abstractmethod
    async def count_missed_pickups(self, seller_id: str, since: datetime) -> int:
        """Number of the seller's orders with a pickup failure after `since`"""
        pass

    @abstractmethod
    async def list_stale_pending_commits(self, before: datetime, limit: int = 200) -> List[Order]:
        """pending_commit orders created before `before`"""
        pass

    @abstractmethod
    async def list_stale_missed_pickups(self, before: datetime, limit: int = 200) -> List[Order]:
        """Orders left in pickup_failed since before `before`"""
        pass


class RefundRepository(ABC):

    @abstractmethod
    async def add(self, refund: Refund) -> Refund:
        """Insert a refund row"""
        pass

    @abstractmethod
    async def update(self, refund: Refund) -> Refund:
        """Persist status changes of a refund row"""
        pass

    @abstractmethod
    async def get_successful_for_order(self, order_id: str) -> Optional[Refund]:
        """The order's successful refund, if any"""
        pass

    @abstractmethod
    async def list_for_order(self, order_id: str) -> List[Refund]:
        """All refund attempts for an order, oldest first"""
        pass


class OrderActivityRepository(ABC):

    @abstractmethod
    async def add(self, activity: OrderActivity) -> OrderActivity:
        """Append an audit entry"""
        pass

    @abstractmethod
    async def list_for_order(self, order_id: str) -> List[OrderActivity]:
        """Audit trail of an order, oldest first"""
        pass
