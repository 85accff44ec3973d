"""
Order lifecycle repositories - SQLAlchemy implementations.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from domain.order.entity import (
    CANCEL_CLASS_STATUSES,
    TERMINAL_DELIVERY_STATUSES,
    DeliveryInfo,
    DeliveryStatus,
    Order,
    OrderActivity,
    OrderStatus,
    Refund,
    RefundStatus,
)
from domain.order.repository import OrderActivityRepository, OrderRepository, RefundRepository
from infrastructure.models.order import OrderActivityModel, OrderModel, RefundModel
from core.logging_config import get_logger


logger = get_logger(__name__)

_ORDER_COLUMNS = (
    "id", "buyer_id", "seller_id", "book_id", "status", "delivery_status", "total_amount",
    "currency", "payment_reference", "courier_service", "courier_booking_id", "tracking_number",
    "pickup_scheduled_at", "pickup_failed_at", "pickup_failure_reason", "rescheduled_at",
    "committed_at", "cancelled_at", "cancellation_reason", "declined_at", "decline_reason",
    "delivered_at", "buyer_email", "buyer_name", "seller_email", "seller_name", "book_title",
    "created_at", "updated_at",
)

_CLOSED_STATUSES = [s.value for s in CANCEL_CLASS_STATUSES] + [
    OrderStatus.COMPLETED.value,
    OrderStatus.DELIVERED.value,
]


def _column_value(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, DeliveryInfo):
        return value.to_dict()
    return value


class SQLAlchemyOrderRepository(OrderRepository):
    """Order repository backed by SQLAlchemy; updates are conditional."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        data = {name: getattr(model, name) for name in _ORDER_COLUMNS}
        data["delivery_info"] = DeliveryInfo.from_dict(model.delivery_info)
        return Order(**data)

    def _to_model(self, entity: Order) -> OrderModel:
        data = {name: _column_value(getattr(entity, name)) for name in _ORDER_COLUMNS}
        data["delivery_info"] = entity.delivery_info.to_dict()
        # let the column defaults stamp new rows
        for name in ("created_at", "updated_at"):
            if data[name] is None:
                data.pop(name)
        return OrderModel(**data)

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def add(self, order: Order) -> Order:
        db_order = self._to_model(order)
        self.session.add(db_order)
        await self.session.flush()
        await self.session.refresh(db_order)
        logger.info("order_created", order_id=db_order.id, status=db_order.status)
        return self._to_entity(db_order)

    async def update_if_state(
        self,
        order_id: str,
        changes: dict,
        expected_status: OrderStatus,
        expected_delivery_status: Optional[DeliveryStatus],
    ) -> Optional[Order]:
        values = {name: _column_value(value) for name, value in changes.items()}
        values["updated_at"] = datetime.now(timezone.utc)

        if expected_delivery_status is None:
            delivery_matches = OrderModel.delivery_status.is_(None)
        else:
            delivery_matches = OrderModel.delivery_status == expected_delivery_status.value

        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.status == expected_status.value,
                delivery_matches,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "order_update_conflict",
                order_id=order_id,
                expected_status=expected_status.value,
                expected_delivery_status=expected_delivery_status.value if expected_delivery_status else None,
            )
            return None
        return await self.get_by_id(order_id)

    async def list_open_deliveries(self, limit: int = 500) -> List[Order]:
        closed_delivery = [s.value for s in TERMINAL_DELIVERY_STATUSES]
        result = await self.session.execute(
            select(OrderModel)
            .where(
                OrderModel.tracking_number.is_not(None),
                OrderModel.status.not_in(_CLOSED_STATUSES),
                (OrderModel.delivery_status.is_(None)) | (OrderModel.delivery_status.not_in(closed_delivery)),
            )
            .order_by(OrderModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_missed_pickups(self, seller_id: str, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count(OrderModel.id)).where(
                OrderModel.seller_id == seller_id,
                OrderModel.pickup_failed_at.is_not(None),
                OrderModel.pickup_failed_at >= since,
            )
        )
        return int(result.scalar_one())

    async def list_stale_pending_commits(self, before: datetime, limit: int = 200) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(
                OrderModel.status == OrderStatus.PENDING_COMMIT.value,
                OrderModel.created_at < before,
            )
            .order_by(OrderModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_stale_missed_pickups(self, before: datetime, limit: int = 200) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(
                OrderModel.delivery_status == DeliveryStatus.PICKUP_FAILED.value,
                OrderModel.status.not_in(_CLOSED_STATUSES),
                OrderModel.pickup_failed_at < before,
            )
            .order_by(OrderModel.pickup_failed_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]


class SQLAlchemyRefundRepository(RefundRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RefundModel, order_total: Optional[int] = None) -> Refund:
        return Refund(
            id=model.id,
            order_id=model.order_id,
            payment_reference=model.payment_reference,
            amount=model.amount,
            order_total=order_total if order_total is not None else model.amount,
            reason=model.reason,
            status=RefundStatus(model.status),
            gateway_reference=model.gateway_reference,
            failure_reason=model.failure_reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
            completed_at=model.completed_at,
        )

    async def add(self, refund: Refund) -> Refund:
        db_refund = RefundModel(
            order_id=refund.order_id,
            payment_reference=refund.payment_reference,
            amount=refund.amount,
            reason=refund.reason,
            status=refund.status.value,
            gateway_reference=refund.gateway_reference,
            failure_reason=refund.failure_reason,
        )
        self.session.add(db_refund)
        await self.session.flush()
        await self.session.refresh(db_refund)
        logger.info("refund_recorded", refund_id=db_refund.id, order_id=db_refund.order_id, status=db_refund.status)
        return self._to_entity(db_refund, refund.order_total)

    async def update(self, refund: Refund) -> Refund:
        result = await self.session.execute(select(RefundModel).where(RefundModel.id == refund.id))
        db_refund = result.scalar_one_or_none()
        if not db_refund:
            raise ValueError(f"Refund with id {refund.id} not found")

        db_refund.status = refund.status.value
        db_refund.gateway_reference = refund.gateway_reference
        db_refund.failure_reason = refund.failure_reason
        db_refund.completed_at = refund.completed_at

        await self.session.flush()
        await self.session.refresh(db_refund)
        logger.info("refund_updated", refund_id=db_refund.id, order_id=db_refund.order_id, status=db_refund.status)
        return self._to_entity(db_refund, refund.order_total)

    async def get_successful_for_order(self, order_id: str) -> Optional[Refund]:
        result = await self.session.execute(
            select(RefundModel).where(
                RefundModel.order_id == order_id,
                RefundModel.status == RefundStatus.SUCCESS.value,
            )
        )
        db_refund = result.scalars().first()
        return self._to_entity(db_refund) if db_refund else None

    async def list_for_order(self, order_id: str) -> List[Refund]:
        result = await self.session.execute(
            select(RefundModel).where(RefundModel.order_id == order_id).order_by(RefundModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]


class SQLAlchemyOrderActivityRepository(OrderActivityRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, activity: OrderActivity) -> OrderActivity:
        db_activity = OrderActivityModel(
            order_id=activity.order_id,
            action=activity.action,
            actor_id=activity.actor_id,
            details=activity.details,
        )
        self.session.add(db_activity)
        await self.session.flush()
        activity.id = db_activity.id
        activity.created_at = db_activity.created_at
        return activity

    async def list_for_order(self, order_id: str) -> List[OrderActivity]:
        result = await self.session.execute(
            select(OrderActivityModel)
            .where(OrderActivityModel.order_id == order_id)
            .order_by(OrderActivityModel.id.asc())
        )
        return [
            OrderActivity(
                id=m.id,
                order_id=m.order_id,
                action=m.action,
                actor_id=m.actor_id,
                details=m.details or {},
                created_at=m.created_at,
            )
            for m in result.scalars().all()
        ]
