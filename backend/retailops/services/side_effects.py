# Overview: Post-commit side-effect outbox (notifications, courier sync).

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..enums import FulfillmentType, OrderStatus as S
from ..extensions import db
from ..models import Order, SideEffectTask
from ..time_utils import utcnow


TASK_NOTIFY_STATUS = "notify_status_change"
TASK_COURIER_SYNC = "courier_sync"

STATUS_PENDING = "PENDING"
STATUS_DONE = "DONE"
STATUS_FAILED = "FAILED"

COURIER_SYNC_STATUSES = frozenset({S.HANDOVER_TO_COURIER, S.CANCELLED, S.RETURN_INITIATED})

_HANDLERS: dict = {}


def register_handler(task_type: str):
    """Register fn(task) as the dispatcher for task_type; replaces any previous one."""
    def decorator(fn):
        _HANDLERS[task_type] = fn
        return fn
    return decorator


def get_handler(task_type: str):
    return _HANDLERS.get(task_type)


@register_handler(TASK_NOTIFY_STATUS)
def _log_notification(task: SideEffectTask) -> None:
    current_app.logger.info(
        "Notification: order %s moved %s -> %s",
        task.order_id, task.payload.get("from"), task.payload.get("to"),
    )


@register_handler(TASK_COURIER_SYNC)
def _log_courier_sync(task: SideEffectTask) -> None:
    current_app.logger.info(
        "Courier sync: order %s status %s (partner=%s, tracking=%s)",
        task.order_id,
        task.payload.get("to"),
        task.payload.get("courier_partner"),
        task.payload.get("courier_tracking_id"),
    )


def tasks_for_transition(order: Order, old_status: S, new_status: S) -> list[tuple[str, dict]]:
    base = {"from": old_status.value, "to": new_status.value, "order_number": order.order_number}
    tasks = [(TASK_NOTIFY_STATUS, dict(base, customer_phone=order.customer_phone))]
    if order.fulfillment_type == FulfillmentType.THIRD_PARTY_COURIER.value and new_status in COURIER_SYNC_STATUSES:
        tasks.append((
            TASK_COURIER_SYNC,
            dict(base, courier_partner=order.courier_partner, courier_tracking_id=order.courier_tracking_id),
        ))
    return tasks


def enqueue_transition_effects(order: Order, old_status: S, new_status: S) -> list[str]:
    """
    Queue the side effects of a committed transition. Never raises: failures
    are logged and returned as warning strings.
    """
    try:
        for task_type, payload in tasks_for_transition(order, old_status, new_status):
            db.session.add(SideEffectTask(
                task_type=task_type,
                order_id=order.id,
                payload=payload,
                next_attempt_at=utcnow(),
            ))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to enqueue side effects for order %s", order.id)
        return [f"Side effects for order {order.order_number} could not be queued"]
    return []


def _backoff(attempts: int) -> timedelta:
    base = current_app.config.get("SIDE_EFFECT_RETRY_BASE_SECONDS", 30)
    return timedelta(seconds=base * (2 ** max(attempts - 1, 0)))


def _claim(task_id: int, seen_attempts: int, now) -> bool:
    """
    Take a task for this dispatcher: bump attempts and push next_attempt_at out
    by the claim lease in one compare-and-set. A dispatcher that read the same
    row earlier sees the attempts change and skips it. A claim whose
    dispatcher dies becomes due again once the lease runs out.
    """
    lease = timedelta(seconds=current_app.config.get("SIDE_EFFECT_CLAIM_TIMEOUT_SECONDS", 300))
    stmt = (
        update(SideEffectTask)
        .where(
            SideEffectTask.id == task_id,
            SideEffectTask.status == STATUS_PENDING,
            SideEffectTask.attempts == seen_attempts,
            SideEffectTask.next_attempt_at <= now,
        )
        .values(attempts=seen_attempts + 1, next_attempt_at=now + lease)
        .execution_options(synchronize_session=False)
    )
    claimed = bool(db.session.execute(stmt).rowcount)
    db.session.commit()
    return claimed


def process_due_tasks(*, limit: int = 100, now=None) -> dict:
    """
    Run every PENDING task whose next_attempt_at has passed.

    Each task is claimed and committed on its own, so one failure never holds
    back the rest and concurrent dispatchers never run the same attempt
    twice. Returns counts by outcome.
    """
    now = now or utcnow()
    max_attempts = current_app.config.get("SIDE_EFFECT_MAX_ATTEMPTS", 5)
    stats = {"processed": 0, "succeeded": 0, "retried": 0, "failed": 0}

    due = (
        db.session.query(SideEffectTask.id, SideEffectTask.attempts)
        .filter(
            SideEffectTask.status == STATUS_PENDING,
            SideEffectTask.next_attempt_at <= now,
        )
        .order_by(SideEffectTask.next_attempt_at.asc(), SideEffectTask.id.asc())
        .limit(limit)
        .all()
    )

    for task_id, attempts in due:
        if not _claim(task_id, attempts, now):
            current_app.logger.info("Side effect %s already claimed by another dispatcher", task_id)
            continue

        task = db.session.get(SideEffectTask, task_id)
        stats["processed"] += 1
        handler = get_handler(task.task_type)
        try:
            if handler is None:
                raise LookupError(f"No handler registered for {task.task_type}")
            handler(task)
        except Exception as exc:
            task.last_error = str(exc)
            if task.attempts >= max_attempts:
                task.status = STATUS_FAILED
                stats["failed"] += 1
                current_app.logger.exception(
                    "Side effect %s (%s) failed permanently after %d attempts",
                    task.id, task.task_type, task.attempts,
                )
            else:
                task.next_attempt_at = now + _backoff(task.attempts)
                stats["retried"] += 1
                current_app.logger.warning(
                    "Side effect %s (%s) failed, retry %d at %s: %s",
                    task.id, task.task_type, task.attempts, task.next_attempt_at, exc,
                )
        else:
            task.status = STATUS_DONE
            task.completed_at = utcnow()
            task.last_error = None
            stats["succeeded"] += 1
        db.session.commit()

    return stats
