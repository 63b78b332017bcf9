# Overview: Service-layer operations for the transaction engine; every point movement goes through here.

"""
Transaction Engine

Each mutation runs as one atomic unit (concurrency.atomic_unit):
- loads and locks the balance rows it touches
- validates business rules against that fresh state
- appends the Transaction row(s) and applies balance deltas via
  ledger_service.apply_points_delta
- commits, or rolls back everything on any error

Concurrency conflicts (StaleDataError on versioned users/events,
OperationalError on locks) roll back and retry the whole unit, so every
retry re-reads balances and re-checks the rules.

Notifications are sent only after the unit has committed, through the sink
injected at construction. A failing sink never affects the ledger.
"""

from __future__ import annotations

import math

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..errors import BadRequest, Forbidden, NotFound
from ..models import (
    AdjustmentTransaction,
    Event,
    EventTransaction,
    Promotion,
    PurchaseTransaction,
    RedemptionTransaction,
    Transaction,
    TransferTransaction,
    User,
)
from ..models.notifications import KIND_INFO, KIND_SUCCESS, KIND_WARNING
from ..models.promotions import PROMO_ONE_TIME
from ..models.transactions import TX_PURCHASE, TX_REDEMPTION, VALID_TX_TYPES
from ..models.users import ROLE_MANAGER
from . import event_service, promotions_service
from .concurrency import atomic_unit, lock_for_update
from .ledger_service import apply_points_delta, load_user_by_utorid_for_update, load_user_for_update
from .notification_service import NotificationSink, deliver
from loyalty.time_utils import utcnow


# 1 base point per $0.25 spent
CENTS_PER_POINT = 0.25

AMOUNT_OPERATORS = {"gte", "lte"}


def _round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def calculate_points(spent: float, promotions) -> int:
    """
    Points earned for a purchase of `spent` dollars.

    base = round(spent / 0.25). Each promotion then adds, independently and
    only when spent meets its min_spending (if any):
    - round(spent * rate * 100) when it has a rate
    - its flat points when it has points
    """
    points = _round_half_up(spent / CENTS_PER_POINT)
    for promo in promotions:
        meets_minimum = not promo.min_spending or spent >= promo.min_spending
        if promo.rate and meets_minimum:
            points += _round_half_up(spent * promo.rate * 100)
        if promo.points and meets_minimum:
            points += promo.points
    return points


def _claim(tx: Transaction, expected: dict, values: dict, conflict_message: str) -> None:
    """
    Compare-and-set a transaction's mutable state.

    The UPDATE only matches while the row still holds `expected`, so two
    units that both read the old state cannot both apply their balance delta.
    """
    claimed = (
        db.session.query(Transaction)
        .filter_by(id=tx.id, **expected)
        .update(values, synchronize_session="fetch")
    )
    if claimed != 1:
        raise BadRequest(conflict_message)


class TransactionEngine:
    """Creates and applies every point-affecting transaction."""

    def __init__(self, notifier: NotificationSink):
        self.notifier = notifier

    def _notify(self, user_ids, kind: str, message: str) -> None:
        deliver(self.notifier, user_ids, kind, message)

    # ------------------------------------------------------------------
    # Purchases
    # ------------------------------------------------------------------

    def _resolve_requested_promotions(self, customer: User, promotion_ids: list[int], now) -> list[Promotion]:
        if not promotion_ids:
            return []
        promos = db.session.query(Promotion).filter(Promotion.id.in_(promotion_ids)).all()
        if len(promos) != len(promotion_ids):
            raise BadRequest("One or more promotion IDs are invalid.")
        for promo in promos:
            if not promo.is_active(now):
                raise BadRequest(f"Promotion '{promo.name}' is not active.")
            if promo.type == PROMO_ONE_TIME and promotions_service.has_user_used(customer.id, promo.id):
                raise BadRequest(f"Promotion '{promo.name}' has already been used.")
        return sorted(promos, key=lambda p: p.id)

    def create_purchase(
        self,
        actor_id: int,
        customer_utorid: str,
        spent: float,
        promotion_ids: list[int] | None = None,
        remark: str = "",
    ) -> PurchaseTransaction:
        """
        Record a purchase and credit its points.

        A cashier flagged suspicious still records the full earned amount,
        but the customer is credited 0 until the transaction is cleared.
        """
        requested_ids = list(dict.fromkeys(promotion_ids or []))

        def _apply():
            now = utcnow()
            customer = load_user_by_utorid_for_update(customer_utorid)
            if not customer:
                raise NotFound(f"User with utorid '{customer_utorid}' not found.")
            cashier = db.session.get(User, actor_id)
            if not cashier:
                raise NotFound("Cashier not found.")

            requested = self._resolve_requested_promotions(customer, requested_ids, now)
            requested_set = {p.id for p in requested}
            automatic = [
                p for p in promotions_service.list_active_automatic(now) if p.id not in requested_set
            ]
            applied = requested + automatic

            tx = PurchaseTransaction(
                user=customer,
                created_by_id=cashier.id,
                amount=calculate_points(spent, applied),
                spent=spent,
                remark=remark or "",
                suspicious=cashier.suspicious,
                promotions=applied,
            )
            db.session.add(tx)
            apply_points_delta(customer, tx.applied_amount)
            promotions_service.mark_used(customer, requested)
            return tx

        tx = atomic_unit(_apply)

        credited = tx.applied_amount
        current_app.logger.info(
            "Purchase %s: %s earned %s, credited %s (suspicious=%s)",
            tx.id, tx.user.utorid, tx.amount, credited, tx.suspicious,
        )
        self._notify(tx.user_id, KIND_SUCCESS, f"Your purchase earned {credited} points.")
        self._notify(
            tx.created_by_id,
            KIND_SUCCESS,
            f"You created a purchase for {tx.user.utorid}, they earned {credited} points.",
        )
        return tx

    # ------------------------------------------------------------------
    # Adjustments
    # ------------------------------------------------------------------

    def create_adjustment(
        self,
        actor_id: int,
        customer_utorid: str,
        amount: int,
        related_transaction_id: int,
        remark: str = "",
    ) -> AdjustmentTransaction:
        """Apply a signed correction immediately. Never gated by suspicious flags."""

        def _apply():
            customer = load_user_by_utorid_for_update(customer_utorid)
            if not customer:
                raise NotFound(f"User with utorid '{customer_utorid}' not found.")
            if not db.session.get(Transaction, related_transaction_id):
                raise NotFound("The related transaction does not exist.")

            apply_points_delta(customer, amount, message="Adjustment would make the balance negative.")
            tx = AdjustmentTransaction(
                user=customer,
                created_by_id=actor_id,
                amount=amount,
                related_transaction_id=related_transaction_id,
                remark=remark or "",
            )
            db.session.add(tx)
            return tx

        tx = atomic_unit(_apply)

        current_app.logger.info(
            "Adjustment %s: %s %+d (related %s)", tx.id, tx.user.utorid, tx.amount, related_transaction_id
        )
        self._notify(tx.user_id, KIND_INFO, f"Your balance was adjusted by {tx.amount} points.")
        return tx

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def create_transfer(
        self,
        sender_id: int,
        recipient_id: int,
        amount: int,
        remark: str = "",
    ) -> tuple[TransferTransaction, TransferTransaction]:
        """
        Move points between two users.

        Returns (sender_row, recipient_row). Both rows and both balance
        changes commit together or not at all.
        """
        if sender_id == recipient_id:
            raise BadRequest("Cannot transfer points to yourself.")

        def _apply():
            # Lock in id order so two opposite transfers cannot deadlock
            locked = {uid: load_user_for_update(uid) for uid in sorted((sender_id, recipient_id))}
            sender, recipient = locked[sender_id], locked[recipient_id]
            if not recipient:
                raise NotFound("Recipient user not found.")
            if not sender:
                raise NotFound("User not found.")
            if not sender.verified:
                raise Forbidden("You must be verified to transfer points.")

            apply_points_delta(sender, -amount, message="Insufficient points.")
            apply_points_delta(recipient, amount)

            sent = TransferTransaction(
                user=sender,
                created_by_id=sender.id,
                amount=-amount,
                counterparty_id=recipient.id,
                remark=remark or "",
            )
            received = TransferTransaction(
                user=recipient,
                created_by_id=sender.id,
                amount=amount,
                counterparty_id=sender.id,
                remark=remark or "",
            )
            db.session.add_all([sent, received])
            return sent, received

        sent, received = atomic_unit(_apply)

        sender_utorid, recipient_utorid = sent.user.utorid, received.user.utorid
        current_app.logger.info("Transfer %s: %s -> %s, %s points", sent.id, sender_utorid, recipient_utorid, amount)
        self._notify(received.user_id, KIND_SUCCESS, f"You received a transfer of {amount} points from {sender_utorid}.")
        self._notify(sent.user_id, KIND_SUCCESS, f"You sent a transfer of {amount} points to {recipient_utorid}.")
        return sent, received

    # ------------------------------------------------------------------
    # Redemptions
    # ------------------------------------------------------------------

    def create_redemption(self, user_id: int, amount: int, remark: str = "") -> RedemptionTransaction:
        """
        Open a redemption request. The balance check is projected only; the
        balance changes when a cashier processes the request.
        """

        def _apply():
            user = load_user_for_update(user_id)
            if not user:
                raise NotFound("User not found.")
            if not user.verified:
                raise Forbidden("You must be verified to redeem points.")
            if user.points < amount:
                raise BadRequest("Insufficient points to redeem.")

            tx = RedemptionTransaction(
                user=user,
                created_by_id=user.id,
                amount=amount,
                processed=False,
                remark=remark or "",
            )
            db.session.add(tx)
            return tx

        tx = atomic_unit(_apply)

        current_app.logger.info("Redemption %s requested: %s, %s points", tx.id, tx.user.utorid, amount)
        self._notify(tx.user_id, KIND_INFO, f"You created a redemption request for {amount} points.")
        return tx

    def process_redemption(self, cashier_id: int, transaction_id: int) -> RedemptionTransaction:
        """Fulfil a pending redemption exactly once, debiting its owner."""

        def _apply():
            tx = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
            if not tx:
                raise NotFound("Transaction not found.")
            if tx.type != TX_REDEMPTION:
                raise BadRequest("This transaction is not a redemption.")
            if tx.processed:
                raise BadRequest("This redemption has already been processed.")

            owner = load_user_for_update(tx.user_id)
            apply_points_delta(owner, -tx.amount, message="Insufficient points to process this redemption.")
            _claim(tx, {"processed": False}, {"processed": True, "processed_by_id": cashier_id},
                   "This redemption has already been processed.")
            return tx

        tx = atomic_unit(_apply)

        processor = tx.processed_by.utorid
        current_app.logger.info("Redemption %s processed by %s: %s -%s", tx.id, processor, tx.user.utorid, tx.amount)
        self._notify(
            tx.user_id,
            KIND_SUCCESS,
            f"Your redemption of {tx.amount} points has been processed by {processor}.",
        )
        return tx

    # ------------------------------------------------------------------
    # Suspicious flag
    # ------------------------------------------------------------------

    def update_suspicious(self, transaction_id: int, flag: bool) -> PurchaseTransaction:
        """
        Toggle a purchase's suspicious flag with a compensating balance delta:
        -amount when flagging, +amount when clearing. The stored amount is
        never changed.
        """

        def _apply():
            tx = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
            if not tx:
                raise NotFound("Transaction not found.")
            if tx.type != TX_PURCHASE:
                raise BadRequest("Only purchase transactions can be marked suspicious.")
            state = "suspicious" if flag else "not suspicious"
            if tx.suspicious == flag:
                raise BadRequest(f"Transaction is already marked as {state}.")

            owner = load_user_for_update(tx.user_id)
            delta = -tx.amount if flag else tx.amount
            apply_points_delta(owner, delta, message="Insufficient points to reverse this purchase.")
            _claim(tx, {"suspicious": not flag}, {"suspicious": flag},
                   f"Transaction is already marked as {state}.")
            return tx

        tx = atomic_unit(_apply)

        current_app.logger.info("Transaction %s suspicious=%s (%s)", tx.id, flag, tx.user.utorid)
        if flag:
            self._notify(tx.user_id, KIND_WARNING, f"A purchase of yours is under review; {tx.amount} points are on hold.")
        else:
            self._notify(tx.user_id, KIND_SUCCESS, f"A purchase of yours was cleared; {tx.amount} points were credited.")
        return tx

    # ------------------------------------------------------------------
    # Event awards
    # ------------------------------------------------------------------

    def create_event_transaction(
        self,
        actor_id: int,
        event_id: int,
        target_utorid: str | None,
        amount: int,
        remark: str = "",
    ) -> tuple[Event, list[EventTransaction]]:
        """
        Award `amount` points to one guest (target_utorid) or to every guest.

        The total is drawn from the event budget; the award fails as a whole
        if the remaining budget cannot cover it.
        """

        def _apply():
            event = lock_for_update(db.session.query(Event).filter_by(id=event_id)).first()
            if not event:
                raise NotFound("Event not found.")
            actor = db.session.get(User, actor_id)
            if not actor or not (actor.has_role(ROLE_MANAGER) or event_service.is_organizer(event_id, actor_id)):
                raise Forbidden("You must be a manager or event organizer to award points.")

            guests = sorted((g.user for g in event.guests), key=lambda u: u.id)
            if target_utorid:
                guests = [u for u in guests if u.utorid == target_utorid]
                if not guests:
                    raise BadRequest("User is not on the guest list for this event.")
            if not guests:
                raise BadRequest("No guests to award points to.")

            total = amount * len(guests)
            remaining = event.points_remaining
            if total > remaining:
                raise BadRequest(f"Not enough points remaining in event. Remaining: {remaining}")

            event.points_awarded = event.points_awarded + total

            awarded = []
            for guest in guests:
                user = load_user_for_update(guest.id)
                apply_points_delta(user, amount)
                tx = EventTransaction(
                    user=user,
                    created_by_id=actor_id,
                    amount=amount,
                    event_id=event.id,
                    remark=remark or "",
                )
                db.session.add(tx)
                awarded.append(tx)
            return event, awarded

        event, awarded = atomic_unit(_apply)

        guest_ids = [tx.user_id for tx in awarded]
        current_app.logger.info(
            "Event %s award: %s points to %s guest(s), %s remaining",
            event.id, amount, len(guest_ids), event.points_remaining,
        )
        self._notify(guest_ids, KIND_SUCCESS, f'You were awarded {amount} points for event "{event.name}".')
        self._notify(
            actor_id,
            KIND_SUCCESS,
            f'You awarded {amount} points to {len(guest_ids)} guest(s) for event "{event.name}".',
        )
        return event, awarded


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------

def _apply_filters(
    q,
    *,
    name: str | None = None,
    created_by: str | None = None,
    suspicious: bool | None = None,
    promotion_id: int | None = None,
    tx_type: str | None = None,
    related_id: int | None = None,
    amount: int | None = None,
    operator: str | None = None,
):
    if tx_type is not None and tx_type not in VALID_TX_TYPES:
        raise BadRequest("Invalid transaction type.")
    if related_id is not None and tx_type is None:
        raise BadRequest("relatedId must be used with type.")
    if (amount is None) != (operator is None):
        raise BadRequest("amount and operator must be used together.")
    if operator is not None and operator not in AMOUNT_OPERATORS:
        raise BadRequest('operator must be "gte" or "lte".')

    if name:
        q = q.filter(Transaction.user.has(or_(User.name.contains(name), User.utorid.contains(name))))
    if created_by:
        q = q.filter(Transaction.created_by.has(User.utorid.contains(created_by)))
    if suspicious is not None:
        q = q.filter(Transaction.suspicious.is_(suspicious))
    if promotion_id is not None:
        q = q.filter(Transaction.promotions.any(Promotion.id == promotion_id))
    if tx_type is not None:
        q = q.filter(Transaction.type == tx_type)
    if related_id is not None:
        q = q.filter(Transaction.related_id == related_id)
    if operator == "gte":
        q = q.filter(Transaction.amount >= amount)
    elif operator == "lte":
        q = q.filter(Transaction.amount <= amount)
    return q


def _paginate(q, page: int, limit: int) -> tuple[int, list[Transaction]]:
    count = q.count()
    rows = (
        q.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return count, rows


def list_transactions(*, page: int = 1, limit: int = 10, **filters) -> tuple[int, list[Transaction]]:
    """All transactions, newest first."""
    q = _apply_filters(db.session.query(Transaction), **filters)
    return _paginate(q, page, limit)


def list_user_transactions(user_id: int, *, page: int = 1, limit: int = 10, **filters) -> tuple[int, list[Transaction]]:
    """A single user's own transactions, newest first."""
    q = db.session.query(Transaction).filter(Transaction.user_id == user_id)
    q = _apply_filters(q, **filters)
    return _paginate(q, page, limit)


def get_transaction(transaction_id: int) -> Transaction:
    tx = db.session.get(Transaction, transaction_id)
    if not tx:
        raise NotFound("Transaction not found")
    return tx
