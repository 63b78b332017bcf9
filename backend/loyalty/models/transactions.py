from __future__ import annotations

from sqlalchemy import case
from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from loyalty.time_utils import to_utc_z, utcnow


TX_PURCHASE = "purchase"
TX_REDEMPTION = "redemption"
TX_TRANSFER = "transfer"
TX_ADJUSTMENT = "adjustment"
TX_EVENT = "event"
VALID_TX_TYPES = (TX_PURCHASE, TX_REDEMPTION, TX_TRANSFER, TX_ADJUSTMENT, TX_EVENT)

# Which typed reference column each variant exposes as its related_id.
# Purchases have none.
_RELATED_COLUMN = {
    TX_TRANSFER: "counterparty_id",
    TX_ADJUSTMENT: "related_transaction_id",
    TX_REDEMPTION: "processed_by_id",
    TX_EVENT: "event_id",
}


transaction_promotions = db.Table(
    "transaction_promotions",
    db.Column("transaction_id", db.Integer, db.ForeignKey("transactions.id"), primary_key=True),
    db.Column("promotion_id", db.Integer, db.ForeignKey("promotions.id"), primary_key=True),
)


class Transaction(db.Model):
    """
    Append-only ledger of point movements (single-table tagged union).

    VARIANTS (discriminated by `type`):
    - purchase: amount = points earned, spent in dollars, suspicious flag
    - adjustment: signed amount, references the corrected transaction
    - transfer: -amount on the sender row, +amount on the recipient row,
      each references its counterparty
    - redemption: positive amount to deduct, processed flag, processor
    - event: amount awarded to one guest, references the event

    IMMUTABLE except:
    - purchase.suspicious (toggled with a compensating balance delta)
    - redemption.processed / processed_by_id (set exactly once)

    BALANCE INVARIANT: for every user, the sum of `amount` over applied rows
    (all rows except unprocessed redemptions, with processed redemptions
    counted as -amount and suspicious purchases counted as 0) equals
    users.points.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(16), nullable=False, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)
    spent = db.Column(db.Float, nullable=True)
    remark = db.Column(db.Text, nullable=False, default="")

    suspicious = db.Column(db.Boolean, nullable=False, default=False)
    processed = db.Column(db.Boolean, nullable=False, default=False)

    # Typed references, one per variant
    counterparty_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    related_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)
    processed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    user = db.relationship("User", foreign_keys=[user_id])
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    promotions = db.relationship("Promotion", secondary=transaction_promotions, lazy=True)

    __mapper_args__ = {"polymorphic_on": type}

    @hybrid_property
    def related_id(self):
        """Cross-type audit reference; meaning depends on the variant."""
        column = _RELATED_COLUMN.get(self.type)
        return getattr(self, column) if column else None

    @related_id.expression
    def related_id(cls):
        return case(
            *[(cls.type == tx_type, getattr(cls, column)) for tx_type, column in _RELATED_COLUMN.items()],
            else_=None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "utorid": self.user.utorid,
            "type": self.type,
            "amount": self.amount,
            "spent": self.spent,
            "promotionIds": [p.id for p in self.promotions],
            "suspicious": self.suspicious,
            "remark": self.remark,
            "createdBy": self.created_by.utorid,
            "relatedId": self.related_id,
            "createdAt": to_utc_z(self.created_at),
        }


class PurchaseTransaction(Transaction):
    __mapper_args__ = {"polymorphic_identity": TX_PURCHASE}

    @property
    def applied_amount(self) -> int:
        return 0 if self.suspicious else self.amount


class AdjustmentTransaction(Transaction):
    __mapper_args__ = {"polymorphic_identity": TX_ADJUSTMENT}

    related_transaction = db.relationship(
        "Transaction", foreign_keys=[Transaction.related_transaction_id], remote_side=[Transaction.id]
    )


class TransferTransaction(Transaction):
    __mapper_args__ = {"polymorphic_identity": TX_TRANSFER}

    counterparty = db.relationship("User", foreign_keys=[Transaction.counterparty_id])


class RedemptionTransaction(Transaction):
    __mapper_args__ = {"polymorphic_identity": TX_REDEMPTION}

    processed_by = db.relationship("User", foreign_keys=[Transaction.processed_by_id])

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "processed": self.processed,
            "processedBy": self.processed_by.utorid if self.processed_by else None,
            "redeemed": self.amount,
        })
        return data


class EventTransaction(Transaction):
    __mapper_args__ = {"polymorphic_identity": TX_EVENT}

    event = db.relationship("Event", foreign_keys=[Transaction.event_id])
