from .users import User, PasswordReset
from .promotions import Promotion, promotion_usages
from .events import Event, EventOrganizer, EventGuest
from .transactions import (
    Transaction,
    PurchaseTransaction,
    AdjustmentTransaction,
    TransferTransaction,
    RedemptionTransaction,
    EventTransaction,
    transaction_promotions,
)
from .notifications import Notification

__all__ = [
    'User', 'PasswordReset',
    'Promotion', 'promotion_usages',
    'Event', 'EventOrganizer', 'EventGuest',
    'Transaction', 'PurchaseTransaction', 'AdjustmentTransaction',
    'TransferTransaction', 'RedemptionTransaction', 'EventTransaction',
    'transaction_promotions',
    'Notification',
]
