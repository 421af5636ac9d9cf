from .auth import User, Pharmacist, SessionToken, TrustedDevice, OtpCode
from .inventory import Supplier, Product, ProductItem
from .sales import Discount, Transaction, TransactionItem
from .security import SecurityEvent

__all__ = [
    'User', 'Pharmacist', 'SessionToken', 'TrustedDevice', 'OtpCode',
    'Supplier', 'Product', 'ProductItem',
    'Discount', 'Transaction', 'TransactionItem',
    'SecurityEvent',
]
