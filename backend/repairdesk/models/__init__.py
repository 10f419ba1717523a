from .tenancy import Company, Branch
from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken
from .security import SecurityEvent
from .transactions import PaymentMethod, ServiceTicket, PaymentEntry, Expense, ExpensePayment, DailyOpeningBalance
from .settlements import CashSettlement, CashSettlementMethod, CashDenomination, SettlementEvent

__all__ = [
    'Company', 'Branch',
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission', 'SessionToken',
    'SecurityEvent',
    'PaymentMethod', 'ServiceTicket', 'PaymentEntry', 'Expense', 'ExpensePayment', 'DailyOpeningBalance',
    'CashSettlement', 'CashSettlementMethod', 'CashDenomination', 'SettlementEvent',
]
