from app.models.user import User
from app.models.plan import Plan
from app.models.wallet import PendingEntry, Wallet
from app.models.transaction import Transaction
from app.models.withdrawal import BankDetails, Withdrawal
from app.models.payment import Payment
from app.models.redeemed_proof import RedeemedProof
from app.models.audit_log import AuditLog
from app.models.failed_job import FailedJob

__all__ = [
    "User",
    "Plan",
    "PendingEntry",
    "Wallet",
    "Transaction",
    "BankDetails",
    "Withdrawal",
    "Payment",
    "RedeemedProof",
    "AuditLog",
    "FailedJob",
]
