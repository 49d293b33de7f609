from .bases import CanonicalModel, BuildStatus, BaseBuildResult, TransactionStatus, BaseTransactionConfirmation

__all__ = [
    "CanonicalModel",
    "BuildStatus",
    "BaseBuildResult",
    "TransactionStatus",
    "BaseTransactionConfirmation",
]
