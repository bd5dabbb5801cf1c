"""Global enums — must match DB CHECK constraints exactly."""

from enum import Enum


class UserRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    USER = "USER"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class FlowOperationType(str, Enum):
    """AccountFlow direction: RECHARGE stored positive, WITHDRAW stored negative."""
    RECHARGE = "RECHARGE"
    WITHDRAW = "WITHDRAW"


class FlowBusinessType(str, Enum):
    USER_RECHARGE = "user_recharge"
    USER_WITHDRAW = "user_withdraw"


class CardStatus(str, Enum):
    ACTIVE = "ACTIVE"
    FROZEN = "FROZEN"
    RELEASED = "RELEASED"
    EXPIRED = "EXPIRED"
    LOCKED = "LOCKED"
    PENDING = "PENDING"


class CardOperationType(str, Enum):
    """OperationLog type: sign of the recorded amount is fixed per type."""
    CREATE_CARD = "CREATE_CARD"      # +
    DELETE_CARD = "DELETE_CARD"      # -
    RECHARGE = "RECHARGE"            # +
    WITHDRAW = "WITHDRAW"            # -
    FREEZE = "FREEZE"                # 0
    UNFREEZE = "UNFREEZE"            # 0


class TxnType(str, Enum):
    AUTH = "AUTH"
    AUTH_CANCEL = "AUTH_CANCEL"
    SETTLEMENT = "SETTLEMENT"
    REFUND = "REFUND"
    CANCEL = "CANCEL"


class TxnStatus(str, Enum):
    FAILED = "0"
    SUCCESS = "1"


class WithdrawalStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class SyncType(str, Enum):
    AUTH = "auth"
    SETTLE = "settle"
