"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Auth/User
  2xxx: Ledger / balance
  3xxx: Card
  4xxx: Card transaction
  5xxx: Webhook
  6xxx: Card provider
  7xxx: Sync
  9xxx: System
"""

from decimal import Decimal
from typing import Any


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
        data: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        self.data = data
        super().__init__(message)


# --- 1xxx: Auth/User ---

class InvalidCredentialsError(AppError):
    def __init__(self) -> None:
        super().__init__(1003, "Invalid or expired credentials", 401)


class AccountDisabledError(AppError):
    def __init__(self) -> None:
        super().__init__(1004, "Account is disabled", 403)


class UserNotFoundError(AppError):
    def __init__(self, user_id: str) -> None:
        super().__init__(1006, f"User not found: {user_id}", 404)


class UserInactiveError(AppError):
    def __init__(self, user_id: str) -> None:
        super().__init__(1007, f"User is not active: {user_id}", 422)


class PermissionDeniedError(AppError):
    def __init__(self, action: str) -> None:
        super().__init__(1008, f"Permission denied: {action}", 403)


# --- 2xxx: Ledger ---

class InsufficientBalanceError(AppError):
    def __init__(self, required: Decimal, available: Decimal) -> None:
        super().__init__(
            2001,
            f"Insufficient balance: required {required}, available {available}",
            422,
            data={"required": str(required), "available": str(available)},
        )


class InvalidFlowAmountError(AppError):
    def __init__(self, amount: Decimal) -> None:
        super().__init__(2002, f"Flow amount must be non-zero: {amount}", 422)


# --- 3xxx: Card ---

class CardNotFoundError(AppError):
    def __init__(self, card_id: str) -> None:
        super().__init__(3001, f"Card not found: {card_id}", 404)


class CardNotOperableError(AppError):
    def __init__(self, card_id: str, status: str) -> None:
        super().__init__(3002, f"Card {card_id} in status {status} cannot be operated", 422)


# --- 4xxx: Card transaction ---

class TransactionNotFoundError(AppError):
    def __init__(self, txn_id: str) -> None:
        super().__init__(4001, f"Transaction not found: {txn_id}", 404)


class DuplicateTransactionError(AppError):
    def __init__(self, txn_id: str) -> None:
        super().__init__(4002, f"Duplicate transaction: {txn_id}", 409)


class AlreadySettledError(AppError):
    def __init__(self, txn_id: str) -> None:
        super().__init__(4003, f"Transaction already settled: {txn_id}", 409)


class WithdrawalInProgressError(AppError):
    def __init__(self, txn_id: str) -> None:
        super().__init__(4004, f"Withdrawal already in progress: {txn_id}", 409)


class UnsupportedTransactionTypeError(AppError):
    def __init__(self, txn_type: str) -> None:
        super().__init__(4005, f"Unsupported transaction type: {txn_type}", 422)


class TransactionNotCompensableError(AppError):
    def __init__(
        self, txn_id: str, txn_type: str, txn_status: str, withdrawal_status: str | None
    ) -> None:
        super().__init__(
            4006,
            f"Transaction {txn_id} is not an open successful cancellation",
            422,
            data={
                "txn_type": txn_type,
                "txn_status": txn_status,
                "withdrawal_status": withdrawal_status,
            },
        )


# --- 5xxx: Webhook ---

class InvalidWebhookSignatureError(AppError):
    def __init__(self, reason: str = "signature mismatch") -> None:
        super().__init__(5001, f"Invalid webhook signature: {reason}", 401)


# --- 6xxx: Card provider ---

class ProviderError(AppError):
    """Transport failure or malformed response from the card provider."""

    def __init__(self, detail: str) -> None:
        super().__init__(6001, f"Card provider error: {detail}", 502)


class ProviderRejectedError(AppError):
    """The provider answered with a non-zero business code."""

    def __init__(self, provider_code: int | str, detail: str) -> None:
        self.provider_code = provider_code
        super().__init__(
            6002,
            detail,
            422,
            data={"provider_code": str(provider_code)},
        )


# --- 7xxx: Sync ---

class UnknownSyncJobError(AppError):
    def __init__(self, job_name: str) -> None:
        super().__init__(7001, f"Unknown sync job: {job_name}", 400)


# --- 9xxx: System ---

class InvalidRequestError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(9001, detail, 400)


class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)
