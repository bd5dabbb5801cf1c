"""Capability policy: who may act on whose balance, cards and transactions.

Every ledger-mutating entry point asks `can_operate_on(actor, target, action)`
instead of comparing role strings itself.

  SUPER_ADMIN  everything
  ADMIN        balance/view on its direct children; may view itself and its
               own activity dashboard;
               never a balance operation on itself or on a SUPER_ADMIN;
               card operations on its own cards only
  USER         view and card operations on itself only
"""

from enum import Enum

from src.vc_common.enums import UserRole, UserStatus
from src.vc_common.errors import PermissionDeniedError
from src.vc_ledger.domain.models import User


class Action(str, Enum):
    BALANCE_DEPOSIT = "BALANCE_DEPOSIT"
    BALANCE_WITHDRAW = "BALANCE_WITHDRAW"
    VIEW_BALANCE = "VIEW_BALANCE"
    REFRESH_BALANCE = "REFRESH_BALANCE"
    CARD_OPERATE = "CARD_OPERATE"
    COMPENSATE = "COMPENSATE"
    SYNC = "SYNC"
    ADMIN_DASHBOARD = "ADMIN_DASHBOARD"


_BALANCE_ACTIONS = frozenset({Action.BALANCE_DEPOSIT, Action.BALANCE_WITHDRAW})
_SUPER_ADMIN_ONLY = frozenset({Action.COMPENSATE, Action.SYNC})


def can_operate_on(actor: User, target: User | None, action: Action) -> bool:
    """`target` is the affected user (card owner for CARD_OPERATE); None for system actions."""
    if actor.status != UserStatus.ACTIVE:
        return False
    if actor.role == UserRole.SUPER_ADMIN:
        return True
    if action in _SUPER_ADMIN_ONLY or target is None:
        return False
    if target.role == UserRole.SUPER_ADMIN:
        return False

    is_self = target.id == actor.id

    if action == Action.CARD_OPERATE:
        return is_self

    if actor.role == UserRole.ADMIN:
        if action in _BALANCE_ACTIONS:
            return not is_self and target.parent_id == actor.id
        if action in (Action.VIEW_BALANCE, Action.REFRESH_BALANCE):
            return is_self or target.parent_id == actor.id
        if action == Action.ADMIN_DASHBOARD:
            return is_self
        return False

    # USER
    return action == Action.VIEW_BALANCE and is_self


def require(actor: User, target: User | None, action: Action) -> None:
    if not can_operate_on(actor, target, action):
        raise PermissionDeniedError(action.value)
