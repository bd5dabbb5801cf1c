"""CardRepository — concrete implementation of CardRepositoryProtocol.

Cached balance changes are single atomic UPDATE ... RETURNING statements.
Transaction ownership stays with the caller.
"""

from decimal import Decimal

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.vc_card.domain.models import VirtualCard
from src.vc_common.errors import InternalError
from src.vc_common.money import to_amount

_CARD_COLUMNS = """id, card_id, card_no, cvv, exp_date, currency, status, balance,
              created_by, remark, created_at, updated_at"""

_GET_CARD_SQL = text(f"SELECT {_CARD_COLUMNS} FROM virtual_cards WHERE card_id = :card_id")

_LOCK_CARD_SQL = text(f"""
    SELECT {_CARD_COLUMNS}
    FROM virtual_cards
    WHERE card_id = :card_id
    FOR UPDATE
""")

_INSERT_CARD_SQL = text(f"""
    INSERT INTO virtual_cards
        (card_id, card_no, cvv, exp_date, currency, status, balance, created_by, remark)
    VALUES
        (:card_id, :card_no, :cvv, :exp_date, :currency, :status, :balance, :created_by, :remark)
    RETURNING {_CARD_COLUMNS}
""")

_UPDATE_STATUS_SQL = text(f"""
    UPDATE virtual_cards
    SET status = :status, updated_at = NOW()
    WHERE card_id = :card_id
    RETURNING {_CARD_COLUMNS}
""")

_SET_BALANCE_SQL = text(f"""
    UPDATE virtual_cards
    SET balance = :balance, updated_at = NOW()
    WHERE card_id = :card_id
    RETURNING {_CARD_COLUMNS}
""")

_ADJUST_BALANCE_SQL = text("""
    UPDATE virtual_cards
    SET balance = balance + :delta, updated_at = NOW()
    WHERE card_id = :card_id
    RETURNING balance
""")

_MARK_RELEASED_SQL = text(f"""
    UPDATE virtual_cards
    SET status = 'RELEASED', balance = 0, updated_at = NOW()
    WHERE card_id = :card_id
    RETURNING {_CARD_COLUMNS}
""")


def _row_to_card(row: object) -> VirtualCard:
    return VirtualCard(
        id=row.id,  # type: ignore[attr-defined]
        card_id=row.card_id,  # type: ignore[attr-defined]
        card_no=row.card_no,  # type: ignore[attr-defined]
        cvv=row.cvv,  # type: ignore[attr-defined]
        exp_date=row.exp_date,  # type: ignore[attr-defined]
        currency=row.currency,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        balance=to_amount(row.balance),  # type: ignore[attr-defined]
        created_by=row.created_by,  # type: ignore[attr-defined]
        remark=row.remark,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


class CardRepository:
    async def get_card(self, db: AsyncSession, card_id: str) -> VirtualCard | None:
        row = (await db.execute(_GET_CARD_SQL, {"card_id": card_id})).fetchone()
        return _row_to_card(row) if row else None

    async def lock_card(self, db: AsyncSession, card_id: str) -> VirtualCard | None:
        row = (await db.execute(_LOCK_CARD_SQL, {"card_id": card_id})).fetchone()
        return _row_to_card(row) if row else None

    async def insert_card(self, db: AsyncSession, card: VirtualCard) -> VirtualCard:
        result = await db.execute(
            _INSERT_CARD_SQL,
            {
                "card_id": card.card_id,
                "card_no": card.card_no,
                "cvv": card.cvv,
                "exp_date": card.exp_date,
                "currency": card.currency,
                "status": card.status,
                "balance": card.balance,
                "created_by": card.created_by,
                "remark": card.remark,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Card insert returned no rows")
        return _row_to_card(row)

    async def update_status(
        self, db: AsyncSession, card_id: str, status: str
    ) -> VirtualCard | None:
        row = (
            await db.execute(_UPDATE_STATUS_SQL, {"card_id": card_id, "status": status})
        ).fetchone()
        return _row_to_card(row) if row else None

    async def set_balance(
        self, db: AsyncSession, card_id: str, balance: Decimal
    ) -> VirtualCard | None:
        row = (
            await db.execute(_SET_BALANCE_SQL, {"card_id": card_id, "balance": balance})
        ).fetchone()
        return _row_to_card(row) if row else None

    async def adjust_balance(
        self, db: AsyncSession, card_id: str, delta: Decimal
    ) -> Decimal | None:
        row = (
            await db.execute(_ADJUST_BALANCE_SQL, {"card_id": card_id, "delta": delta})
        ).fetchone()
        return to_amount(row.balance) if row else None

    async def mark_released(self, db: AsyncSession, card_id: str) -> VirtualCard | None:
        row = (await db.execute(_MARK_RELEASED_SQL, {"card_id": card_id})).fetchone()
        return _row_to_card(row) if row else None
