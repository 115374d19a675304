"""Ledger repository -- async persistence of service state and events.

Provides LedgerRepository with the session_factory callable pattern. The
service stays the source of truth while running; the repository writes the
records each committed call touched (``apply``) and rebuilds a LedgerState
snapshot at startup (``load_state``).
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.escrow.core.roles import Role
from src.escrow.deals.schemas import Deal, DealStatus
from src.escrow.events.schemas import EventRecord
from src.escrow.ledger.schemas import TokenEntry
from src.escrow.persistence.models import (
    DealModel,
    LedgerControlModel,
    LedgerEventModel,
    RoleGrantModel,
    TokenModel,
)
from src.escrow.service import LedgerChanges, LedgerState

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _optional_int(value: str | None) -> int | None:
    return None if value is None else int(value)


def _optional_str(value: int | None) -> str | None:
    return None if value is None else str(value)


def _model_to_token(model: TokenModel) -> TokenEntry:
    return TokenEntry(
        symbol=model.symbol,
        token_contract=model.token_contract,
        settlement=int(model.settlement),
        open=int(model.open),
    )


def _model_to_deal(model: DealModel) -> Deal:
    return Deal(
        owner=model.owner,
        deal_id=model.deal_id,
        label=model.label,
        terms=int(model.terms),
        aux_param=int(model.aux_param),
        created_at=int(model.created_at),
        token=model.token,
        investment=int(model.investment),
        payout=int(model.payout),
        status=DealStatus(model.status),
        confirm_aux_param=_optional_int(model.confirm_aux_param),
        close_aux_param=_optional_int(model.close_aux_param),
        paid_out=int(model.paid_out),
    )


def _deal_to_model(deal: Deal) -> DealModel:
    return DealModel(
        owner_key=deal.owner.lower(),
        deal_id=deal.deal_id,
        owner=deal.owner,
        label=deal.label,
        terms=str(deal.terms),
        aux_param=str(deal.aux_param),
        created_at=str(deal.created_at),
        token=deal.token,
        investment=str(deal.investment),
        payout=str(deal.payout),
        status=int(deal.status),
        confirm_aux_param=_optional_str(deal.confirm_aux_param),
        close_aux_param=_optional_str(deal.close_aux_param),
        paid_out=str(deal.paid_out),
    )


def _model_to_record(model: LedgerEventModel) -> EventRecord:
    return EventRecord.from_dict(
        {
            "sequence": model.sequence,
            "name": model.name,
            "args": model.args,
            "recorded_at": model.recorded_at,
        }
    )


# ── Repository ──────────────────────────────────────────────────────────────


class LedgerRepository:
    """Async persistence for ledger state and the event log.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def apply(self, changes: LedgerChanges) -> None:
        """Write the records in ``changes`` in one database transaction."""
        async for session in self._session_factory():
            if changes.tokens:
                result = await session.execute(select(TokenModel.symbol, TokenModel.position))
                positions = dict(result.all())
                next_position = max(positions.values(), default=-1) + 1
                for entry in changes.tokens:
                    position = positions.get(entry.symbol)
                    if position is None:
                        position = next_position
                        next_position += 1
                    await session.merge(
                        TokenModel(
                            symbol=entry.symbol,
                            token_contract=entry.token_contract,
                            settlement=str(entry.settlement),
                            open=str(entry.open),
                            position=position,
                        )
                    )

            for deal in changes.deals:
                await session.merge(_deal_to_model(deal))

            for role, accounts in changes.roles.items():
                await session.execute(delete(RoleGrantModel).where(RoleGrantModel.role == role.value))
                session.add_all(RoleGrantModel(role=role.value, account=a) for a in accounts)

            await session.merge(LedgerControlModel(id=1, paused=changes.paused))

            for record in changes.events:
                data = record.to_dict()
                session.add(
                    LedgerEventModel(
                        sequence=record.sequence,
                        name=data["name"],
                        args=data["args"],
                        recorded_at=record.recorded_at,
                    )
                )

            await session.commit()
            logger.info(
                "ledger.persisted",
                tokens=len(changes.tokens),
                deals=len(changes.deals),
                roles=len(changes.roles),
                events=len(changes.events),
            )

    async def load_state(self) -> LedgerState | None:
        """Rebuild the persisted snapshot; None if the ledger was never saved."""
        async for session in self._session_factory():
            control = await session.get(LedgerControlModel, 1)
            if control is None:
                return None

            tokens = (await session.execute(select(TokenModel).order_by(TokenModel.position))).scalars().all()
            deals = (
                await session.execute(select(DealModel).order_by(DealModel.owner_key, DealModel.deal_id))
            ).scalars().all()
            grants = (await session.execute(select(RoleGrantModel))).scalars().all()
            last_sequence = (await session.execute(select(func.max(LedgerEventModel.sequence)))).scalar()

            roles: dict[Role, list[str]] = {role: [] for role in Role}
            for grant in grants:
                roles[Role(grant.role)].append(grant.account)

            return LedgerState(
                tokens=[_model_to_token(t) for t in tokens],
                deals=[_model_to_deal(d) for d in deals],
                roles={role: sorted(accounts) for role, accounts in roles.items()},
                paused=control.paused,
                last_event_sequence=last_sequence or 0,
            )

    async def list_events(self, after: int = 0, limit: int = 100) -> list[EventRecord]:
        """Persisted events with a sequence number greater than ``after``."""
        async for session in self._session_factory():
            stmt = (
                select(LedgerEventModel)
                .where(LedgerEventModel.sequence > after)
                .order_by(LedgerEventModel.sequence)
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_model_to_record(m) for m in result.scalars().all()]
