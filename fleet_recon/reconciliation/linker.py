"""
Transaction Linker - mutual, conditional link between a financial
transaction and one telemetry event.

Both updates are conditional on the link still being free, and run inside
the caller's database transaction. The caller commits on LINKED and rolls
back on anything else; no lock is held while candidates are scored.
"""

from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Type

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from ..models import (
    FinancialTransaction,
    LinkOutcome,
    ScoredCandidate,
    TransactionStatus,
    VehicleElectricCharge,
    VehicleRefueling,
)

logger = structlog.get_logger()


def default_link_columns() -> Dict[Type, str]:
    """Transaction column holding the link, per telemetry model."""
    return {
        VehicleRefueling: "vehicle_refueling_id",
        VehicleElectricCharge: "vehicle_electric_charge_id",
    }


class TransactionLinker:
    """Claims a telemetry event for a transaction."""

    def __init__(self, link_columns: Optional[Mapping[Type, str]] = None):
        self.link_columns = dict(link_columns) if link_columns is not None else default_link_columns()

    async def claim_event(
        self,
        session: AsyncSession,
        transaction: FinancialTransaction,
        event,
    ) -> bool:
        """
        Point the event at the transaction and copy its cost, only if the
        event is still unlinked and the transaction holds no link on
        either side.
        """
        model = type(event)
        conditions = [
            model.id == event.id,
            model.financial_transaction_id.is_(None),
            ~select(FinancialTransaction.id)
            .where(
                FinancialTransaction.id == transaction.id,
                (FinancialTransaction.vehicle_refueling_id.is_not(None))
                | (FinancialTransaction.vehicle_electric_charge_id.is_not(None)),
            )
            .exists(),
        ]
        for telemetry_model in self.link_columns:
            # Aliased so the subquery is not correlated to the UPDATE target
            linked = aliased(telemetry_model)
            conditions.append(
                ~select(linked.id)
                .where(linked.financial_transaction_id == transaction.id)
                .exists()
            )

        result = await session.execute(
            update(model)
            .where(*conditions)
            .values(
                financial_transaction_id=transaction.id,
                cost=transaction.total_amount,
                currency=transaction.currency,
                is_reconciled=True,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def is_transaction_linked(
        self,
        session: AsyncSession,
        transaction_id: int,
    ) -> bool:
        """Check the database for a link on either side of the transaction."""
        result = await session.execute(
            select(
                FinancialTransaction.vehicle_refueling_id,
                FinancialTransaction.vehicle_electric_charge_id,
            ).where(FinancialTransaction.id == transaction_id)
        )
        row = result.first()
        if row is not None and (row[0] is not None or row[1] is not None):
            return True

        for model in self.link_columns:
            linked = await session.execute(
                select(model.id)
                .where(model.financial_transaction_id == transaction_id)
                .limit(1)
            )
            if linked.first() is not None:
                return True
        return False

    async def mark_matched(
        self,
        session: AsyncSession,
        transaction: FinancialTransaction,
        candidate: ScoredCandidate,
        metadata: Dict[str, Any],
    ) -> bool:
        """Set the transaction side of the link, only if it holds no link yet."""
        link_column = self.link_columns[type(candidate.event)]
        result = await session.execute(
            update(FinancialTransaction)
            .where(
                FinancialTransaction.id == transaction.id,
                FinancialTransaction.vehicle_refueling_id.is_(None),
                FinancialTransaction.vehicle_electric_charge_id.is_(None),
            )
            .values(
                {
                    "status": TransactionStatus.MATCHED.value,
                    "match_confidence": candidate.confidence,
                    "reconciliation_metadata": metadata,
                    "updated_at": datetime.utcnow(),
                    link_column: candidate.event_id,
                }
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def link(
        self,
        session: AsyncSession,
        transaction: FinancialTransaction,
        candidate: ScoredCandidate,
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> LinkOutcome:
        """
        Link a transaction to a scored candidate.

        Returns:
            LINKED: both sides written, caller must commit
            EVENT_CLAIMED: event already linked elsewhere, nothing written
            TRANSACTION_LINKED: transaction already linked, caller must
                roll back
        """
        transaction_id = transaction.id

        if not await self.claim_event(session, transaction, candidate.event):
            if await self.is_transaction_linked(session, transaction_id):
                logger.info(
                    "Transaction already linked",
                    transaction_id=transaction_id,
                    event_id=candidate.event_id,
                )
                return LinkOutcome.TRANSACTION_LINKED

            logger.info(
                "Telemetry event already claimed",
                transaction_id=transaction_id,
                event_id=candidate.event_id,
                event_type=type(candidate.event).__tablename__,
            )
            return LinkOutcome.EVENT_CLAIMED

        metadata = {"match_details": candidate.match_details()}
        if extra_metadata:
            metadata.update(extra_metadata)

        if not await self.mark_matched(session, transaction, candidate, metadata):
            logger.warning(
                "Transaction already linked",
                transaction_id=transaction_id,
                event_id=candidate.event_id,
            )
            return LinkOutcome.TRANSACTION_LINKED

        return LinkOutcome.LINKED
