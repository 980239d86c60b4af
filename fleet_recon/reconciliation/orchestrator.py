"""
Reconciliation Orchestrator - Main pipeline coordinator.

Drives each financial transaction through:
1. Product classification (other -> ignored)
2. Vehicle identification (plate, then card)
3. Candidate search in the telemetry window
4. Confidence scoring and best-candidate selection
5. Atomic link, or a terminal non-match state

Every transaction is its own unit of work. A failure in one transaction is
recorded on it as reconciliation_error and the batch moves on.
"""

import time
import traceback
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings, get_settings
from ..exceptions import ReconciliationScopeError
from ..models import (
    AuditAction,
    EnergyType,
    FinancialTransaction,
    LinkOutcome,
    MatchReason,
    ReconciliationSummary,
    SyncExecution,
    TransactionOutcome,
    TransactionStatus,
)
from ..utils.audit_logger import AuditLogger
from .candidates import CandidateFinder, TelemetryRegistry
from .classifier import ProductClassifier
from .linker import TransactionLinker
from .scoring import ConfidenceScorer
from .vehicle_identifier import VehicleIdentifier

logger = structlog.get_logger()


class ReconciliationOrchestrator:
    """
    Main orchestrator for the reconciliation pipeline.

    Coordinates all steps and aggregates run statistics.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Optional[Settings] = None,
        registry: Optional[TelemetryRegistry] = None,
        classifier: Optional[ProductClassifier] = None,
        identifier: Optional[VehicleIdentifier] = None,
        finder: Optional[CandidateFinder] = None,
        scorer: Optional[ConfidenceScorer] = None,
        linker: Optional[TransactionLinker] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.classifier = classifier or ProductClassifier()
        self.identifier = identifier or VehicleIdentifier()
        self.finder = finder or CandidateFinder(registry=registry, settings=self.settings)
        self.scorer = scorer or ConfidenceScorer(settings=self.settings)
        self.linker = linker or TransactionLinker()
        self.audit = AuditLogger(run_id=str(uuid4()), settings=self.settings)

    async def run(
        self,
        configuration_id: Optional[int] = None,
        transaction_ids: Optional[Iterable[int]] = None,
        progress_callback: Optional[Callable[[float, str], None]] = None,
    ) -> ReconciliationSummary:
        """
        Reconcile a batch of financial transactions.

        Args:
            configuration_id: Integration configuration. Alone, selects all of
                its pending transactions.
            transaction_ids: Explicit scope, processed whatever their status
                (restricted to configuration_id when both are given).
            progress_callback: Optional callback for progress updates

        Returns:
            ReconciliationSummary with processed/matched/unmatched/ignored

        Raises:
            ReconciliationScopeError: the scope could not be read
        """
        self.audit = AuditLogger(run_id=str(uuid4()), settings=self.settings)
        scope = await self._load_scope(configuration_id, transaction_ids)
        summary = await self._process(
            [transaction_id for transaction_id, _ in scope],
            configuration_id=configuration_id,
            progress_callback=progress_callback,
        )
        self._export_audit()
        return summary

    async def reconcile_transactions(
        self,
        transaction_ids: Iterable[int],
    ) -> Dict[int, ReconciliationSummary]:
        """
        Reconcile specific transactions, regardless of their current status.

        Transactions are grouped by integration configuration and each group
        is run in turn.

        Returns:
            Summary per configuration id (empty if no transaction exists)
        """
        self.audit = AuditLogger(run_id=str(uuid4()), settings=self.settings)
        scope = await self._load_scope(None, transaction_ids)

        by_configuration: Dict[int, List[int]] = defaultdict(list)
        for transaction_id, configuration_id in scope:
            by_configuration[configuration_id].append(transaction_id)

        summaries = {}
        for configuration_id, ids in by_configuration.items():
            summaries[configuration_id] = await self._process(
                ids, configuration_id=configuration_id
            )
        self._export_audit()
        return summaries

    def _export_audit(self) -> None:
        """Write the run's audit trail to reports_dir (best effort)."""
        if not self.settings.export_audit:
            return
        try:
            self.audit.export_to_file()
        except OSError as e:
            logger.warning("Could not export audit log", run_id=self.audit.run_id, error=str(e))

    async def _load_scope(
        self,
        configuration_id: Optional[int],
        transaction_ids: Optional[Iterable[int]],
    ) -> List[Tuple[int, int]]:
        """Read (transaction id, configuration id) pairs to process, in id order."""
        stmt = select(
            FinancialTransaction.id,
            FinancialTransaction.configuration_id,
        ).order_by(FinancialTransaction.id)

        if transaction_ids is not None:
            stmt = stmt.where(FinancialTransaction.id.in_(list(transaction_ids)))
            if configuration_id is not None:
                stmt = stmt.where(FinancialTransaction.configuration_id == configuration_id)
        elif configuration_id is not None:
            stmt = stmt.where(
                FinancialTransaction.configuration_id == configuration_id,
                FinancialTransaction.status == TransactionStatus.PENDING.value,
            )
        else:
            raise ValueError("configuration_id or transaction_ids is required")

        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return [(row[0], row[1]) for row in result.all()]
        except Exception as e:
            logger.exception(
                "Failed to load reconciliation scope",
                configuration_id=configuration_id,
                error=str(e),
            )
            raise ReconciliationScopeError(
                f"Could not load transactions to reconcile: {e}"
            ) from e

    async def _process(
        self,
        transaction_ids: List[int],
        configuration_id: Optional[int] = None,
        progress_callback: Optional[Callable[[float, str], None]] = None,
    ) -> ReconciliationSummary:
        """Process every transaction once and aggregate the outcomes."""
        start_time = time.time()
        summary = ReconciliationSummary()
        total = len(transaction_ids)

        self.audit.record(
            AuditAction.RUN_STARTED,
            f"Reconciling {total} transactions",
            configuration_id=configuration_id,
        )

        for i, transaction_id in enumerate(transaction_ids):
            outcome = await self._reconcile_one(transaction_id)
            summary.record(outcome.status)

            if progress_callback:
                progress_callback(
                    100 * (i + 1) / total,
                    f"Reconciled transaction {i + 1}/{total}",
                )

        summary.processing_time_seconds = time.time() - start_time

        self.audit.record(
            AuditAction.RUN_COMPLETED,
            "Reconciliation complete",
            configuration_id=configuration_id,
            **summary.to_dict(),
        )
        return summary

    async def _reconcile_one(self, transaction_id: int) -> TransactionOutcome:
        """Per-transaction error boundary."""
        async with self.session_factory() as session:
            try:
                return await self._reconcile_transaction(session, transaction_id)
            except Exception as e:
                await session.rollback()
                logger.exception(
                    "Error reconciling transaction",
                    transaction_id=transaction_id,
                    error=str(e),
                )
                failure = e
        return await self._record_error(transaction_id, failure)

    async def _reconcile_transaction(
        self,
        session: AsyncSession,
        transaction_id: int,
    ) -> TransactionOutcome:
        """Apply the state machine to one transaction."""
        transaction = await session.get(FinancialTransaction, transaction_id)
        if transaction is None:
            raise LookupError(f"Financial transaction {transaction_id} not found")

        if transaction.is_linked:
            return self._already_linked(transaction_id)

        # 1. Classify product
        classification = await self.classifier.classify_transaction(session, transaction)
        energy_type = classification.energy_type

        if energy_type == EnergyType.OTHER:
            written = await self._finish(
                session,
                transaction,
                TransactionStatus.IGNORED,
                {
                    "energy_type": energy_type.value,
                    "classified_by": classification.source.value,
                },
            )
            if not written:
                return self._already_linked(transaction_id)

            self.audit.record(
                AuditAction.TRANSACTION_IGNORED,
                "Transaction ignored: not an energy product",
                transaction_id=transaction.id,
                product_name=transaction.product_name,
            )
            return TransactionOutcome(transaction.id, TransactionStatus.IGNORED)

        # 2. Identify vehicle
        resolved = await self.identifier.resolve(session, transaction)

        if resolved is None:
            return await self._handle_unidentified_vehicle(session, transaction)

        vehicle, identified_by = resolved

        # 3. Find and score candidates
        candidates = await self.finder.find(
            session, vehicle.id, energy_type, transaction.transaction_date
        )
        scored = self.scorer.score_all(transaction, candidates, energy_type)
        accepted = [c for c in scored if self.scorer.is_acceptable(c)]

        # 4. Link best acceptable candidate still free
        for candidate in accepted:
            outcome = await self.linker.link(
                session,
                transaction,
                candidate,
                extra_metadata={
                    "vehicle_id": vehicle.id,
                    "identified_by": identified_by,
                    "classified_by": classification.source.value,
                },
            )

            if outcome == LinkOutcome.LINKED:
                await session.commit()
                self.audit.record(
                    AuditAction.MATCH_COMMITTED,
                    f"Matched with confidence {candidate.confidence}",
                    transaction_id=transaction.id,
                    event_id=candidate.event_id,
                    confidence=candidate.confidence,
                    energy_type=energy_type.value,
                )
                return TransactionOutcome(
                    transaction.id,
                    TransactionStatus.MATCHED,
                    confidence=candidate.confidence,
                    event_id=candidate.event_id,
                )

            if outcome == LinkOutcome.TRANSACTION_LINKED:
                await session.rollback()
                return self._already_linked(transaction_id)

            self.audit.record(
                AuditAction.CLAIM_CONFLICT,
                "Candidate claimed by another transaction",
                transaction_id=transaction.id,
                event_id=candidate.event_id,
                success=False,
            )

        # 5. Vehicle identified but no telemetry to link
        written = await self._finish(
            session,
            transaction,
            TransactionStatus.UNMATCHED,
            {
                "match_reason": MatchReason.NO_TELEMETRY_FOUND.value,
                "energy_type": energy_type.value,
                "vehicle_id": vehicle.id,
                "identified_by": identified_by,
                "candidates_found": len(candidates),
                "best_confidence": scored[0].confidence if scored else None,
            },
        )
        if not written:
            return self._already_linked(transaction_id)

        self.audit.record(
            AuditAction.NO_TELEMETRY_FOUND,
            "No acceptable telemetry event",
            transaction_id=transaction.id,
            candidates_found=len(candidates),
        )
        return TransactionOutcome(
            transaction.id,
            TransactionStatus.UNMATCHED,
            reason=MatchReason.NO_TELEMETRY_FOUND.value,
        )

    async def _handle_unidentified_vehicle(
        self,
        session: AsyncSession,
        transaction: FinancialTransaction,
    ) -> TransactionOutcome:
        """Mark as unmatched and flag the vehicle on the sync execution."""
        transaction_id = transaction.id
        unidentified = {
            "transaction_id": transaction_id,
            "plate": transaction.vehicle_plate,
            "card": transaction.card_number,
            "external_id": transaction.external_id,
        }
        sync_execution_id = transaction.sync_execution_id

        written = await self._finish(
            session,
            transaction,
            TransactionStatus.UNMATCHED,
            {
                "match_reason": MatchReason.VEHICLE_NOT_IDENTIFIED.value,
                "attempted_plate": unidentified["plate"],
                "attempted_card": unidentified["card"],
            },
        )
        if not written:
            return self._already_linked(transaction_id)

        self.audit.record(
            AuditAction.VEHICLE_NOT_IDENTIFIED,
            "Vehicle not identified",
            transaction_id=transaction_id,
            plate=unidentified["plate"],
            card=unidentified["card"],
            success=False,
        )

        if sync_execution_id is not None:
            await self._log_unidentified_vehicle(session, sync_execution_id, unidentified)

        return TransactionOutcome(
            transaction_id,
            TransactionStatus.UNMATCHED,
            reason=MatchReason.VEHICLE_NOT_IDENTIFIED.value,
        )

    async def _log_unidentified_vehicle(
        self,
        session: AsyncSession,
        sync_execution_id: int,
        entry: Dict[str, Any],
    ) -> None:
        """Append an entry to the sync execution's unidentified list (best effort)."""
        try:
            execution = await session.get(SyncExecution, sync_execution_id)
            if execution is None:
                return

            metadata = dict(execution.execution_metadata or {})
            unidentified = list(metadata.get("unidentified_vehicles") or [])
            unidentified.append(entry)
            metadata["unidentified_vehicles"] = unidentified
            execution.execution_metadata = metadata

            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.warning(
                "Could not record unidentified vehicle on sync execution",
                transaction_id=entry["transaction_id"],
                sync_execution_id=sync_execution_id,
                error=str(e),
            )

    async def _finish(
        self,
        session: AsyncSession,
        transaction: FinancialTransaction,
        status: TransactionStatus,
        metadata: Dict[str, Any],
    ) -> bool:
        """
        Write a terminal non-match state and commit.

        Conditional on the transaction holding no link, so a match committed
        by a concurrent run is never overwritten. Returns False in that case.
        """
        result = await session.execute(
            update(FinancialTransaction)
            .where(
                FinancialTransaction.id == transaction.id,
                FinancialTransaction.vehicle_refueling_id.is_(None),
                FinancialTransaction.vehicle_electric_charge_id.is_(None),
            )
            .values(
                status=status.value,
                match_confidence=None,
                reconciliation_metadata=metadata,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            return False

        await session.commit()
        return True

    def _already_linked(self, transaction_id: int) -> TransactionOutcome:
        """Outcome for a transaction that already holds a link."""
        self.audit.record(
            AuditAction.ALREADY_LINKED,
            "Transaction already linked, left unchanged",
            transaction_id=transaction_id,
        )
        return TransactionOutcome(transaction_id, TransactionStatus.MATCHED)

    async def _record_error(
        self,
        transaction_id: int,
        error: Exception,
    ) -> TransactionOutcome:
        """Force a failed transaction into unmatched(reconciliation_error)."""
        frames = traceback.format_tb(error.__traceback__)
        trace = [
            frame.strip()
            for frame in frames[-self.settings.error_trace_lines:]
        ]
        metadata = {
            "match_reason": MatchReason.RECONCILIATION_ERROR.value,
            "error_type": type(error).__name__,
            "error_message": str(error),
            "error_trace": trace,
        }

        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(FinancialTransaction)
                    .where(
                        FinancialTransaction.id == transaction_id,
                        FinancialTransaction.vehicle_refueling_id.is_(None),
                        FinancialTransaction.vehicle_electric_charge_id.is_(None),
                    )
                    .values(
                        status=TransactionStatus.UNMATCHED.value,
                        match_confidence=None,
                        reconciliation_metadata=metadata,
                        updated_at=datetime.utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except Exception as e:
            logger.exception(
                "Failed to record reconciliation error",
                transaction_id=transaction_id,
                error=str(e),
            )

        self.audit.record(
            AuditAction.RECONCILIATION_ERROR,
            "Reconciliation failed for transaction",
            transaction_id=transaction_id,
            success=False,
            error_message=str(error),
        )
        return TransactionOutcome(
            transaction_id,
            TransactionStatus.UNMATCHED,
            reason=MatchReason.RECONCILIATION_ERROR.value,
        )
