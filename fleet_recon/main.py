"""
FastAPI application for the fleet reconciliation engine.
"""

import argparse
import math
from contextlib import asynccontextmanager
from datetime import date, datetime, time, timedelta
from typing import AsyncIterator, List, Optional

import structlog
import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import Settings, get_settings
from .database import build_engine, build_session_factory, init_db, session_scope
from .exceptions import CardMappingError, FleetReconError
from .models import FinancialTransaction, ReconciliationSummary, TransactionStatus
from .reconciliation import ReconciliationOrchestrator, create_card_mapping
from .utils.logging import setup_logging

logger = structlog.get_logger()


# Request/Response models
class RunReconciliationRequest(BaseModel):
    configuration_id: int


class ReconcileTransactionsRequest(BaseModel):
    transaction_ids: List[int] = Field(min_length=1)


class CardMappingRequest(BaseModel):
    tenant_id: int
    provider_id: int
    card_number: str
    vehicle_id: int
    alternate_plate: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class SummaryResponse(BaseModel):
    processed: int
    matched: int
    unmatched: int
    ignored: int


class RunResponse(BaseModel):
    status: str
    configuration_id: int
    reconciliation: SummaryResponse
    match_rate: float
    processing_time_seconds: float


class ReconcileResponse(BaseModel):
    status: str
    summary: str
    reconciliation: SummaryResponse


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    async for session in session_scope(request.app.state.session_factory):
        yield session


def get_orchestrator(request: Request) -> ReconciliationOrchestrator:
    return ReconciliationOrchestrator(
        request.app.state.session_factory,
        settings=request.app.state.settings,
    )


def create_app(
    session_factory: Optional[async_sessionmaker] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the API.

    Without a session factory, the lifespan creates the engine from
    settings.database_url and initializes the schema.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("Starting fleet reconciliation API", env=settings.app_env)
        engine = None
        if app.state.session_factory is None:
            engine = build_engine(settings)
            await init_db(engine)
            app.state.session_factory = build_session_factory(engine)
        settings.reports_dir.mkdir(parents=True, exist_ok=True)
        yield
        if engine is not None:
            await engine.dispose()
        logger.info("Shutting down fleet reconciliation API")

    app = FastAPI(
        title="Fleet Reconciliation Engine",
        description="Links fuel card transactions to vehicle telemetry",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.session_factory = session_factory
    app.state.settings = settings

    @app.exception_handler(FleetReconError)
    async def engine_error_handler(request: Request, exc: FleetReconError):
        logger.error("Reconciliation request failed", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"error": "reconciliation_failed", "message": str(exc)},
        )

    # API Endpoints
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}

    @app.post("/api/reconciliation/run", response_model=RunResponse)
    async def run_reconciliation(
        request: RunReconciliationRequest,
        orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
    ):
        """Reconcile every pending transaction of a configuration."""
        summary = await orchestrator.run(configuration_id=request.configuration_id)
        return RunResponse(
            status="completed",
            configuration_id=request.configuration_id,
            reconciliation=SummaryResponse(**summary.to_dict()),
            match_rate=round(summary.match_rate, 2),
            processing_time_seconds=summary.processing_time_seconds,
        )

    @app.get("/api/financial-transactions")
    async def list_financial_transactions(
        page: int = Query(default=1, ge=1),
        per_page: int = Query(default=25, ge=1, le=200),
        status: Optional[List[TransactionStatus]] = Query(default=None),
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        provider_slug: Optional[str] = None,
        vehicle_plate: Optional[str] = None,
        session: AsyncSession = Depends(get_session),
    ):
        """List financial transactions, most recent first."""
        stmt = select(FinancialTransaction)

        # Apply filters
        if status:
            stmt = stmt.where(FinancialTransaction.status.in_([s.value for s in status]))
        if start_date:
            stmt = stmt.where(
                FinancialTransaction.transaction_date >= datetime.combine(start_date, time.min)
            )
        if end_date:
            # End date is inclusive
            stmt = stmt.where(
                FinancialTransaction.transaction_date
                < datetime.combine(end_date + timedelta(days=1), time.min)
            )
        if provider_slug:
            stmt = stmt.where(FinancialTransaction.provider_slug == provider_slug)
        if vehicle_plate:
            stmt = stmt.where(FinancialTransaction.vehicle_plate == vehicle_plate)

        total_count = await session.scalar(
            select(func.count()).select_from(stmt.subquery())
        )
        result = await session.execute(
            stmt.order_by(
                FinancialTransaction.transaction_date.desc(),
                FinancialTransaction.id.desc(),
            )
            .offset((page - 1) * per_page)
            .limit(per_page)
        )

        return {
            "data": [t.to_dict() for t in result.scalars().all()],
            "meta": {
                "current_page": page,
                "per_page": per_page,
                "total_count": total_count,
                "total_pages": math.ceil(total_count / per_page),
            },
        }

    @app.get("/api/financial-transactions/{transaction_id}")
    async def get_financial_transaction(
        transaction_id: int,
        session: AsyncSession = Depends(get_session),
    ):
        """Get a financial transaction with its reconciliation state."""
        transaction = await session.get(FinancialTransaction, transaction_id)
        if transaction is None:
            raise HTTPException(
                status_code=404,
                detail={"error": "not_found", "message": "Transaction not found"},
            )
        return transaction.to_dict()

    @app.post("/api/financial-transactions/reconcile", response_model=ReconcileResponse)
    async def reconcile_transactions(
        request: ReconcileTransactionsRequest,
        orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
    ):
        """Reconcile specific transactions, regardless of their current status."""
        summaries = await orchestrator.reconcile_transactions(request.transaction_ids)

        if not summaries:
            raise HTTPException(
                status_code=404,
                detail={
                    "error": "no_transactions_found",
                    "message": "No provided transactions were found",
                },
            )

        total = ReconciliationSummary()
        for summary in summaries.values():
            total.merge(summary)

        return ReconcileResponse(
            status="completed",
            summary=(
                f"Processed {total.processed} transactions across "
                f"{len(summaries)} configurations"
            ),
            reconciliation=SummaryResponse(**total.to_dict()),
        )

    @app.post("/api/card-mappings", status_code=201)
    async def add_card_mapping(
        request: CardMappingRequest,
        session: AsyncSession = Depends(get_session),
    ):
        """Assign a fuel card to a vehicle."""
        try:
            mapping = await create_card_mapping(
                session,
                tenant_id=request.tenant_id,
                provider_id=request.provider_id,
                card_number=request.card_number,
                vehicle_id=request.vehicle_id,
                alternate_plate=request.alternate_plate,
                valid_from=request.valid_from,
                valid_until=request.valid_until,
            )
        except CardMappingError as e:
            await session.rollback()
            raise HTTPException(
                status_code=400,
                detail={"error": "invalid_card_mapping", "message": str(e)},
            )

        await session.commit()
        return mapping.to_dict()

    return app


def main() -> None:
    """Serve the API with uvicorn."""
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Fleet reconciliation API server")
    parser.add_argument("--host", default=settings.host, help="Interface to bind")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to run the server on")
    args = parser.parse_args()

    setup_logging(settings)
    logger.info("Starting backend", host=args.host, port=args.port)

    uvicorn.run(
        create_app(settings=settings),
        host=args.host,
        port=args.port,
        log_level=settings.app_log_level.lower(),
    )


if __name__ == "__main__":
    main()
