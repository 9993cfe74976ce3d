import logging
from typing import Annotated, Optional, Union
from uuid import UUID

from fastapi import Body, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, configure_logging, get_settings
from .errors import (
    IdempotencyConflictError,
    NotFoundError,
    OverlapError,
    StepFailure,
    ValidationError,
)
from .models import (
    BandValidationResponse,
    CommissionBalance,
    PriceQuote,
    PricingBand,
    RechargeRequest,
    RechargeResult,
    RedemptionRequest,
    RedemptionResult,
    ResellerPurchaseRequest,
    ResellerPurchaseResult,
    SettlementRecord,
    Withdrawal,
    WithdrawalDecision,
    WithdrawalRequest,
)
from .service import SettlementCoordinator

logger = logging.getLogger(__name__)

SettlementBody = Annotated[
    Union[RechargeRequest, RedemptionRequest, ResellerPurchaseRequest],
    Body(discriminator="kind"),
]
SettlementResponse = Union[RechargeResult, RedemptionResult, ResellerPurchaseResult]


def create_app(coordinator: Optional[SettlementCoordinator] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    coordinator = coordinator or SettlementCoordinator(settings=settings)

    app = FastAPI(
        title="Settlement Engine API",
        description="Recharge, commission redemption and reseller purchase settlements with step-indexed failure reporting",
        version="1.0.0",
        root_path=settings.api_root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.coordinator = coordinator

    @app.exception_handler(StepFailure)
    async def step_failure_handler(request: Request, exc: StepFailure) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "detail": str(exc),
                "workflow": exc.workflow.value,
                "step_index": exc.step_index,
                "stage": exc.stage,
                "step": exc.step.value,
                "completed_steps": [s.value for s in exc.completed_steps],
                "settlement_id": str(exc.settlement_id) if exc.settlement_id else None,
            },
        )

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "settlement-engine"}

    @app.post("/settlements", response_model=SettlementResponse, status_code=status.HTTP_201_CREATED,
              tags=["Settlements"])
    def create_settlement(request: SettlementBody):
        try:
            return coordinator.settle(request)
        except IdempotencyConflictError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except NotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.get("/settlements/failed", response_model=list[SettlementRecord], tags=["Settlements"])
    def list_failed_settlements():
        return coordinator.list_failed_settlements()

    @app.get("/settlements/{settlement_id}", response_model=SettlementRecord, tags=["Settlements"])
    def get_settlement(settlement_id: UUID):
        try:
            return coordinator.get_settlement(settlement_id)
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Settlement {settlement_id} not found")

    @app.post("/panels/{panel_name}/pricing-bands/validate", response_model=BandValidationResponse,
              tags=["Pricing"])
    def validate_pricing_band(panel_name: str, candidate: PricingBand):
        try:
            coordinator.validate_pricing_band(panel_name, candidate)
        except OverlapError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        return BandValidationResponse(panel_name=panel_name, valid=True, message="Band does not overlap")

    @app.get("/panels/{panel_name}/minimum-quantity", tags=["Pricing"])
    def get_minimum_quantity(panel_name: str):
        try:
            return {"panel_name": panel_name, "minimum_quantity": coordinator.minimum_quantity(panel_name)}
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    @app.get("/panels/{panel_name}/quote", response_model=PriceQuote, tags=["Pricing"])
    def get_quote(panel_name: str, quantity: int):
        try:
            return coordinator.quote(panel_name, quantity)
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.post("/withdrawals", response_model=Withdrawal, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
    def request_withdrawal(request: WithdrawalRequest):
        try:
            return coordinator.request_withdrawal(request)
        except NotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.get("/withdrawals/pending", response_model=list[Withdrawal], tags=["Withdrawals"])
    def list_pending_withdrawals():
        return coordinator.list_pending_withdrawals()

    @app.post("/withdrawals/{withdrawal_id}/approve", response_model=Withdrawal, tags=["Withdrawals"])
    def approve_withdrawal(withdrawal_id: UUID, decision: Optional[WithdrawalDecision] = None):
        try:
            return coordinator.approve_withdrawal(withdrawal_id, decision)
        except IdempotencyConflictError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except NotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.post("/withdrawals/{withdrawal_id}/cancel", response_model=Withdrawal, tags=["Withdrawals"])
    def cancel_withdrawal(withdrawal_id: UUID, decision: WithdrawalDecision):
        try:
            return coordinator.cancel_withdrawal(withdrawal_id, decision)
        except NotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.get("/customers/{customer_id}/commission", response_model=CommissionBalance, tags=["Customers"])
    def get_commission_balance(customer_id: UUID):
        try:
            return coordinator.get_commission_balance(customer_id)
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Customer {customer_id} not found")

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
