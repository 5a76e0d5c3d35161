from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware

from . import schemas
from .config import Settings
from .engine import ReconciliationEngine
from .errors import BackendUnavailable, OrderNotFound, PaymentStateConflict
from .flow import OutcomeStatus, PaymentReturnFlow, ReturnOutcome
from .guard import IdempotencyGuard, ReconciliationAttempt
from .identity import IdentityResolver
from .order_client import HTTPOrderServiceClient, OrderServiceClient

MESSAGES = {
    OutcomeStatus.SUCCESS: "Your order has been confirmed and payment processed successfully.",
    OutcomeStatus.FAILURE: "Your payment could not be processed. You can retry it from your order history.",
    OutcomeStatus.CONFIRMED: "Thank you for your purchase. Your order has been successfully placed.",
}


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_order_client(request: Request) -> OrderServiceClient:
    return request.app.state.order_client


def get_flow(request: Request) -> PaymentReturnFlow:
    return request.app.state.flow


def create_app(
    settings: Settings | None = None,
    order_client: OrderServiceClient | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    owns_client = order_client is None
    if order_client is None:
        order_client = HTTPOrderServiceClient(
            settings.order_service_url, timeout=settings.request_timeout
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_client:
            await order_client.aclose()

    app = FastAPI(
        title="Checkout Service",
        version="0.2.0",
        description="Reconciles VNPay returns with pending payments.",
        lifespan=lifespan,
    )
    allowed_origins = [
        origin.strip() for origin in os.environ.get("ALLOWED_ORIGINS", "*").split(",")
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.order_client = order_client
    app.state.flow = PaymentReturnFlow(
        IdentityResolver(order_client, settings.min_implied_rate, settings.max_implied_rate),
        ReconciliationEngine(order_client),
        IdempotencyGuard(),
        success_code=settings.success_response_code,
    )

    @app.get("/healthz", response_model=schemas.HealthResponse)
    async def healthz() -> schemas.HealthResponse:
        return schemas.HealthResponse(status="ok")

    @app.post(
        "/checkout/orders/{order_id}/pay",
        response_model=schemas.GatewayRedirect,
        status_code=status.HTTP_201_CREATED,
    )
    async def start_gateway_payment(
        order_id: int,
        response: Response,
        x_user_id: str = Header(...),
        settings: Settings = Depends(get_settings),
        client: OrderServiceClient = Depends(get_order_client),
    ) -> schemas.GatewayRedirect:
        try:
            redirect = await client.create_gateway_payment(order_id, x_user_id)
        except OrderNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        except PaymentStateConflict as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except BackendUnavailable as exc:
            raise HTTPException(status_code=502, detail=str(exc))

        # Bridges the redirect: read back on return if the gateway drops vnp_TxnRef.
        response.set_cookie(
            settings.pending_cookie_name,
            str(redirect.payment_id),
            max_age=settings.pending_cookie_max_age,
            secure=settings.cookie_secure,
            httponly=True,
            samesite="lax",
        )
        return redirect

    @app.get("/order-confirmed", response_model=schemas.ReturnOutcomeResponse)
    async def payment_return(
        request: Request,
        response: Response,
        x_user_id: Optional[str] = Header(default=None),
        settings: Settings = Depends(get_settings),
        flow: PaymentReturnFlow = Depends(get_flow),
    ) -> schemas.ReturnOutcomeResponse:
        with ReconciliationAttempt() as attempt:
            outcome = await flow.handle(
                request.query_params,
                attempt=attempt,
                pending_marker=request.cookies.get(settings.pending_cookie_name),
                user_id=x_user_id,
            )
        if outcome is None:
            raise HTTPException(status_code=409, detail="Payment return is already being processed.")
        if outcome.terminal:
            response.delete_cookie(
                settings.pending_cookie_name,
                secure=settings.cookie_secure,
                httponly=True,
                samesite="lax",
            )
        return _present(outcome, settings)

    @app.get("/order-confirmed/{order_id}", response_model=schemas.ReturnOutcomeResponse)
    async def order_confirmed(
        order_id: int,
        settings: Settings = Depends(get_settings),
    ) -> schemas.ReturnOutcomeResponse:
        # Final landing page after a reconciled return; nothing left to verify.
        return _present(ReturnOutcome(OutcomeStatus.CONFIRMED, order_id=order_id), settings)

    return app


def _present(outcome: ReturnOutcome, settings: Settings) -> schemas.ReturnOutcomeResponse:
    if outcome.status == OutcomeStatus.FAILURE or outcome.order_id is None:
        next_path = settings.order_history_path
    elif outcome.status == OutcomeStatus.SUCCESS:
        next_path = f"/order-confirmed/{outcome.order_id}"
    else:
        next_path = f"/order/{outcome.order_id}"

    transaction = None
    if outcome.payload is not None:
        payload = outcome.payload
        transaction = schemas.TransactionDetails(
            amount=payload.amount,
            bank_code=payload.bank_code,
            bank_transaction_no=payload.bank_transaction_id,
            transaction_no=payload.transaction_no,
            order_info=payload.order_info,
            paid_at=payload.pay_date,
        )
    return schemas.ReturnOutcomeResponse(
        status=outcome.status.value,
        order_id=outcome.order_id if outcome.status != OutcomeStatus.FAILURE else None,
        message=MESSAGES[outcome.status],
        next_path=next_path,
        transaction=transaction,
    )
