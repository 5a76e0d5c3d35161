from __future__ import annotations

import os

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware

from . import schemas
from .database import init_db
from .gateway import GatewaySettings
from .repository import OrderRepository
from .service import (
    OrderNotFound,
    OrderNotPayable,
    OrderPaymentService,
    PaymentNotFound,
    PaymentStateConflict,
)


def get_repository() -> OrderRepository:
    return OrderRepository()


def get_gateway_settings() -> GatewaySettings:
    return GatewaySettings.from_env()


def build_service(
    repo: OrderRepository = Depends(get_repository),
    gateway: GatewaySettings = Depends(get_gateway_settings),
) -> OrderPaymentService:
    return OrderPaymentService(repo, gateway)


def create_app() -> FastAPI:
    init_db()
    app = FastAPI(
        title="Order Service",
        version="0.2.0",
        description="System of record for orders and their payment records.",
    )
    allowed_origins = [
        origin.strip() for origin in os.environ.get("ALLOWED_ORIGINS", "*").split(",")
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz", response_model=schemas.HealthResponse)
    async def healthz() -> schemas.HealthResponse:
        return schemas.HealthResponse(status="ok")

    @app.post(
        "/orders",
        response_model=schemas.OrderSummary,
        status_code=status.HTTP_201_CREATED,
    )
    async def create_order(
        payload: schemas.CreateOrderRequest,
        x_user_id: str = Header(...),
        service: OrderPaymentService = Depends(build_service),
    ) -> schemas.OrderSummary:
        view = service.place_order(x_user_id, payload.total_amount, payload.method, payload.address)
        return schemas.OrderSummary.from_view(view)

    @app.get("/orders/mine", response_model=list[schemas.OrderSummary])
    async def list_my_orders(
        limit: int = 50,
        x_user_id: str = Header(...),
        service: OrderPaymentService = Depends(build_service),
    ) -> list[schemas.OrderSummary]:
        views = service.list_orders_for_user(x_user_id, limit=limit)
        return [schemas.OrderSummary.from_view(view) for view in views]

    @app.get("/orders/{order_id}", response_model=schemas.OrderSummary)
    async def get_order(
        order_id: int,
        service: OrderPaymentService = Depends(build_service),
    ) -> schemas.OrderSummary:
        try:
            view = service.get_order(order_id)
        except OrderNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        return schemas.OrderSummary.from_view(view)

    @app.post("/orders/{order_id}/cancel", response_model=schemas.OrderSummary)
    async def cancel_order(
        order_id: int,
        payload: schemas.CancelOrderRequest,
        x_user_id: str = Header(...),
        service: OrderPaymentService = Depends(build_service),
    ) -> schemas.OrderSummary:
        try:
            view = service.cancel_order(order_id, x_user_id, payload.reason)
        except OrderNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        except OrderNotPayable as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        return schemas.OrderSummary.from_view(view)

    @app.post(
        "/orders/{order_id}/payments/gateway-url",
        response_model=schemas.GatewayPaymentUrl,
        status_code=status.HTTP_201_CREATED,
    )
    async def create_gateway_url(
        order_id: int,
        request: Request,
        x_user_id: str = Header(...),
        service: OrderPaymentService = Depends(build_service),
    ) -> schemas.GatewayPaymentUrl:
        client_ip = request.client.host if request.client else "127.0.0.1"
        try:
            result = service.start_gateway_payment(order_id, x_user_id, client_ip=client_ip)
        except OrderNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        except (OrderNotPayable, PaymentStateConflict) as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        return schemas.GatewayPaymentUrl(
            payment_id=result.payment.id,
            order_id=result.payment.order_id,
            payment_url=result.payment_url,
        )

    @app.get("/payments/{payment_id}", response_model=schemas.PaymentSummary)
    async def get_payment(
        payment_id: int,
        service: OrderPaymentService = Depends(build_service),
    ) -> schemas.PaymentSummary:
        try:
            record = service.get_payment(payment_id)
        except PaymentNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        return schemas.PaymentSummary.from_record(record)

    @app.put("/payments/{payment_id}/success", response_model=schemas.PaymentSummary)
    async def mark_payment_success(
        payment_id: int,
        service: OrderPaymentService = Depends(build_service),
    ) -> schemas.PaymentSummary:
        try:
            record = service.mark_success(payment_id)
        except PaymentNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        except PaymentStateConflict as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        return schemas.PaymentSummary.from_record(record)

    @app.put("/payments/{payment_id}/failed", response_model=schemas.PaymentSummary)
    async def mark_payment_failed(
        payment_id: int,
        service: OrderPaymentService = Depends(build_service),
    ) -> schemas.PaymentSummary:
        try:
            record = service.mark_failed(payment_id)
        except PaymentNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        except PaymentStateConflict as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        return schemas.PaymentSummary.from_record(record)

    return app
