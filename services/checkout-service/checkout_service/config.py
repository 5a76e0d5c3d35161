from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    order_service_url: str = "http://order-service:8081"
    success_response_code: str = "00"
    # Plausible VND per USD; anything outside is not treated as the same purchase.
    min_implied_rate: float = 20000.0
    max_implied_rate: float = 30000.0
    pending_cookie_name: str = "pending_payment_id"
    pending_cookie_max_age: int = 1800
    cookie_secure: bool = True
    request_timeout: float = 5.0
    order_history_path: str = "/profile/orders"

    def __post_init__(self) -> None:
        if not 0 < self.min_implied_rate < self.max_implied_rate:
            raise RuntimeError(
                "HEURISTIC_MIN_RATE must be positive and below HEURISTIC_MAX_RATE"
            )

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            order_service_url=os.environ.get("ORDER_SERVICE_URL", cls.order_service_url),
            success_response_code=os.environ.get("GATEWAY_SUCCESS_CODE", cls.success_response_code),
            min_implied_rate=float(os.environ.get("HEURISTIC_MIN_RATE", cls.min_implied_rate)),
            max_implied_rate=float(os.environ.get("HEURISTIC_MAX_RATE", cls.max_implied_rate)),
            pending_cookie_name=os.environ.get("PENDING_COOKIE_NAME", cls.pending_cookie_name),
            pending_cookie_max_age=int(
                os.environ.get("PENDING_COOKIE_MAX_AGE", cls.pending_cookie_max_age)
            ),
            cookie_secure=os.environ.get("COOKIE_SECURE", "true").lower() not in {"0", "false", "no"},
            request_timeout=float(os.environ.get("ORDER_SERVICE_TIMEOUT", cls.request_timeout)),
            order_history_path=os.environ.get("ORDER_HISTORY_PATH", cls.order_history_path),
        )
