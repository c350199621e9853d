"""Premium pack payment boundary. Verification itself lives outside the engine."""

from __future__ import annotations

from typing import Protocol

import structlog

log = structlog.get_logger(__name__)


class PaymentVerifier(Protocol):
    """Pass/fail check of a payment reference for a buyer and expected amount."""

    async def verify(self, payment_ref: str, buyer: str, expected_amount: float) -> bool: ...


class RejectingPaymentVerifier:
    """Default when no verifier is wired in: premium packs are unavailable."""

    async def verify(self, payment_ref: str, buyer: str, expected_amount: float) -> bool:
        log.warning("payment_verifier_not_configured", payment_ref=payment_ref, buyer=buyer)
        return False
