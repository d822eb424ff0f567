"""Payment routes: links, provider webhooks, refunds, reminders and late-fee rules."""

import logging
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from api.base import success_response
from core.models import LateFeeRuleCreate, PaymentLinkParams, ReminderRuleCreate

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = {
    "stripe": "stripe-signature",
    "razorpay": "x-razorpay-signature",
}


class PaymentLinkRequest(PaymentLinkParams):
    gateway: str


class RefundRequest(BaseModel):
    gateway: str
    payment_id: str = Field(..., min_length=1)
    amount: Decimal | None = Field(None, gt=0, decimal_places=2)


def create_payments_router(services: dict) -> APIRouter:
    router = APIRouter()

    payment_svc = services["payment"]
    reminder_svc = services["reminder"]

    # -------------------------------------------------------------------------
    # Links & gateways
    # -------------------------------------------------------------------------

    @router.post("/payments/links", status_code=201)
    def create_link(body: PaymentLinkRequest):
        params = PaymentLinkParams(**body.model_dump(exclude={"gateway"}))
        link = payment_svc.create_payment_link(body.gateway, params)
        return success_response(link.model_dump(mode="json")).model_dump(mode="json")

    @router.get("/payments/gateways")
    def list_gateways():
        return success_response(
            [gateway.value for gateway in payment_svc.available_gateways()]
        ).model_dump(mode="json")

    @router.get("/payments/status/{gateway}/{payment_id}")
    def payment_status(gateway: str, payment_id: str):
        status = payment_svc.get_payment_status(gateway, payment_id)
        return success_response(status.model_dump(mode="json")).model_dump(mode="json")

    @router.post("/payments/refund")
    def refund(body: RefundRequest):
        result = payment_svc.refund_payment(body.gateway, body.payment_id, body.amount)
        return success_response(result.model_dump(mode="json")).model_dump(mode="json")

    @router.get("/payments/analytics")
    def analytics(
        gateway: str | None = Query(None),
        start: datetime | None = Query(None),
        end: datetime | None = Query(None),
    ):
        rows = payment_svc.get_payment_analytics(gateway, start, end)
        return success_response(
            [row.model_dump(mode="json") for row in rows]
        ).model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Webhooks
    #
    # Answered with a bare acknowledgement, not the envelope. Anything other
    # than 200 makes the provider retry.
    # -------------------------------------------------------------------------

    @router.post("/payments/webhooks/{gateway}")
    async def webhook(gateway: str, request: Request):
        payload = await request.body()
        header = SIGNATURE_HEADERS.get(gateway)
        signature = request.headers.get(header) if header else None

        await run_in_threadpool(payment_svc.process_webhook, gateway, payload, signature)
        return {"received": True}

    # -------------------------------------------------------------------------
    # Reminders & late fees
    # -------------------------------------------------------------------------

    @router.post("/payments/reminders", status_code=201)
    def create_reminder(body: ReminderRuleCreate):
        rule = reminder_svc.create_reminder_rule(body)
        return success_response(rule.model_dump(mode="json")).model_dump(mode="json")

    @router.post("/payments/late-fee-rules", status_code=201)
    def create_late_fee_rule(body: LateFeeRuleCreate):
        rule = reminder_svc.create_late_fee_rule(body)
        return success_response(rule.model_dump(mode="json")).model_dump(mode="json")

    @router.get("/payments/late-fee-rules")
    def list_late_fee_rules():
        rules = reminder_svc.list_late_fee_rules()
        return success_response(
            [rule.model_dump(mode="json") for rule in rules]
        ).model_dump(mode="json")

    @router.post("/payments/reminders/process")
    def process_reminders():
        summary = reminder_svc.process_reminders()
        return success_response(summary).model_dump(mode="json")

    @router.post("/payments/late-fees/process")
    def process_late_fees():
        summary = reminder_svc.process_late_fees()
        return success_response(
            {"applied": summary["applied"], "total": str(summary["total"])}
        ).model_dump(mode="json")

    return router
