"""Invoice routes: create, edit and drive the lifecycle."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel, Field

from api.base import success_response
from core.models import InvoiceCreate, InvoiceUpdate


class PaymentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    payment_date: date | None = None
    payment_method: str | None = Field(None, max_length=50)


class LateFeeRequest(BaseModel):
    rate: Decimal | None = Field(None, gt=0, le=100, description="Percentage of balance due")
    max_amount: Decimal | None = Field(None, gt=0)


class InvoicePaymentLinkRequest(BaseModel):
    gateway: str
    expires_at: datetime | None = None
    allow_partial_payments: bool = False


def create_invoices_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]
    payment_svc = services["payment"]
    reminder_svc = services["reminder"]

    @router.post("/invoices", status_code=201)
    def create_invoice(body: InvoiceCreate):
        invoice = invoice_svc.create(body)
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.get("/invoices/{invoice_id}")
    def get_invoice(invoice_id: UUID):
        invoice = invoice_svc.get_by_id(invoice_id)
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.patch("/invoices/{invoice_id}")
    def update_invoice(invoice_id: UUID, body: InvoiceUpdate):
        invoice = invoice_svc.update(invoice_id, body)
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/send")
    def send_invoice(invoice_id: UUID):
        invoice = invoice_svc.send(invoice_id)
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/cancel")
    def cancel_invoice(invoice_id: UUID):
        invoice = invoice_svc.cancel(invoice_id)
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/payment")
    def record_payment(invoice_id: UUID, body: PaymentRequest):
        invoice = invoice_svc.record_payment(
            invoice_id, body.amount, body.payment_date, body.payment_method
        )
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/late-fee")
    def apply_late_fee(invoice_id: UUID, body: LateFeeRequest | None = None):
        body = body or LateFeeRequest()
        invoice, fee = invoice_svc.apply_late_fee(invoice_id, body.rate, body.max_amount)
        return success_response({
            "invoice": invoice.model_dump(mode="json"),
            "late_fee": str(fee),
        }).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/payment-link", status_code=201)
    def create_payment_link(invoice_id: UUID, body: InvoicePaymentLinkRequest):
        link = payment_svc.create_invoice_payment_link(
            invoice_id, body.gateway, body.expires_at, body.allow_partial_payments
        )
        return success_response(link.model_dump(mode="json")).model_dump(mode="json")

    @router.get("/invoices/{invoice_id}/reminders")
    def list_reminders(invoice_id: UUID):
        invoice_svc.get_by_id(invoice_id)
        rules = reminder_svc.list_reminders(invoice_id)
        return success_response(
            [rule.model_dump(mode="json") for rule in rules]
        ).model_dump(mode="json")

    @router.get("/invoices/{invoice_id}/history")
    def invoice_history(invoice_id: UUID):
        entries = invoice_svc.get_history(invoice_id)
        return success_response(entries).model_dump(mode="json")

    return router
