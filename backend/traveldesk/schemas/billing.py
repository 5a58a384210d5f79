import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

Category = Literal["package", "accommodation", "transportation", "food", "activity", "other"]
Mode = Literal["summary", "detailed"]
DiscountType = Literal["none", "percentage", "fixed"]
PaymentMethod = Literal["cash", "card", "bank-transfer", "online", "cheque", "upi", "wallet", "other"]
PaymentType = Literal["advance", "installment", "full-payment", "final-payment"]
InvoiceType = Literal["invoice", "proforma", "tax-invoice", "commercial-invoice"]


class LineItemIn(BaseModel):
    description: str
    category: Category = "other"
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    total_price: Decimal | None = Field(default=None, ge=0)
    notes: str = ""
    origin: Literal["extracted", "manual"] = "manual"


class LineItemResponse(BaseModel):
    description: str
    category: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal | None
    notes: str
    origin: str


class DiscountIn(BaseModel):
    type: DiscountType = "none"
    value: Decimal = Field(default=Decimal("0"), ge=0)


class PricingIn(BaseModel):
    discount: DiscountIn = DiscountIn()
    service_charge_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)


class TotalsResponse(BaseModel):
    subtotal: Decimal
    discount_amount: Decimal
    service_charge_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    warnings: list[str] = []


class TotalsPreviewRequest(PricingIn):
    items: list[LineItemIn]
    mode: Mode = "summary"


# ── Drafts ─────────────────────────────────────────────────────────────────


class ModeRequest(BaseModel):
    mode: Mode


class AddItemRequest(BaseModel):
    description: str = ""
    category: Category = "other"
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    notes: str = ""


class EditItemRequest(BaseModel):
    field: Literal["description", "category", "quantity", "unit_price", "total_price", "notes"]
    value: str | Decimal | None = None


class PackagePriceRequest(BaseModel):
    amount: Decimal = Field(ge=0)


class SaveDraftRequest(BaseModel):
    status: Literal["draft", "sent"] = "draft"
    valid_until: date | None = None
    notes: str | None = None
    terms: str | None = None
    payment_terms: str | None = None


class DraftResponse(BaseModel):
    lead_id: uuid.UUID
    mode: str
    source_type: str
    detailed_enabled: bool
    items: list[LineItemResponse]
    editable: list[bool]
    discount: DiscountIn
    service_charge_rate: Decimal
    tax_rate: Decimal
    totals: TotalsResponse


# ── Quotations ─────────────────────────────────────────────────────────────


class QuotationCreate(PricingIn):
    lead_id: uuid.UUID
    package_id: uuid.UUID | None = None
    mode: Mode = "summary"
    items: list[LineItemIn]
    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None
    status: Literal["draft", "sent"] = "draft"
    issue_date: date | None = None
    valid_until: date | None = None
    notes: str | None = None
    terms: str | None = None
    payment_terms: str | None = None


class QuotationUpdate(BaseModel):
    mode: Mode | None = None
    items: list[LineItemIn] | None = None
    discount: DiscountIn | None = None
    service_charge_rate: Decimal | None = Field(default=None, ge=0, le=100)
    tax_rate: Decimal | None = Field(default=None, ge=0, le=100)
    valid_until: date | None = None
    notes: str | None = None
    terms: str | None = None
    payment_terms: str | None = None
    changes: str | None = None


class RejectRequest(BaseModel):
    reason: str | None = None


class ConvertRequest(BaseModel):
    type: InvoiceType = "invoice"
    issue_date: date | None = None
    due_date: date | None = None


class QuotationResponse(BaseModel):
    id: uuid.UUID
    quotation_number: str
    lead_id: uuid.UUID
    package_id: uuid.UUID | None
    customer_name: str
    customer_email: str
    customer_phone: str
    mode: str
    items: list[LineItemResponse]
    tax_rate: Decimal
    discount_type: str
    discount_value: Decimal
    service_charge_rate: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    service_charge_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    status: str
    issue_date: date
    valid_until: date
    notes: str | None
    terms: str | None
    payment_terms: str | None
    converted_invoice_id: uuid.UUID | None
    sent_at: datetime | None
    accepted_at: datetime | None
    rejected_at: datetime | None
    rejection_reason: str | None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ── Invoices ───────────────────────────────────────────────────────────────


class InvoiceUpdate(BaseModel):
    items: list[LineItemIn] | None = None
    discount: DiscountIn | None = None
    service_charge_rate: Decimal | None = Field(default=None, ge=0, le=100)
    tax_rate: Decimal | None = Field(default=None, ge=0, le=100)
    due_date: date | None = None
    notes: str | None = None
    terms: str | None = None
    payment_terms: str | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


class InvoiceResponse(BaseModel):
    id: uuid.UUID
    invoice_number: str
    lead_id: uuid.UUID
    quotation_id: uuid.UUID | None
    package_id: uuid.UUID | None
    customer_name: str
    customer_email: str
    customer_phone: str
    type: str
    mode: str
    items: list[LineItemResponse]
    tax_rate: Decimal
    discount_type: str
    discount_value: Decimal
    service_charge_rate: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    service_charge_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    outstanding_amount: Decimal
    status: str
    payment_status: str
    issue_date: date
    due_date: date
    paid_date: date | None
    sent_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ── Receipts ───────────────────────────────────────────────────────────────


class ReceiptCreate(BaseModel):
    invoice_id: uuid.UUID
    amount: Decimal
    payment_method: PaymentMethod
    payment_details: dict = {}
    transaction_id: str | None = None
    payment_date: date | None = None
    payment_type: PaymentType = "installment"
    notes: str | None = None
    internal_notes: str | None = None


class ReceiptUpdate(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0)
    notes: str | None = None
    internal_notes: str | None = None
    payment_details: dict | None = None


class ReceiptResponse(BaseModel):
    id: uuid.UUID
    receipt_number: str
    invoice_id: uuid.UUID
    lead_id: uuid.UUID
    amount: Decimal
    payment_method: str
    payment_details: dict
    transaction_id: str | None
    payment_date: date
    payment_type: str
    receipt_status: str
    previous_balance: Decimal
    outstanding_balance: Decimal
    notes: str | None
    verified: bool
    verified_at: datetime | None
    reconciled: bool
    reconciled_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    created_at: datetime

    model_config = {"from_attributes": True}
