from traveldesk.models.lead import CustomizedPackage, Lead, ManualItinerary, Package
from traveldesk.models.billing import Invoice, PaymentReceipt, Quotation, QuotationDraft

__all__ = [
    "CustomizedPackage",
    "Invoice",
    "Lead",
    "ManualItinerary",
    "Package",
    "PaymentReceipt",
    "Quotation",
    "QuotationDraft",
]
