"""
Purchase-order matching for invoices without a PO number.

Scoring per candidate order of the same vendor:

    base            vendor_base_score                        (0.3)
    + date          date_weight * (1 - days / window)        (up to 0.2, within 30 days)
    + code overlap  code_overlap_weight * matched / max(|invoice codes|, |order codes|)
    + line bonus    line_match_bonus per line with equal code and quantity

The best score wins; the first order reaching it is kept on ties. The
final confidence is capped at 1.0.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from invoice_memory.config import POMatchingSettings, get_logger, get_settings
from invoice_memory.memory.confidence import normalize_vendor_key
from invoice_memory.utils.date_utils import days_between, parse_date


logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class POLineItem:
    """One ordered or invoiced line: item code and quantity."""

    sku: str | None
    qty: float
    unit_price: float | None = None

    @classmethod
    def from_value(cls, value: Any) -> POLineItem:
        """Build from a line item dictionary or return an existing instance."""
        if isinstance(value, POLineItem):
            return value
        unit_price = value.get("unit_price", value.get("unitPrice"))
        return cls(
            sku=value.get("sku"),
            qty=float(value.get("qty", value.get("quantity", 0)) or 0),
            unit_price=float(unit_price) if unit_price is not None else None,
        )


@dataclass(frozen=True, slots=True)
class PurchaseOrder:
    """An externally supplied purchase order."""

    po_number: str
    vendor: str
    order_date: date
    line_items: tuple[POLineItem, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PurchaseOrder:
        """Create from a dictionary payload."""
        raw_date = data.get("order_date", data.get("date"))
        order_date = raw_date if isinstance(raw_date, date) else parse_date(str(raw_date))
        if order_date is None:
            raise ValueError(f"Unparseable purchase order date: {raw_date!r}")
        return cls(
            po_number=str(data.get("po_number", data.get("poNumber"))),
            vendor=data["vendor"],
            order_date=order_date,
            line_items=tuple(
                POLineItem.from_value(item)
                for item in data.get("line_items", data.get("lineItems", []))
            ),
        )


@dataclass(slots=True)
class POMatchResult:
    """Best matching order, its confidence and the reasons that scored."""

    matched_po: PurchaseOrder | None = None
    confidence: float = 0.0
    match_reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "matched_po": self.matched_po.po_number if self.matched_po else None,
            "confidence": self.confidence,
            "match_reasons": self.match_reasons,
        }


class POMatchingService:
    """Matches invoices against a registry of purchase orders."""

    def __init__(self, config: POMatchingSettings | None = None) -> None:
        self._config = config or get_settings().po_matching
        self._orders: list[PurchaseOrder] = []

    def set_purchase_orders(self, orders: list[PurchaseOrder]) -> None:
        """Replace the known purchase orders."""
        self._orders = list(orders)
        logger.info("purchase_orders_registered", order_count=len(self._orders))

    @property
    def purchase_orders(self) -> list[PurchaseOrder]:
        return list(self._orders)

    def find_matching_po(
        self,
        vendor_key: str,
        invoice_date: date,
        line_items: list[Any] | None = None,
    ) -> POMatchResult:
        """
        Find the best purchase order for an invoice.

        Args:
            vendor_key: Invoice vendor (normalized before comparison).
            invoice_date: Invoice date.
            line_items: Invoice line items as POLineItem or dicts with sku/qty.

        Returns:
            POMatchResult; ``matched_po`` is None when no order of the vendor exists.
        """
        vendor = normalize_vendor_key(vendor_key)
        items = [POLineItem.from_value(item) for item in line_items or []]

        best: PurchaseOrder | None = None
        best_score = 0.0
        best_reasons: list[str] = []

        for order in self._orders:
            if normalize_vendor_key(order.vendor) != vendor:
                continue
            score, reasons = self._score(order, invoice_date, items)
            if score > best_score:
                best, best_score, best_reasons = order, score, reasons

        result = POMatchResult(
            matched_po=best,
            confidence=min(best_score, 1.0),
            match_reasons=best_reasons,
        )
        logger.debug(
            "po_match_evaluated",
            vendor_key=vendor,
            candidate_count=len(self._orders),
            matched_po=best.po_number if best else None,
            confidence=result.confidence,
        )
        return result

    def _score(
        self,
        order: PurchaseOrder,
        invoice_date: date,
        items: list[POLineItem],
    ) -> tuple[float, list[str]]:
        cfg = self._config
        score = cfg.vendor_base_score
        reasons = ["Vendor match"]

        days = days_between(invoice_date, order.order_date)
        if days <= cfg.date_window_days:
            score += cfg.date_weight * (1 - days / cfg.date_window_days)
            reasons.append(f"Date within {round(days)} days")

        if not items:
            return score, reasons

        invoice_codes = list(dict.fromkeys(item.sku for item in items if item.sku))
        order_codes = {item.sku for item in order.line_items}
        matched = [code for code in invoice_codes if code in order_codes]
        if matched:
            score += cfg.code_overlap_weight * len(matched) / max(
                len(invoice_codes), len(order_codes)
            )
            reasons.append(f"SKU: {', '.join(matched)}")

        for item in items:
            order_item = next((o for o in order.line_items if o.sku == item.sku), None)
            if order_item is not None and item.sku and order_item.qty == item.qty:
                score += cfg.line_match_bonus
                reasons.append(f"Qty match: {item.sku}")

        return score, reasons
