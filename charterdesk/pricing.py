"""Option pricing, fees and default tax calculations."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from charterdesk.airports import Airport, is_international

FET_RATE_PERCENT = 7.5
SERVICE_TAX_RATE_PERCENT = 7.5


@dataclass(frozen=True)
class QuoteFee:
    id: str
    name: str
    calc_type: str  # "flat", "percent" or "per_pax_segment"
    value: float

    def apply(self, base_subtotal: float = 0.0, *, pax: int = 0, segments: int = 0) -> float:
        if self.calc_type == "flat":
            return self.value
        if self.calc_type == "percent":
            return base_subtotal * self.value / 100.0
        if self.calc_type == "per_pax_segment":
            return self.value * pax * segments
        raise ValueError(f"Unknown fee type: {self.calc_type}")


DEFAULT_FEES: Sequence[QuoteFee] = (
    QuoteFee(
        id="us_segment_fee",
        name="US Domestic Segment Fee",
        calc_type="per_pax_segment",
        value=4.30,
    ),
    QuoteFee(
        id="us_international_head_tax",
        name="US International Head Tax",
        calc_type="per_pax_segment",
        value=19.10,
    ),
    QuoteFee(
        id="fet",
        name="Federal Excise Tax (FET)",
        calc_type="percent",
        value=FET_RATE_PERCENT,
    ),
)


def _field(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        value = item.get(name, default)
    else:
        value = getattr(item, name, default)
    return default if value is None else value


def _as_number(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def fee_amounts(fees: Iterable[Any]) -> List[Dict[str, Any]]:
    """Normalise stored option fees to ``{"name", "amount"}`` dictionaries."""

    normalised: List[Dict[str, Any]] = []
    for fee in fees or ():
        name = str(_field(fee, "name", "") or _field(fee, "label", "Fee"))
        normalised.append({"name": name, "amount": _as_number(_field(fee, "amount"))})
    return normalised


def option_total(
    operator_cost: Optional[float],
    commission: Optional[float],
    fees: Iterable[Any] = (),
    fees_enabled: bool = False,
) -> float:
    base = _as_number(operator_cost) + _as_number(commission)
    if not fees_enabled:
        return base
    return base + sum(fee["amount"] for fee in fee_amounts(fees))


def compute_option_pricing(option: Any) -> Dict[str, float]:
    """Return base, fee total and total for a quote option record or input."""

    base = _as_number(_field(option, "cost_operator")) + _as_number(
        _field(option, "price_commission")
    )
    fees_enabled = bool(_field(option, "fees_enabled", False))
    fees_total = (
        sum(fee["amount"] for fee in fee_amounts(_field(option, "fees", ())))
        if fees_enabled
        else 0.0
    )
    return {"base": base, "fees_total": fees_total, "total": base + fees_total}


def services_subtotal(items: Iterable[Any]) -> float:
    return sum(
        _as_number(_field(item, "unit_price")) * _as_number(_field(item, "qty", 1), 1.0)
        for item in items
    )


def taxable_services_subtotal(items: Iterable[Any]) -> float:
    return services_subtotal(item for item in items if bool(_field(item, "taxable", True)))


def compute_default_taxes(
    aircraft_subtotal: float,
    items: Sequence[Any],
    legs: Sequence[Any],
    airports: Mapping[str, Airport],
) -> List[Dict[str, Any]]:
    """Build the standard US charter tax lines for an invoice.

    FET applies to the aircraft subtotal plus taxable services. The segment
    fee is charged per passenger on domestic legs and the head tax per
    passenger on international legs. Legs whose airports are unknown count as
    domestic. Zero amounts are left out.
    """

    segment_fee, head_tax, fet = DEFAULT_FEES
    domestic_pax_segments = 0
    international_pax_segments = 0
    for leg in legs:
        pax = max(int(_as_number(_field(leg, "pax_count", 1), 1.0)), 0)
        origin = airports.get(str(_field(leg, "origin_code", "")))
        destination = airports.get(str(_field(leg, "destination_code", "")))
        if is_international(origin, destination):
            international_pax_segments += pax
        else:
            domestic_pax_segments += pax

    taxable_base = _as_number(aircraft_subtotal) + taxable_services_subtotal(items)
    lines = [
        (fet, fet.apply(taxable_base)),
        (segment_fee, segment_fee.apply(pax=domestic_pax_segments, segments=1)),
        (head_tax, head_tax.apply(pax=international_pax_segments, segments=1)),
    ]
    return [
        {"id": fee.id, "name": fee.name, "amount": round(amount, 2)}
        for fee, amount in lines
        if round(amount, 2) > 0
    ]


def format_currency(amount: Optional[float], currency: str = "USD") -> str:
    value = _as_number(amount)
    if currency.upper() == "USD":
        return f"${value:,.2f}"
    return f"{value:,.2f} {currency.upper()}"


__all__ = [
    "DEFAULT_FEES",
    "FET_RATE_PERCENT",
    "QuoteFee",
    "SERVICE_TAX_RATE_PERCENT",
    "compute_default_taxes",
    "compute_option_pricing",
    "fee_amounts",
    "format_currency",
    "option_total",
    "services_subtotal",
    "taxable_services_subtotal",
]
