"""
Normalization of raw ShipmentEventList records into ShipmentFinancialEvents.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

from shared.schemas.dto import ShipmentFinancialEvent
from shared.utils.helpers import parse_timestamp
from shared.utils.logger import logger

SHIPMENT_EVENT_TYPE = "ShipmentEvent"

ZERO = Decimal("0")


class MalformedRecordError(ValueError):
    """A raw upstream record cannot be turned into a ShipmentFinancialEvent."""


def _amount(money: Optional[Dict[str, Any]]) -> Tuple[Decimal, Optional[str]]:
    if not money:
        return ZERO, None
    try:
        value = Decimal(str(money.get("CurrencyAmount", 0)))
    except (InvalidOperation, TypeError):
        raise MalformedRecordError(f"Invalid amount: {money!r}")
    return value, money.get("CurrencyCode")


def _sum(
    components: Optional[Iterable[Dict[str, Any]]], amount_key: str, currencies: set
) -> Decimal:
    total = ZERO
    for component in components or []:
        value, currency = _amount(component.get(amount_key))
        if currency:
            currencies.add(currency)
        total += value
    return total


def _tax_withheld(items: List[Dict[str, Any]], currencies: set) -> Decimal:
    total = ZERO
    for item in items:
        for withheld in item.get("ItemTaxWithheldList") or []:
            total += _sum(withheld.get("TaxesWithheld"), "ChargeAmount", currencies)
    return total


def normalize_shipment_event(
    record: Dict[str, Any],
    seller_id: str,
    event_type: str = SHIPMENT_EVENT_TYPE,
) -> ShipmentFinancialEvent:
    """
    Normalize one raw shipment event.

    Charges, fees, promotions and withheld taxes are summed across the
    order-level and item-level lists; net_amount is their sum (fees,
    promotions and withheld taxes are negative upstream).

    Args:
        record: Raw ShipmentEventList entry
        seller_id: Seller the record was fetched for
        event_type: Upstream event list the record came from

    Returns:
        The normalized event

    Raises:
        MalformedRecordError: If the record has no AmazonOrderId, an
            unparseable PostedDate, an invalid amount or mixed currencies
    """
    amazon_order_id = record.get("AmazonOrderId")
    if not amazon_order_id:
        raise MalformedRecordError("Record has no AmazonOrderId")

    try:
        posted_date = parse_timestamp(record.get("PostedDate"))
    except ValueError:
        raise MalformedRecordError(
            f"Record {amazon_order_id} has invalid PostedDate {record.get('PostedDate')!r}"
        )

    items = record.get("ShipmentItemList") or []
    currencies: set = set()

    charge_total = _sum(record.get("OrderChargeList"), "ChargeAmount", currencies)
    charge_total += _sum(
        record.get("OrderChargeAdjustmentList"), "ChargeAmount", currencies
    )
    fee_total = _sum(record.get("OrderFeeList"), "FeeAmount", currencies)
    fee_total += _sum(record.get("ShipmentFeeList"), "FeeAmount", currencies)
    fee_total += _sum(record.get("ShipmentFeeAdjustmentList"), "FeeAmount", currencies)
    promotion_total = ZERO

    for item in items:
        charge_total += _sum(item.get("ItemChargeList"), "ChargeAmount", currencies)
        charge_total += _sum(
            item.get("ItemChargeAdjustmentList"), "ChargeAmount", currencies
        )
        fee_total += _sum(item.get("ItemFeeList"), "FeeAmount", currencies)
        fee_total += _sum(item.get("ItemFeeAdjustmentList"), "FeeAmount", currencies)
        promotion_total += _sum(item.get("PromotionList"), "PromotionAmount", currencies)
        promotion_total += _sum(
            item.get("PromotionAdjustmentList"), "PromotionAmount", currencies
        )

    tax_withheld_total = _tax_withheld(items, currencies)

    if len(currencies) > 1:
        raise MalformedRecordError(
            f"Record {amazon_order_id} mixes currencies {sorted(currencies)}"
        )

    return ShipmentFinancialEvent(
        amazon_order_id=str(amazon_order_id),
        seller_id=seller_id,
        event_type=event_type,
        posted_date=posted_date,
        currency_code=currencies.pop() if currencies else None,
        seller_order_id=record.get("SellerOrderId"),
        marketplace_name=record.get("MarketplaceName"),
        charge_total=charge_total,
        fee_total=fee_total,
        promotion_total=promotion_total,
        tax_withheld_total=tax_withheld_total,
        net_amount=charge_total + fee_total + promotion_total + tax_withheld_total,
        payload=record,
    )


def normalize_page(
    records: Iterable[Dict[str, Any]], seller_id: str
) -> List[ShipmentFinancialEvent]:
    """Normalize a page of records, logging and skipping malformed ones."""
    events = []
    for record in records:
        try:
            events.append(normalize_shipment_event(record, seller_id))
        except MalformedRecordError as e:
            logger.warning(f"Skipping malformed record for seller {seller_id}: {e}")
    return events
