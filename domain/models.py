# boutique/domain/models.py

import datetime
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

ZERO = Decimal("0")

DEFAULT_TAX_RATE = Decimal("12")
TAX_RATE_CHOICES = (Decimal("5"), Decimal("12"))
QUICK_DISCOUNT_CHOICES = (0, 5, 10, 15, 20)
LOYALTY_TIERS = ("bronze", "silver", "gold", "platinum")

# discount kinds as stored in the `discounts.type` column
FLAT = "flat"
PERCENTAGE = "percentage"
BUY_X_GET_Y = "buy_x_get_y"
FIXED_PRICE = "fixed_price"
CONDITIONAL = "conditional"
DISCOUNT_KINDS = (FLAT, PERCENTAGE, BUY_X_GET_Y, FIXED_PRICE, CONDITIONAL)


class BillStatus(str, Enum):
    DRAFT = "draft"
    FINALIZED = "finalized"


@dataclass
class LineItem:
    """
    One product line on a draft bill.
    """
    quantity: int = 1
    unit_price: Decimal = ZERO  # catalog mrp
    discount_percent: Decimal = ZERO
    stitching_charge: Decimal = ZERO
    alteration_charge: Decimal = ZERO
    tax_rate: Decimal = DEFAULT_TAX_RATE  # GST %
    category: Optional[str] = None

    source: str = "manual"  # "inventory" or "manual"
    product_id: Optional[int] = None
    variant_id: Optional[int] = None
    product_name: Optional[str] = None
    product_code: Optional[str] = None

    @property
    def surcharge(self) -> Decimal:
        return self.stitching_charge + self.alteration_charge


@dataclass(frozen=True)
class ItemPriceResult:
    base: Decimal
    item_discount: Decimal
    after_discount: Decimal
    charges_added: Decimal
    tax_amount: Decimal
    subtotal: Decimal  # post-discount, with charges, pre-tax
    total: Decimal


@dataclass
class DiscountDefinition:
    """
    A discount code as configured in the `discounts` table.

    `rules` holds the kind specific parameters, e.g.
      buy_x_get_y: {"buy_qty": 2, "get_qty": 1, "category": "Kurti"}
      fixed_price: {"fixed_total": 1000, "category": "Kurti"}
      conditional: {"min_total": 3500, "value": 100}
    """
    code: str
    kind: str
    value: Decimal = ZERO
    max_discount: Optional[Decimal] = None
    rules: Dict[str, Any] = field(default_factory=dict)
    exclusive: bool = False
    auto_apply: bool = False
    active: bool = True
    min_total: Optional[Decimal] = None
    once_per_customer: bool = False
    start_date: Optional[datetime.date] = None
    end_date: Optional[datetime.date] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class BillTotals:
    items_subtotal: Decimal
    item_level_discount_total: Decimal
    pre_overall_taxable: Decimal
    overall_discount_amount: Decimal
    taxable_total: Decimal
    tax_total: Decimal
    grand_total: Decimal

    @classmethod
    def zero(cls) -> "BillTotals":
        return cls(ZERO, ZERO, ZERO, ZERO, ZERO, ZERO, ZERO)


@dataclass
class Bill:
    bill_id: Optional[int] = None
    customer_id: Optional[int] = None
    notes: str = ""
    items: List[LineItem] = field(default_factory=list)
    selected_codes: List[str] = field(default_factory=list)
    status: BillStatus = BillStatus.DRAFT
    totals: Optional[BillTotals] = None

    @property
    def is_finalized(self) -> bool:
        return self.status == BillStatus.FINALIZED


@dataclass
class Customer:
    customer_id: Optional[int]
    first_name: str
    last_name: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None
    customer_ulid: Optional[str] = None  # 26 characters
    address: Optional[str] = None
    loyalty_tier: str = "bronze"
    customer_notes: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class CatalogProduct:
    product_id: int
    description: str
    category: Optional[str]
    code: Optional[str]
    mrp: Decimal


@dataclass
class ProductVariant:
    variant_id: int
    color: Optional[str]
    size: Optional[str]
    quantity: int
