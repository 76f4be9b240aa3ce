"""Re-check cart lines against live product data.

Validation never mutates the cart. It reports at most one issue per line, in
priority order: unavailable product, then insufficient stock, then a changed
price. Callers decide how to remediate.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, Optional

from sqlalchemy.orm import Session

from storefront.store import catalog


class IssueType(str, Enum):
    PRODUCT_UNAVAILABLE = "PRODUCT_UNAVAILABLE"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    PRICE_CHANGED = "PRICE_CHANGED"


class SuggestedAction(str, Enum):
    REMOVE = "REMOVE"
    UPDATE_QUANTITY = "UPDATE_QUANTITY"
    UPDATE_PRICE = "UPDATE_PRICE"


@dataclass(frozen=True)
class ValidationIssue:
    item_id: Any
    type: IssueType
    message: str
    suggested_action: SuggestedAction
    current_stock: Optional[int] = None
    current_price: Optional[int] = None

    def to_dict(self) -> dict:
        out = {
            "itemId": self.item_id,
            "valid": False,
            "type": self.type.value,
            "message": self.message,
            "suggestedAction": self.suggested_action.value,
        }
        if self.current_stock is not None:
            out["currentStock"] = self.current_stock
        if self.current_price is not None:
            out["currentPrice"] = self.current_price
        return out


@dataclass(frozen=True)
class ValidationReport:
    errors: List[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {"valid": self.valid, "errors": [e.to_dict() for e in self.errors]}


def check_item(item: Any, product: Any) -> Optional[ValidationIssue]:
    name = getattr(item, "name", None) or f"Product {item.product_id}"
    if not catalog.is_available(product):
        return ValidationIssue(
            item_id=item.id,
            type=IssueType.PRODUCT_UNAVAILABLE,
            message=f"{name} is no longer available",
            suggested_action=SuggestedAction.REMOVE,
        )
    if item.quantity > product.stock:
        return ValidationIssue(
            item_id=item.id,
            type=IssueType.OUT_OF_STOCK,
            message=f"{name} only has {product.stock} items left",
            suggested_action=SuggestedAction.UPDATE_QUANTITY,
            current_stock=product.stock,
        )
    if item.unit_price != product.price:
        return ValidationIssue(
            item_id=item.id,
            type=IssueType.PRICE_CHANGED,
            message=f"Price for {name} has changed",
            suggested_action=SuggestedAction.UPDATE_PRICE,
            current_price=product.price,
        )
    return None


def validate(db: Session, items: Iterable[Any]) -> ValidationReport:
    items = list(items)
    products = catalog.get_products(db, (i.product_id for i in items))
    issues = []
    for item in items:
        issue = check_item(item, products.get(int(item.product_id)))
        if issue is not None:
            issues.append(issue)
    return ValidationReport(errors=issues)
