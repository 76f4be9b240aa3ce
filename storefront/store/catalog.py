from typing import Dict, Iterable, Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from storefront.db.models import Product

def get_product(db: Session, product_id: int) -> Optional[Product]:
    return db.get(Product, product_id)

def get_products(db: Session, product_ids: Iterable[int]) -> Dict[int, Product]:
    ids = {int(pid) for pid in product_ids}
    if not ids:
        return {}
    rows = db.execute(select(Product).where(Product.id.in_(ids))).scalars().all()
    return {p.id: p for p in rows}

def is_available(product: Optional[Product]) -> bool:
    return product is not None and bool(product.is_active)
