from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Product(db.Model):
    """Catalog product. Managed elsewhere; read-only to the order core."""
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    brand = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class ProductVariant(db.Model):
    """
    A purchasable SKU of a product; the unit that carries price and stock.

    INVARIANT: stock_qnt >= 0. Only the stock ledger
    (services/stock_service.py) writes stock_qnt, and only through a
    conditional UPDATE, backed by a CHECK constraint.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("stock_qnt >= 0", name="ck_product_variants_stock_nonneg"),
        db.CheckConstraint("price_cents >= 0", name="ck_product_variants_price_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    variant_name = db.Column(db.String(255), nullable=True)
    price_cents = db.Column(db.Integer, nullable=False)
    stock_qnt = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "variant_name": self.variant_name,
            "price_cents": self.price_cents,
            "stock_qnt": self.stock_qnt,
            "updated_at": to_utc_z(self.updated_at),
        }


class City(db.Model):
    """Delivery destination city; main cities get cheaper, faster delivery."""
    __tablename__ = "cities"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    is_main_city = db.Column(db.Boolean, nullable=False, default=False)


class Address(db.Model):
    __tablename__ = "addresses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    line1 = db.Column(db.String(255), nullable=False)
    line2 = db.Column(db.String(255), nullable=True)
    city_id = db.Column(db.Integer, db.ForeignKey("cities.id"), nullable=False)
    postal_code = db.Column(db.String(16), nullable=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    city = db.relationship("City")

    def formatted(self) -> str:
        parts = [self.line1, self.line2, self.city.name if self.city else None, self.postal_code]
        return ", ".join(p.strip() for p in parts if p and p.strip())
