"""Local CRM entities written by the WooCommerce sync engine.

Each entity carries a nullable, unique remote id. The remote id is the
link-back that turns later outbound pushes from create into update.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base, PrimaryKey


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (Index("ix_products_updated_at", "updated_at"),)

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    woo_product_id: Mapped[int | None] = mapped_column(Integer, unique=True)
    sku: Mapped[str | None] = mapped_column(String(120), index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(32), default="simple")
    status: Mapped[str] = mapped_column(String(32), default="publish")
    description: Mapped[str | None] = mapped_column(Text)
    short_description: Mapped[str | None] = mapped_column(Text)
    price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    regular_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    sale_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    manage_stock: Mapped[bool] = mapped_column(Boolean, default=False)
    stock_quantity: Mapped[int | None] = mapped_column(Integer)
    stock_status: Mapped[str | None] = mapped_column(String(32))
    categories: Mapped[list | None] = mapped_column(JSON)
    images: Mapped[list | None] = mapped_column(JSON)
    attributes: Mapped[list | None] = mapped_column(JSON)
    woo_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    woo_variation_id: Mapped[int | None] = mapped_column(Integer, unique=True)
    sku: Mapped[str | None] = mapped_column(String(120), index=True)
    status: Mapped[str] = mapped_column(String(32), default="publish")
    price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    regular_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    sale_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    manage_stock: Mapped[bool] = mapped_column(Boolean, default=False)
    stock_quantity: Mapped[int | None] = mapped_column(Integer)
    stock_status: Mapped[str | None] = mapped_column(String(32))
    attributes: Mapped[list | None] = mapped_column(JSON)
    image: Mapped[dict | None] = mapped_column(JSON)
    woo_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (Index("ix_customers_updated_at", "updated_at"),)

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    woo_customer_id: Mapped[int | None] = mapped_column(Integer, unique=True)
    email: Mapped[str | None] = mapped_column(String(255), index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(64))
    billing: Mapped[dict | None] = mapped_column(JSON)
    shipping: Mapped[dict | None] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(String(32), default="active")
    woo_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class Sale(Base):
    """A WooCommerce order mirrored locally."""

    __tablename__ = "sales"
    __table_args__ = (Index("ix_sales_updated_at", "updated_at"),)

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    woo_order_id: Mapped[int | None] = mapped_column(Integer, unique=True)
    customer_id: Mapped[int | None] = mapped_column(Integer, index=True)
    woo_customer_id: Mapped[int | None] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(32), default="pending")
    currency: Mapped[str] = mapped_column(String(8), default="IRR")
    total: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    line_items: Mapped[list | None] = mapped_column(JSON)
    billing: Mapped[dict | None] = mapped_column(JSON)
    shipping: Mapped[dict | None] = mapped_column(JSON)
    payment_method: Mapped[str | None] = mapped_column(String(80))
    date_created_remote: Mapped[str | None] = mapped_column(String(40))
    woo_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
