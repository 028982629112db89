from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Boolean, Index, Numeric, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum
import uuid

from . import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionStatus(str, enum.Enum):
    disconnected = "disconnected"
    connected = "connected"


class MovementType(str, enum.Enum):
    ENTRY = "ENTRY"
    EXIT = "EXIT"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class MerchantAccount(Base):
    __tablename__ = "merchant_accounts"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    client_id = Column(Text, nullable=False, default="")
    # Physical columns hold encrypted blobs when written via the properties below.
    _client_secret = Column("client_secret", Text, nullable=True)
    _access_token = Column("access_token", Text, nullable=True)
    _refresh_token = Column("refresh_token", Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    refresh_error = Column(Text, nullable=True)
    sync_status = Column(String(20), nullable=False, default=ConnectionStatus.disconnected.value)
    last_sync = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    orders = relationship("ExternalOrder", back_populates="account")

    __table_args__ = (
        Index("idx_merchant_accounts_user_id", "user_id"),
        Index("idx_merchant_accounts_is_active", "is_active"),
    )

    # ------------------------------------------------------------------
    # Encrypted credential accessors
    # ------------------------------------------------------------------
    @property
    def client_secret(self) -> str | None:
        from stocksync.utils import crypto

        return crypto.decrypt(self._client_secret)

    @client_secret.setter
    def client_secret(self, value: str | None) -> None:
        from stocksync.utils import crypto

        self._client_secret = crypto.encrypt(value) if value else None

    @property
    def access_token(self) -> str | None:
        from stocksync.utils import crypto

        return crypto.decrypt(self._access_token)

    @access_token.setter
    def access_token(self, value: str | None) -> None:
        from stocksync.utils import crypto

        self._access_token = crypto.encrypt(value) if value else None

    @property
    def refresh_token(self) -> str | None:
        from stocksync.utils import crypto

        return crypto.decrypt(self._refresh_token)

    @refresh_token.setter
    def refresh_token(self, value: str | None) -> None:
        from stocksync.utils import crypto

        self._refresh_token = crypto.encrypt(value) if value else None


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=_uuid)
    sku = Column(String(120), unique=True, nullable=False)
    internal_code = Column(String(120), nullable=True)
    ean = Column(String(32), nullable=True)
    name = Column(Text, nullable=False)
    sale_price = Column(Numeric(14, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    movements = relationship("InventoryMovement", back_populates="product")

    __table_args__ = (
        Index("idx_products_ean", "ean"),
        Index("idx_products_internal_code", "internal_code"),
    )


class InventoryMovement(Base):
    """Append-only stock ledger row. Current stock is derived from these."""

    __tablename__ = "inventory_movements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(10), nullable=False)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    sync_status = Column(String(20), nullable=False, default="pending")
    external_order_id = Column(String(36), ForeignKey("external_orders.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    product = relationship("Product", back_populates="movements")

    __table_args__ = (
        Index("idx_inventory_movements_product_created", "product_id", "created_at"),
        Index("idx_inventory_movements_order", "external_order_id"),
    )


class ExternalOrder(Base):
    """Local mirror of one sales order pulled from the external platform."""

    __tablename__ = "external_orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    external_order_id = Column(String(64), nullable=False)
    order_number = Column(String(64), nullable=False)
    account_id = Column(String(36), ForeignKey("merchant_accounts.id"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    status = Column(Text, nullable=False)
    customer_name = Column(Text, nullable=True)
    total_amount = Column(Numeric(14, 2), nullable=False, default=0)
    items = Column(JSON, nullable=False, default=list)
    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    platform_created_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    account = relationship("MerchantAccount", back_populates="orders")

    __table_args__ = (
        UniqueConstraint("external_order_id", "account_id", name="uq_external_orders_order_account"),
        Index("idx_external_orders_account_created", "account_id", "created_at"),
        Index("idx_external_orders_status", "status"),
    )


class ProductMapping(Base):
    __tablename__ = "product_mappings"

    id = Column(String(36), primary_key=True, default=_uuid)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False)
    account_id = Column(String(36), ForeignKey("merchant_accounts.id"), nullable=False)
    external_product_id = Column(String(64), nullable=False)
    external_sku = Column(String(120), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("account_id", "external_product_id", name="uq_product_mappings_account_product"),
    )
