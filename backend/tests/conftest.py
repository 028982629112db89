import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from stocksync.models_sqlalchemy import Base, build_engine
from stocksync.models_sqlalchemy.models import (
    ExternalOrder,
    MerchantAccount,
    MovementType,
    Product,
    User,
)
from stocksync.services.inventory_ledger import record_movement


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def user(db):
    u = User(email="owner@example.com", name="Owner")
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def make_account(db, user):
    def _make(name="Main store", *, connected=True, expires_in=timedelta(hours=6), **overrides):
        account = MerchantAccount(user_id=overrides.pop("user_id", user.id), name=name, client_id="client-123")
        account.client_secret = "secret-456"
        if connected:
            account.access_token = overrides.pop("access_token", "access-1")
            account.refresh_token = overrides.pop("refresh_token", "refresh-1")
            account.token_expires_at = datetime.now(timezone.utc) + expires_in
            account.sync_status = "connected"
        for key, value in overrides.items():
            setattr(account, key, value)
        db.add(account)
        db.commit()
        return account

    return _make


@pytest.fixture
def account(make_account):
    return make_account()


@pytest.fixture
def make_product(db):
    def _make(sku, name, *, stock=0, ean=None, internal_code=None, is_active=True):
        product = Product(sku=sku, name=name, ean=ean, internal_code=internal_code, is_active=is_active)
        db.add(product)
        db.flush()
        if stock:
            record_movement(
                db,
                product_id=product.id,
                movement_type=MovementType.ENTRY,
                quantity=stock,
                reason="Initial stock",
            )
        db.commit()
        return product

    return _make


@pytest.fixture
def make_order(db, account, user):
    def _make(number, status, items, *, processed=False, external_id=None):
        order = ExternalOrder(
            external_order_id=external_id or f"ext-{number}",
            order_number=str(number),
            account_id=account.id,
            user_id=user.id,
            status=status,
            items=items,
            processed=processed,
        )
        db.add(order)
        db.commit()
        return order

    return _make
