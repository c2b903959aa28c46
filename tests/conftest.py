from datetime import datetime, timedelta
from decimal import Decimal
import itertools

import pytest

from kudos_cafe import create_app
from kudos_cafe.config import Config
from kudos_cafe.extensions import db
from kudos_cafe.models import (
    MenuItem,
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    PaymentStatus,
    User,
    UserRole,
)

ADMIN_EMAIL = 'staff@kudos.test'
CUSTOMER_EMAIL = 'ana@kudos.test'
OTHER_EMAIL = 'ben@kudos.test'
PASSWORD = 'secret123'


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    LOW_STOCK_ALERTS_ENABLED = True


@pytest.fixture
def app(tmp_path):
    app = create_app(TestConfig)
    app.static_folder = str(tmp_path / 'static')
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def users(app):
    with app.app_context():
        created = {}
        for key, email, name, role in (
            ('admin', ADMIN_EMAIL, 'Kudos Staff', UserRole.ADMIN),
            ('customer', CUSTOMER_EMAIL, 'Ana Reyes', UserRole.CUSTOMER),
            ('other', OTHER_EMAIL, 'Ben Cruz', UserRole.CUSTOMER),
        ):
            user = User(email=email, full_name=name, role=role)
            user.set_password(PASSWORD)
            db.session.add(user)
            created[key] = user
        db.session.commit()
        return {key: user.id for key, user in created.items()}


def login(client, email, password=PASSWORD):
    resp = client.post(
        '/api/auth/login', json={'email': email, 'password': password})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def customer_client(app, users):
    return login(app.test_client(), CUSTOMER_EMAIL)


@pytest.fixture
def other_client(app, users):
    return login(app.test_client(), OTHER_EMAIL)


@pytest.fixture
def admin_client(app, users):
    return login(app.test_client(), ADMIN_EMAIL)


@pytest.fixture
def menu(app):
    with app.app_context():
        latte = MenuItem(
            name='Spanish Latte', category='Coffee',
            price=Decimal('150.00'), is_popular=True)
        pandesal = MenuItem(
            name='Ube Pandesal', category='Pastries',
            price=Decimal('50.00'), dietary_tags='vegetarian')
        hidden = MenuItem(
            name='Seasonal Tart', category='Desserts',
            price=Decimal('120.00'), is_available=False)
        db.session.add_all([latte, pandesal, hidden])
        db.session.commit()
        return {
            'latte': latte.id,
            'pandesal': pandesal.id,
            'hidden': hidden.id,
        }


_order_numbers = itertools.count(1)


def make_order(user_id, total='1000.00', status=OrderStatus.PENDING,
               created_at=None, deposit_paid=None,
               order_type=OrderType.PICKUP, items=()):
    """Insert an order directly; must run inside an app context."""
    order = Order(
        order_number=f"KC-19990101-{next(_order_numbers):04d}",
        user_id=user_id,
        customer_name='Ana Reyes',
        customer_email=CUSTOMER_EMAIL,
        total_amount=Decimal(total),
        deposit_paid=(
            Decimal(deposit_paid) if deposit_paid is not None else None
        ),
        order_type=order_type,
        status=status,
        payment_status=PaymentStatus.PAID,
        created_at=created_at or datetime.utcnow(),
    )
    db.session.add(order)
    db.session.flush()
    for name, price, quantity in items:
        db.session.add(OrderItem(
            order_id=order.id,
            name=name,
            unit_price=Decimal(price),
            quantity=quantity,
        ))
    db.session.commit()
    return order


@pytest.fixture
def create_order(app, users):
    def factory(user_key='customer', minutes_ago=10, **kwargs):
        with app.app_context():
            created_at = datetime.utcnow() - timedelta(minutes=minutes_ago)
            order = make_order(
                users[user_key], created_at=created_at, **kwargs)
            return order.id
    return factory
