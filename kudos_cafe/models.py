from kudos_cafe.extensions import db
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime
from sqlalchemy import CheckConstraint
import enum
import json


class UserRole(enum.Enum):
    CUSTOMER = 'CUSTOMER'
    ADMIN = 'ADMIN'


class OrderStatus(enum.Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    PREPARING = 'preparing'
    READY = 'ready'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'


class OrderType(enum.Enum):
    DINE_IN = 'dine_in'
    PICKUP = 'pickup'
    DELIVERY = 'delivery'


class PaymentStatus(enum.Enum):
    PENDING = 'pending'
    PARTIAL = 'partial'
    PAID = 'paid'
    REFUNDED = 'refunded'


class MessageType(enum.Enum):
    CANCELLATION_REQUEST = 'cancellation_request'
    ADMIN_RESPONSE = 'admin_response'
    GENERAL = 'general'
    REORDER_REQUEST = 'reorder_request'
    CUSTOMER_RESPONSE = 'customer_response'
    CONTACT_INQUIRY = 'contact_inquiry'


class ReservationStatus(enum.Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class StockMovementType(enum.Enum):
    IN = 'IN'
    OUT = 'OUT'


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(120), nullable=False, default='')
    phone = db.Column(db.String(30), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(
        db.Enum(UserRole),
        nullable=False,
        default=UserRole.CUSTOMER)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    last_login_at = db.Column(db.DateTime, nullable=True)

    orders = db.relationship(
        'Order',
        foreign_keys='Order.user_id',
        backref='user',
        lazy='dynamic')
    reviews = db.relationship(
        'Review',
        backref='user',
        lazy='dynamic',
        cascade='all, delete-orphan')

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN

    @property
    def display_name(self):
        return self.full_name or self.email

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def __repr__(self):
        return f'<User {self.email}>'


class MenuItem(db.Model):
    __tablename__ = 'menu_items'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(80), nullable=False, index=True)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    # Relative path under /static/, e.g. "uploads/menu/abcdef.jpg"
    image_path = db.Column(db.String(255), nullable=True)
    # Comma separated, e.g. "vegan,gluten-free"
    dietary_tags = db.Column(db.String(255), nullable=True)
    is_available = db.Column(db.Boolean, default=True, nullable=False)
    is_popular = db.Column(db.Boolean, default=False, nullable=False)
    is_new = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    reviews = db.relationship('Review', backref='menu_item', lazy='dynamic')

    @property
    def tags(self):
        return [t.strip() for t in (self.dietary_tags or '').split(',')
                if t.strip()]

    def __repr__(self):
        return f'<MenuItem {self.name}>'


class Order(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    # Display number shown to customers and staff, e.g. KC-20261019-0007
    order_number = db.Column(db.String(32), unique=True, nullable=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True,
        index=True)
    customer_name = db.Column(db.String(120), nullable=True)
    customer_email = db.Column(db.String(120), nullable=True)
    customer_phone = db.Column(db.String(30), nullable=True)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)
    # Refund base falls back to total_amount when no deposit was taken.
    deposit_paid = db.Column(db.Numeric(10, 2), nullable=True)
    order_type = db.Column(
        db.Enum(OrderType),
        default=OrderType.PICKUP,
        nullable=False)
    delivery_address = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True)
    payment_status = db.Column(
        db.Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False)
    refund_amount = db.Column(db.Numeric(10, 2), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=True)
    archived = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    items = db.relationship(
        'OrderItem',
        backref='order',
        lazy='dynamic',
        cascade='all, delete-orphan')
    messages = db.relationship(
        'OrderMessage',
        backref='order',
        lazy='dynamic',
        cascade='all, delete-orphan')

    __table_args__ = (
        CheckConstraint('total_amount >= 0', name='check_total_non_negative'),
    )

    def __repr__(self):
        return f'<Order {self.order_number or self.id} status={self.status}>'


class OrderItem(db.Model):
    __tablename__ = 'order_items'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'orders.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    menu_item_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'menu_items.id',
            ondelete='SET NULL'),
        nullable=True)
    # Snapshot at order time.
    name = db.Column(db.String(150), nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    __table_args__ = (
        CheckConstraint('quantity > 0', name='check_order_quantity_positive'),
    )

    def __repr__(self):
        return f'<OrderItem {self.id} order={self.order_id} {self.name}>'


class OrderMessage(db.Model):
    __tablename__ = 'order_messages'

    id = db.Column(db.Integer, primary_key=True)
    # Only contact inquiries come without an order.
    order_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'orders.id',
            ondelete='CASCADE'),
        nullable=True,
        index=True)
    sender_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True,
        index=True)
    recipient_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True,
        index=True)
    parent_message_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'order_messages.id',
            ondelete='SET NULL'),
        nullable=True)
    message_type = db.Column(
        db.Enum(MessageType),
        nullable=False,
        default=MessageType.GENERAL)
    subject = db.Column(db.String(200), nullable=True)
    body = db.Column(db.Text, nullable=False)
    cancellation_reason = db.Column(db.Text, nullable=True)
    refund_amount = db.Column(db.Numeric(10, 2), nullable=True)
    refund_details = db.Column(db.Text, nullable=True)
    # Contact form sender, when there is no account behind the inquiry.
    contact_name = db.Column(db.String(120), nullable=True)
    contact_email = db.Column(db.String(120), nullable=True)
    is_urgent = db.Column(db.Boolean, default=False, nullable=False)
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    archived = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True)

    sender = db.relationship('User', foreign_keys=[sender_id])
    recipient = db.relationship('User', foreign_keys=[recipient_id])
    parent = db.relationship('OrderMessage', remote_side=[id])

    def __repr__(self):
        return f'<OrderMessage {self.id} type={self.message_type}>'


class Review(db.Model):
    __tablename__ = 'reviews'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'orders.id',
            ondelete='SET NULL'),
        nullable=True)
    menu_item_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'menu_items.id',
            ondelete='SET NULL'),
        nullable=True,
        index=True)
    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text, nullable=False)
    admin_response = db.Column(db.Text, nullable=True)
    is_approved = db.Column(db.Boolean, default=False, nullable=False)
    is_featured = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    __table_args__ = (
        CheckConstraint(
            'rating >= 1 AND rating <= 5',
            name='check_rating_range'),
    )

    def __repr__(self):
        return f'<Review {self.id} rating={self.rating}>'


class GalleryImage(db.Model):
    __tablename__ = 'gallery_images'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(150), nullable=True)
    image_path = db.Column(db.String(255), nullable=False)
    uploaded_by = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    def __repr__(self):
        return f'<GalleryImage {self.id}>'


class DiningTable(db.Model):
    __tablename__ = 'dining_tables'

    id = db.Column(db.Integer, primary_key=True)
    table_number = db.Column(db.Integer, unique=True, nullable=False)
    capacity = db.Column(db.Integer, nullable=False)
    location = db.Column(db.String(80), nullable=True)
    is_available = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    reservations = db.relationship(
        'Reservation',
        backref='table',
        lazy='dynamic')

    __table_args__ = (
        CheckConstraint('capacity > 0', name='check_table_capacity_positive'),
    )

    def __repr__(self):
        return f'<DiningTable {self.table_number} seats={self.capacity}>'


class Reservation(db.Model):
    __tablename__ = 'reservations'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    table_id = db.Column(
        db.Integer,
        db.ForeignKey('dining_tables.id'),
        nullable=False)
    # Dine-in orders can carry a booking; cancelling the order frees it
    order_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'orders.id',
            ondelete='SET NULL'),
        nullable=True)
    party_size = db.Column(db.Integer, nullable=False)
    reservation_date = db.Column(db.Date, nullable=False, index=True)
    reservation_time = db.Column(db.Time, nullable=False)
    special_requests = db.Column(db.Text, nullable=True)
    deposit_amount = db.Column(db.Numeric(10, 2), nullable=True)
    status = db.Column(
        db.Enum(ReservationStatus),
        nullable=False,
        default=ReservationStatus.PENDING)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    user = db.relationship('User', foreign_keys=[user_id])
    order = db.relationship(
        'Order',
        foreign_keys=[order_id],
        backref=db.backref('reservations', lazy='dynamic'))

    __table_args__ = (
        CheckConstraint(
            'party_size > 0', name='check_party_size_positive'),
    )

    def __repr__(self):
        return (f'<Reservation {self.id} table={self.table_id} '
                f'{self.reservation_date} {self.reservation_time}>')


class InventoryItem(db.Model):
    __tablename__ = 'inventory_items'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    sku = db.Column(db.String(64), unique=True, nullable=True)
    category = db.Column(db.String(80), nullable=True)
    current_stock = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    min_stock_level = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    current_price = db.Column(db.Numeric(10, 2), nullable=True)
    storage_location = db.Column(db.String(120), nullable=True)
    unit_of_measurement = db.Column(db.String(20), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    def __repr__(self):
        return f'<InventoryItem {self.name}>'


class StockMovement(db.Model):
    __tablename__ = 'stock_movements'

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'inventory_items.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    movement_type = db.Column(db.Enum(StockMovementType), nullable=False)
    quantity = db.Column(db.Numeric(10, 2), nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=True)
    total_cost = db.Column(db.Numeric(10, 2), nullable=True)
    reason = db.Column(db.String(200), nullable=True)
    created_by = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    item = db.relationship(
        'InventoryItem',
        backref=db.backref(
            'movements',
            lazy='dynamic',
            cascade='all, delete-orphan'))

    __table_args__ = (
        CheckConstraint(
            'quantity > 0', name='check_movement_quantity_positive'),
    )

    def __repr__(self):
        return (f'<StockMovement {self.movement_type.value} '
                f'{self.quantity} item={self.item_id}>')


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)
    actor_role = db.Column(db.String(20), nullable=False)
    # e.g., ORDER_CANCEL_REQUEST, REVIEW_APPROVE
    action = db.Column(db.String(100), nullable=False)
    # ORDER, ORDER_MESSAGE, REVIEW, MENU_ITEM, etc.
    target_type = db.Column(db.String(50), nullable=True)
    target_id = db.Column(db.Integer, nullable=True)
    ip = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    # JSON format key field snapshot
    payload_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True)

    actor = db.relationship('User', foreign_keys=[actor_id])

    def set_payload(self, data):
        self.payload_json = json.dumps(
            data, ensure_ascii=False, default=str)

    def get_payload(self):
        if self.payload_json:
            return json.loads(self.payload_json)
        return {}

    def __repr__(self):
        return f'<AuditLog {self.id} action={self.action}>'
