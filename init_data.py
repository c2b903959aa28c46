from kudos_cafe import create_app
from kudos_cafe.extensions import db
from kudos_cafe.models import (
    DiningTable,
    InventoryItem,
    MenuItem,
    User,
    UserRole,
)

app = create_app()

with app.app_context():
    # Fresh checkouts have no migration history yet
    db.create_all()

    # Create admin account (if not exists)
    admin_email = "admin@kudoscafe.ph"
    admin = User.query.filter_by(email=admin_email).first()
    if not admin:
        admin = User(
            email=admin_email,
            full_name="Kudos Café Staff",
            role=UserRole.ADMIN,
        )
        admin.set_password("admin123")
        db.session.add(admin)
        print(f"Created admin account: {admin_email} / admin123")

    customer_email = "customer@example.com"
    if not User.query.filter_by(email=customer_email).first():
        customer = User(
            email=customer_email,
            full_name="Juan dela Cruz",
            phone="+63 917 000 0000",
            role=UserRole.CUSTOMER,
        )
        customer.set_password("customer123")
        db.session.add(customer)
        print(f"Created customer account: {customer_email} / customer123")

    menu_data = [
        {
            "name": "Spanish Latte",
            "category": "Coffee",
            "description": "Espresso, milk and a touch of condensed milk",
            "price": 160,
            "dietary_tags": "vegetarian",
            "is_popular": True,
        },
        {
            "name": "Iced Americano",
            "category": "Coffee",
            "description": "Double shot over ice",
            "price": 120,
            "dietary_tags": "vegan",
        },
        {
            "name": "Ube Cheese Pandesal",
            "category": "Pastries",
            "description": "Soft rolls filled with ube jam and cheese",
            "price": 85,
            "dietary_tags": "vegetarian",
            "is_new": True,
        },
        {
            "name": "Tapsilog",
            "category": "Breakfast",
            "description": "Cured beef, garlic rice and a fried egg",
            "price": 245,
            "is_popular": True,
        },
        {
            "name": "Chicken Adobo Rice Bowl",
            "category": "Mains",
            "description": "Slow-braised chicken adobo over jasmine rice",
            "price": 265,
            "dietary_tags": "gluten-free",
        },
        {
            "name": "Calamansi Cheesecake",
            "category": "Desserts",
            "description": "Baked cheesecake with a calamansi glaze",
            "price": 180,
            "dietary_tags": "vegetarian",
        },
    ]

    for item_data in menu_data:
        if MenuItem.query.filter_by(name=item_data["name"]).first():
            continue
        db.session.add(MenuItem(**item_data))
        print(f"  Created menu item: {item_data['name']}")

    inventory_data = [
        {
            "name": "Espresso Beans",
            "sku": "INV-COF-001",
            "category": "Coffee",
            "current_stock": 12,
            "min_stock_level": 5,
            "current_price": 950,
            "storage_location": "Dry storage",
            "unit_of_measurement": "kg",
        },
        {
            "name": "Fresh Milk",
            "sku": "INV-DRY-001",
            "category": "Dairy",
            "current_stock": 8,
            "min_stock_level": 10,
            "current_price": 105,
            "storage_location": "Chiller",
            "unit_of_measurement": "L",
        },
        {
            "name": "Ube Halaya",
            "sku": "INV-PAS-001",
            "category": "Pastries",
            "current_stock": 0,
            "min_stock_level": 2,
            "current_price": 320,
            "storage_location": "Chiller",
            "unit_of_measurement": "jar",
        },
    ]

    for inv_data in inventory_data:
        if InventoryItem.query.filter_by(sku=inv_data["sku"]).first():
            continue
        db.session.add(InventoryItem(**inv_data))
        print(f"  Created inventory item: {inv_data['name']}")

    table_data = [
        (1, 2, "Window"),
        (2, 2, "Window"),
        (3, 4, "Main hall"),
        (4, 4, "Main hall"),
        (5, 6, "Patio"),
        (6, 8, "Function room"),
    ]

    for number, capacity, location in table_data:
        if DiningTable.query.filter_by(table_number=number).first():
            continue
        db.session.add(DiningTable(
            table_number=number, capacity=capacity, location=location))
        print(f"  Created table {number} ({capacity} seats, {location})")

    db.session.commit()
    print("Data initialization completed!")
