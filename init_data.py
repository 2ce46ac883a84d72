from decimal import Decimal
from storefront import create_app
from storefront.extensions import db
from storefront.models import (
    DiscountType,
    GameCode,
    GiftCardDenomination,
    Product,
    ProductEdition,
    ProductType,
    PromoCode,
    User,
    UserRole,
)

app = create_app()

with app.app_context():
    # Create admin and manager accounts (if not exists)
    staff_data = [
        {"email": "admin@example.com", "password": "admin12345",
         "role": UserRole.ADMIN},
        {"email": "manager@example.com", "password": "manager12345",
         "role": UserRole.MANAGER},
    ]
    for staff in staff_data:
        user = User.query.filter_by(email=staff["email"]).first()
        if not user:
            user = User(
                email=staff["email"],
                username=staff["email"].split("@")[0],
                role=staff["role"],
            )
            user.set_password(staff["password"])
            db.session.add(user)
            print(f"Created {staff['role'].value} account: "
                  f"{staff['email']} / {staff['password']}")

    games_data = [
        {
            "name": "Elden Ring",
            "description": "Open-world action RPG",
            "platform": "PC",
            "price": "59.99",
            "discounted_price": "39.99",
            "stock": 40,
            "featured": True,
            "is_on_sale": True,
            "editions": [
                {"name": "Deluxe Edition", "price": "79.99", "stock": 15,
                 "bonus_content": "Digital artbook and soundtrack"},
            ],
        },
        {
            "name": "Forza Horizon 5",
            "description": "Open-world racing in Mexico",
            "platform": "Xbox",
            "price": "49.99",
            "stock": 25,
            "featured": True,
        },
        {
            "name": "God of War Ragnarok",
            "description": "Norse saga continues",
            "platform": "PlayStation",
            "price": "69.99",
            "stock": 30,
            "is_new_release": True,
        },
        {
            "name": "Hollow Knight: Silksong",
            "description": "Pre-order, delivered on release day",
            "platform": "Nintendo",
            "price": "29.99",
            "stock": 0,
            "is_pre_order": True,
        },
        {
            "name": "Valorant Points 1000",
            "description": "In-game currency for Valorant",
            "platform": "PC",
            "price": "9.99",
            "stock": 100,
            "is_game_credit": True,
            "credit_value": "1000",
        },
    ]

    for game in games_data:
        if Product.query.filter_by(name=game["name"]).first():
            continue
        editions = game.pop("editions", [])
        product = Product(
            name=game["name"],
            description=game["description"],
            platform=game["platform"],
            price=Decimal(game["price"]),
            discounted_price=(
                Decimal(game["discounted_price"])
                if game.get("discounted_price") else None),
            stock=game["stock"],
            featured=game.get("featured", False),
            is_on_sale=game.get("is_on_sale", False),
            is_new_release=game.get("is_new_release", False),
            is_pre_order=game.get("is_pre_order", False),
            is_game_credit=game.get("is_game_credit", False),
            credit_value=(
                Decimal(game["credit_value"])
                if game.get("credit_value") else None),
            product_type=ProductType.GAME,
            has_editions=bool(editions),
        )
        db.session.add(product)
        db.session.flush()

        for edition_data in editions:
            db.session.add(ProductEdition(
                product_id=product.id,
                name=edition_data["name"],
                description=edition_data.get("description", ""),
                price=Decimal(edition_data["price"]),
                stock=edition_data["stock"],
                bonus_content=edition_data.get("bonus_content"),
            ))

        # A few inventory codes so orders can be delivered right away
        for i in range(3):
            db.session.add(GameCode(
                product_id=product.id,
                code=f"DEMO-{product.id:04d}-{i + 1:04d}",
                platform=product.platform,
                product_type=ProductType.GAME,
            ))
        print(f"  Created product: {product.name}")

    # Gift card platforms with their denominations
    gift_card_platforms = [
        {"name": "Steam Gift Card", "platform": "Steam",
         "values": ["10", "20", "50"]},
        {"name": "PlayStation Store Gift Card", "platform": "PlayStation",
         "values": ["10", "25", "50"]},
    ]
    for platform_data in gift_card_platforms:
        platform = Product.query.filter_by(name=platform_data["name"]).first()
        if platform:
            continue
        platform = Product(
            name=platform_data["name"],
            description=f"{platform_data['platform']} wallet top-up",
            platform=platform_data["platform"],
            price=Decimal(platform_data["values"][0]),
            stock=0,
            product_type=ProductType.GIFT_CARD,
        )
        db.session.add(platform)
        db.session.flush()
        for value in platform_data["values"]:
            db.session.add(GiftCardDenomination(
                platform_id=platform.id,
                name=f"{value} USD",
                value=Decimal(value),
                stock=0,
                active=True,
            ))
        print(f"  Created gift card platform: {platform.name}")

    if not PromoCode.query.filter_by(code="WELCOME10").first():
        db.session.add(PromoCode(
            code="WELCOME10",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("10"),
            minimum_order_amount=Decimal("20"),
            max_uses_per_user=1,
            used_count=0,
            is_active=True,
        ))
        print("Created promo code: WELCOME10")

    db.session.commit()
    print("Data initialization completed!")
