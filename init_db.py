"""
Database initialization script
Run this to create the tables, an initial admin user and the default packages
"""
from sakina.database import SessionLocal, engine, Base
from sakina.models.user import User, AuthProvider, Role
from sakina.models.package import Package, PackageType, PeriodType
from sakina.utils.security import get_password_hash
from sakina.models import (  # noqa: F401
    user, package, coupon, subscription, payment, category, track, program,
    user_program, custom_program, listening_session, notification, favorite,
)

ADMIN_EMAIL = "admin@sakina.app"
ADMIN_PASSWORD = "admin12345"

DEFAULT_PACKAGES = [
    {
        "name": "الباقة الأساسية",
        "name_en": "Basic",
        "type": PackageType.BASIC,
        "price": 19,
        "period_type": PeriodType.MONTH,
        "period_count": 1,
        "duration_in_days": 30,
        "features": ["Basic meditation library", "Daily reminders"],
        "display_order": 1,
    },
    {
        "name": "الباقة القياسية",
        "name_en": "Standard",
        "type": PackageType.STANDARD,
        "price": 49,
        "period_type": PeriodType.MONTH,
        "period_count": 3,
        "duration_in_days": 90,
        "discount_percentage": 10,
        "features": ["Basic meditation library", "Guided programs", "Custom programs"],
        "display_order": 2,
    },
    {
        "name": "الباقة المميزة",
        "name_en": "Premium",
        "type": PackageType.PREMIUM,
        "price": 149,
        "period_type": PeriodType.YEAR,
        "period_count": 1,
        "duration_in_days": 365,
        "discount_percentage": 20,
        "features": ["Full library", "Premium programs", "Offline listening"],
        "display_order": 3,
    },
]


def init_database():
    # Create all tables
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()

    try:
        admin = db.query(User).filter(User.email == ADMIN_EMAIL).first()
        if not admin:
            admin = User(
                email=ADMIN_EMAIL,
                name="Admin User",
                hashed_password=get_password_hash(ADMIN_PASSWORD),  # Change this!
                auth_provider=AuthProvider.EMAIL,
                role=Role.ADMIN,
                is_verified=True,
            )
            db.add(admin)
            print("✓ Admin user created")

        for data in DEFAULT_PACKAGES:
            exists = db.query(Package).filter(Package.type == data["type"]).first()
            if not exists:
                db.add(Package(**data))
                print(f"✓ Package '{data['name_en']}' created")

        db.commit()
        print("\n" + "=" * 50)
        print("Database initialized successfully!")
        print("=" * 50)
        print("\nAdmin credentials:")
        print(f"Email: {ADMIN_EMAIL}")
        print(f"Password: {ADMIN_PASSWORD}")
        print("\nIMPORTANT: Change the admin password after first login!")
        print("=" * 50)

    except Exception as e:
        print(f"Error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    init_database()
