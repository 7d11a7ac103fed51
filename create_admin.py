#!/usr/bin/env python3
"""Script to create or promote a user to admin"""

from sakina.database import SessionLocal
from sakina.models.user import User, AuthProvider, Role
from sakina.utils.security import get_password_hash
from sakina.models import (  # noqa: F401
    user, package, coupon, subscription, payment, category, track, program,
    user_program, custom_program, listening_session, notification, favorite,
)


def create_admin(email: str, password: str, name: str = "Admin User"):
    """Create a new admin user"""
    db = SessionLocal()

    try:
        existing_user = db.query(User).filter(User.email == email).first()

        if existing_user:
            existing_user.role = Role.ADMIN
            existing_user.is_verified = True
            existing_user.is_banned = False
            existing_user.banned_until = None
            db.commit()
            print(f"✅ User '{email}' promoted to admin!")
            print(f"   User ID: {existing_user.id}")
        else:
            admin_user = User(
                email=email,
                name=name,
                hashed_password=get_password_hash(password),
                auth_provider=AuthProvider.EMAIL,
                role=Role.ADMIN,
                is_verified=True,
            )

            db.add(admin_user)
            db.commit()
            db.refresh(admin_user)

            print(f"✅ Admin user created successfully!")
            print(f"   Email: {admin_user.email}")
            print(f"   User ID: {admin_user.id}")

        print(f"\n🔑 You can now login with:")
        print(f"   Email: {email}")

    except Exception as e:
        print(f"❌ Error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    import sys

    if len(sys.argv) >= 3:
        create_admin(sys.argv[1], sys.argv[2], sys.argv[3] if len(sys.argv) > 3 else "Admin User")
    else:
        print("Usage: python create_admin.py <email> <password> [name]")
        email = input("Enter admin email: ")
        password = input("Enter admin password: ")
        name = input("Enter name (or press Enter for 'Admin User'): ") or "Admin User"
        create_admin(email, password, name)
