#!/usr/bin/env python3
# reset_password.py
"""
Reset a user's password from the command line, then verify the new hash
Usage:
  python reset_password.py --email someone@example.com --password newpass123
"""

import argparse
import sys

from sqlalchemy import text

from auth import check_password, set_password, validate_password
from db_mysql import engine
from errors import ApiError


def reset_password(email, new_password):
    """Returns True when the stored hash verifies against new_password"""
    email = email.strip().lower()

    with engine.connect() as conn:
        row = conn.execute(text("SELECT user_id FROM users WHERE email = :email"),
                           {"email": email}).first()
    if not row:
        print("❌ User not found!")
        return False
    user_id = row[0]
    print(f"✅ User found with ID: {user_id}")

    print("\n🔐 Hashing and storing new password...")
    set_password(user_id, new_password)

    with engine.connect() as conn:
        stored = conn.execute(text("SELECT password_hash FROM users WHERE user_id = :user_id"),
                              {"user_id": user_id}).scalar_one()

    if not check_password(stored, new_password):
        print("❌ Password verification failed after update")
        return False

    print("✅ Password reset successful! You can now log in with the new password")
    return True


def main():
    p = argparse.ArgumentParser(description="Reset a RentalHub user's password")
    p.add_argument("--email", required=True)
    p.add_argument("--password", required=True)
    args = p.parse_args()

    try:
        validate_password(args.password)
    except ApiError as e:
        print(f"❌ {e.message}")
        sys.exit(1)

    print(f"Resetting password for: {args.email}")
    if not reset_password(args.email, args.password):
        sys.exit(1)


if __name__ == "__main__":
    main()
