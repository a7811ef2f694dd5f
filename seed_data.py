#!/usr/bin/env python3
# seed_data.py
"""
Seed RentalHub with a demo owner and sample listings
Usage:
  python seed_data.py                         # owner + the three sample listings
  python seed_data.py --admin                 # also create the demo admin
  python seed_data.py --csv listings.csv      # import listings from a CSV file
"""

import argparse
import os

import pandas as pd
from sqlalchemy import text

from auth import hash_password
from db_mysql import engine, create_listing
from errors import ApiError
from init_db import create_tables

SAMPLE_LISTINGS = [
    {
        "title": "Cozy 2-Bedroom Apartment",
        "description": "Beautiful apartment in a quiet neighborhood with modern amenities",
        "image_url": "https://images.unsplash.com/photo-1560448204-e02f11c3d0e2?w=500",
        "address": "123 Main Street, Downtown",
        "latitude": 40.7128,
        "longitude": -74.0060,
        "owner_phone": "+1-555-0123",
        "price": 1800,
        "bedrooms": 2,
        "bathrooms": 1,
        "area_sqft": 850,
        "furnished": "Furnished",
        "verified": 1,
        "deposit": 1800,
        "total_units": 1,
        "available_units": 1,
        "category": "Apartment",
        "city": "New York",
    },
    {
        "title": "Spacious 3-Bedroom House",
        "description": "Large family home with backyard and garage",
        "image_url": "https://images.unsplash.com/photo-1564013799919-ab600027ffc6?w=500",
        "address": "456 Oak Avenue, Suburbs",
        "latitude": 40.7589,
        "longitude": -73.9851,
        "owner_phone": "+1-555-0456",
        "price": 2800,
        "bedrooms": 3,
        "bathrooms": 2,
        "area_sqft": 1200,
        "furnished": "Semi-Furnished",
        "verified": 1,
        "deposit": 2800,
        "total_units": 1,
        "available_units": 1,
        "category": "House",
        "city": "New York",
    },
    {
        "title": "Modern Studio Loft",
        "description": "Contemporary loft with high ceilings and city views",
        "image_url": "https://images.unsplash.com/photo-1502672260266-1c1ef2d93688?w=500",
        "address": "789 Park Lane, Midtown",
        "latitude": 40.7505,
        "longitude": -73.9934,
        "owner_phone": "+1-555-0789",
        "price": 2200,
        "bedrooms": 0,
        "bathrooms": 1,
        "area_sqft": 600,
        "furnished": "Furnished",
        "verified": 0,
        "deposit": 2200,
        "total_units": 1,
        "available_units": 1,
        "category": "Studio",
        "city": "New York",
    },
]


def ensure_user(email, password, full_name, role):
    """Return the user id for email, creating the account if needed"""
    email = email.strip().lower()
    with engine.begin() as conn:
        row = conn.execute(text("SELECT user_id FROM users WHERE email = :email"),
                           {"email": email}).first()
        if row:
            print(f"   ℹ️  {role} account already exists: {email} (id {row[0]})")
            return row[0]

        result = conn.execute(text("""
            INSERT INTO users (username, email, password_hash, full_name, role, is_active)
            VALUES (:username, :email, :password_hash, :full_name, :role, 1)
        """), {
            "username": email.split("@")[0],
            "email": email,
            "password_hash": hash_password(password),
            "full_name": full_name,
            "role": role,
        })
        print(f"   ✅ Created {role} account: {email} (id {result.lastrowid})")
        return result.lastrowid


def seed_sample_listings(owner_id):
    created = 0
    for listing in SAMPLE_LISTINGS:
        row = create_listing(owner_id, listing)
        print(f"   ✅ Created listing: {row['title']} with ID: {row['listing_id']}")
        created += 1
    return created


def load_csv_listings(csv_path):
    """Read a listings CSV; blank cells become None"""
    df = pd.read_csv(csv_path)
    df.columns = [c.strip() for c in df.columns]
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


def import_csv(owner_id, csv_path):
    print(f"📋 Reading: {csv_path}")
    records = load_csv_listings(csv_path)
    print(f"   Rows found: {len(records):,}")

    created, skipped = 0, 0
    for i, record in enumerate(records, start=1):
        try:
            create_listing(owner_id, record)
            created += 1
        except ApiError as e:
            skipped += 1
            print(f"   ⚠️  Row {i} skipped: {e.message}")

    print(f"   ✅ Imported {created:,} listings ({skipped:,} skipped)")
    return created


def parse_args():
    p = argparse.ArgumentParser(description="Seed RentalHub with demo accounts and listings")
    p.add_argument("--csv", help="Import listings from this CSV instead of the samples")
    p.add_argument("--owner-email", default=os.getenv("SEED_OWNER_EMAIL", "owner@example.com"))
    p.add_argument("--owner-password", default=os.getenv("SEED_OWNER_PASSWORD", "password123"))
    p.add_argument("--admin", action="store_true", help="Also create the demo admin account")
    p.add_argument("--admin-email", default=os.getenv("SEED_ADMIN_EMAIL", "admin@example.com"))
    p.add_argument("--admin-password", default=os.getenv("SEED_ADMIN_PASSWORD", "admin123"))
    return p.parse_args()


def main():
    args = parse_args()

    print("=" * 60)
    print("🌱 Seeding RentalHub")
    print("=" * 60)

    create_tables(engine)

    print("\n👤 Accounts...")
    owner_id = ensure_user(args.owner_email, args.owner_password, "Demo Owner", "owner")
    if args.admin:
        ensure_user(args.admin_email, args.admin_password, "Demo Admin", "admin")

    print("\n🏠 Listings...")
    if args.csv:
        import_csv(owner_id, args.csv)
    else:
        seed_sample_listings(owner_id)

    print("\n🎉 Seed completed successfully!")


if __name__ == "__main__":
    main()
