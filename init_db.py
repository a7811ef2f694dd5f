#!/usr/bin/env python3
# init_db.py
"""
Schema setup for RentalHub
Creates, drops and inspects the relational tables used by the API.
Usage:
  python init_db.py            # create missing tables
  python init_db.py --drop     # drop everything, then recreate
  python init_db.py --check    # print the current table structure
"""

import argparse
from sqlalchemy import text, inspect

# Table order matters for drops: children first
TABLES = [
    "user_activity",
    "rental_bookings",
    "purchases",
    "ratings",
    "images",
    "listings",
    "users",
]

_DDL = {
    "users": """
        CREATE TABLE IF NOT EXISTS users (
            user_id {pk},
            username VARCHAR(100),
            email VARCHAR(150) NOT NULL UNIQUE,
            password_hash VARCHAR(255) NOT NULL,
            full_name VARCHAR(150),
            phone VARCHAR(40),
            role VARCHAR(20) NOT NULL DEFAULT 'user',
            is_active INT NOT NULL DEFAULT 1,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            last_login TIMESTAMP NULL,
            CHECK (role IN ('user', 'owner', 'admin'))
        ){options}
    """,
    "listings": """
        CREATE TABLE IF NOT EXISTS listings (
            listing_id {pk},
            owner_id INT NOT NULL,
            title VARCHAR(200) NOT NULL,
            description TEXT,
            image_url VARCHAR(2000),
            address VARCHAR(300),
            latitude DOUBLE,
            longitude DOUBLE,
            owner_phone VARCHAR(40),
            bedrooms INT,
            bathrooms INT,
            area_sqft INT,
            furnished VARCHAR(30),
            verified INT NOT NULL DEFAULT 0,
            deposit DECIMAL(12,2),
            available_from DATE,
            contact_start VARCHAR(10),
            contact_end VARCHAR(10),
            price DECIMAL(12,2) NOT NULL,
            total_units INT NOT NULL DEFAULT 1,
            available_units INT NOT NULL DEFAULT 1,
            city VARCHAR(120),
            category VARCHAR(60),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NULL,
            CHECK (available_units >= 0),
            CHECK (available_units <= total_units)
        ){options}
    """,
    "images": """
        CREATE TABLE IF NOT EXISTS images (
            image_id {pk},
            listing_id INT NOT NULL,
            image_url VARCHAR(2000) NOT NULL,
            image_name VARCHAR(255),
            image_size INT,
            image_width INT,
            image_height INT,
            is_primary INT NOT NULL DEFAULT 0,
            sort_order INT NOT NULL DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NULL
        ){options}
    """,
    "ratings": """
        CREATE TABLE IF NOT EXISTS ratings (
            rating_id {pk},
            listing_id INT NOT NULL,
            user_id INT NOT NULL,
            score INT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (listing_id, user_id),
            CHECK (score BETWEEN 1 AND 5)
        ){options}
    """,
    "purchases": """
        CREATE TABLE IF NOT EXISTS purchases (
            purchase_id {pk},
            listing_id INT NOT NULL,
            buyer_id INT NOT NULL,
            seller_id INT NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'completed',
            notes VARCHAR(1000),
            purchase_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NULL,
            CHECK (status IN ('pending', 'completed', 'cancelled'))
        ){options}
    """,
    "rental_bookings": """
        CREATE TABLE IF NOT EXISTS rental_bookings (
            id {pk},
            listing_id INT NOT NULL,
            user_email VARCHAR(150) NOT NULL,
            amount DECIMAL(10,2) DEFAULT 0,
            booking_date DATE NOT NULL,
            status VARCHAR(20) DEFAULT 'confirmed',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        ){options}
    """,
    "user_activity": """
        CREATE TABLE IF NOT EXISTS user_activity (
            activity_id {pk},
            user_id INT NOT NULL,
            activity_type VARCHAR(50) NOT NULL,
            activity_data TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        ){options}
    """,
}

_INDEXES = [
    ("idx_listings_price", "listings", "price"),
    ("idx_listings_city", "listings", "city"),
    ("idx_listings_owner", "listings", "owner_id"),
    ("idx_listings_geo", "listings", "latitude, longitude"),
    ("idx_images_listing", "images", "listing_id, sort_order"),
    ("idx_ratings_listing", "ratings", "listing_id"),
    ("idx_purchases_buyer", "purchases", "buyer_id"),
    ("idx_purchases_seller", "purchases", "seller_id"),
    ("idx_bookings_listing", "rental_bookings", "listing_id"),
    ("idx_activity_user", "user_activity", "user_id, created_at"),
]


def _dialect_tokens(engine):
    # MySQL and SQLite disagree on auto-increment keys and table options
    if engine.dialect.name == "mysql":
        return {
            "pk": "INT AUTO_INCREMENT PRIMARY KEY",
            "options": " ENGINE=InnoDB DEFAULT CHARSET=utf8mb4",
        }
    return {"pk": "INTEGER PRIMARY KEY AUTOINCREMENT", "options": ""}


def create_tables(engine):
    """Create every table and index that is missing"""
    tokens = _dialect_tokens(engine)
    existing = set(inspect(engine).get_table_names())

    with engine.begin() as conn:
        for table in reversed(TABLES):
            conn.execute(text(_DDL[table].format(**tokens)))

        for index_name, table, columns in _INDEXES:
            if table in existing:
                known = {ix["name"] for ix in inspect(conn).get_indexes(table)}
                if index_name in known:
                    continue
            conn.execute(text(f"CREATE INDEX {index_name} ON {table} ({columns})"))


def drop_tables(engine):
    with engine.begin() as conn:
        for table in TABLES:
            conn.execute(text(f"DROP TABLE IF EXISTS {table}"))


def describe_tables(engine):
    """Return {table: [(column, type, nullable), ...]} for the known tables"""
    inspector = inspect(engine)
    present = set(inspector.get_table_names())
    structure = {}
    for table in reversed(TABLES):
        if table not in present:
            continue
        structure[table] = [
            (col["name"], str(col["type"]), col["nullable"])
            for col in inspector.get_columns(table)
        ]
    return structure


def main():
    p = argparse.ArgumentParser(description="Create or inspect the RentalHub tables")
    p.add_argument("--drop", action="store_true", help="drop all tables before creating them")
    p.add_argument("--check", action="store_true", help="print table structure and exit")
    args = p.parse_args()

    from db_mysql import engine

    if args.check:
        structure = describe_tables(engine)
        if not structure:
            print("⚠️  No RentalHub tables found")
        for table, columns in structure.items():
            print(f"\n=== {table.upper()} ===")
            for name, col_type, nullable in columns:
                print(f"   {name:20} {col_type:20} {'NULL' if nullable else 'NOT NULL'}")
        return

    if args.drop:
        print("🗑️  Dropping tables...")
        drop_tables(engine)

    print("📊 Creating tables...")
    create_tables(engine)
    for table in reversed(TABLES):
        print(f"   ✅ {table}")
    print("\n🎉 Schema ready")


if __name__ == "__main__":
    main()
