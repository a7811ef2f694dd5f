#!/usr/bin/env python3
# generate_jwt_secret.py
# Print a random secret suitable for JWT_SECRET_KEY

import secrets


def generate_secret(nbytes=32):
    return secrets.token_hex(nbytes)


if __name__ == "__main__":
    secret = generate_secret()
    print("🔑 Generated JWT secret:\n")
    print(secret)
    print("\nAdd this line to your .env file:")
    print(f"JWT_SECRET_KEY={secret}")
