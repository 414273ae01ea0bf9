#!/usr/bin/env python3
"""
Generate secure secrets for STREAKr
Run this script to generate the required SECRET_KEY
"""

import secrets


def generate_secrets():
    """Generate secure random keys for the application"""
    print("🔐 Generating secure secrets for STREAKr...")
    print("=" * 50)

    print(f"SECRET_KEY={secrets.token_urlsafe(32)}")

    print("=" * 50)
    print("📝 Copy this value to your .env file")
    print("⚠️  Keep these secrets secure and never commit them to version control!")


if __name__ == "__main__":
    generate_secrets()
