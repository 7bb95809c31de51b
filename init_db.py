#!/usr/bin/env python3
"""
Create the session_cookies, redemption_codes and tokens tables if they are missing.
"""

import asyncio
import sys
import os

# Add the src directory to the Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from voapi_relay.config.settings import get_settings
from voapi_relay.database.connection import create_schema


async def main():
    print("Initializing database schema...")
    try:
        await create_schema(get_settings())
        print("Database initialized successfully!")
    except Exception as e:
        print(f"Error initializing database: {e}")
        return 1
    return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
