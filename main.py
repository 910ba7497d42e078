"""
Entry point for the medication reminder service.

Run with: python main.py
"""

import asyncio
from medreminder.main import main


if __name__ == "__main__":
    asyncio.run(main())
