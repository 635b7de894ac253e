#!/usr/bin/env python3
"""
NGO Donation Hub - Production Startup Script
Run this script to start the API in production mode
"""

import os
import sys
from pathlib import Path

import uvicorn

import config


def main():
    """Start the donation API."""

    backend_dir = Path(__file__).parent
    os.chdir(backend_dir)

    port = int(os.getenv("PORT", 8000))
    host = os.getenv("HOST", "0.0.0.0")

    print("Starting NGO Donation Hub...")
    print(f"Host: {host}")
    print(f"Port: {port}")
    print(f"Database: {config.DATABASE_NAME}")

    if not (backend_dir / ".env").exists():
        print("Warning: .env file not found. Using environment and default configuration.")

    if not (config.RAZORPAY_KEY_ID and config.RAZORPAY_KEY_SECRET):
        print("Warning: RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET not set; only UPI ID donations will work.")

    try:
        uvicorn.run(
            "main:app",
            host=host,
            port=port,
            reload=False,
            access_log=True,
            log_level=config.LOG_LEVEL.lower(),
            workers=1,
            server_header=False,
            date_header=False,
            timeout_keep_alive=30,
        )
    except KeyboardInterrupt:
        print("\nShutting down gracefully...")
    except OSError as e:
        print(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
