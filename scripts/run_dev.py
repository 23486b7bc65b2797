#!/usr/bin/env python3
"""
Development server runner for the Verity API
Includes auto-reload and environment checking
"""

import os
import sys
import uvicorn
from pathlib import Path

# Add the parent directory to Python path
sys.path.append(str(Path(__file__).parent.parent))

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()


def check_environment():
    """Check the block store configuration."""
    backend = os.getenv("BLOCK_STORE", "memory").lower()
    if backend not in ("memory", "postgres"):
        print(f"Unknown BLOCK_STORE backend: {backend}")
        return False

    if backend == "postgres" and not os.getenv("DB_DSN"):
        print("BLOCK_STORE=postgres requires DB_DSN")
        print("Please check your .env file or environment configuration.")
        return False

    if backend == "memory":
        print("Using in-memory block store: the ledger is lost on restart")

    optional_vars = [
        "API_HOST",
        "API_PORT",
        "DEBUG",
        "VERITY_DIFFICULTY",
        "VERITY_MAX_NONCE",
        "MAX_UPLOAD_SIZE",
    ]

    print("\nConfiguration:")
    print(f"  BLOCK_STORE: {backend}")
    for var in optional_vars:
        print(f"  {var}: {os.getenv(var, 'Not set')}")

    return True


def check_block_store():
    """Open the configured block store and rebuild the ledger once."""
    try:
        from verity.main import build_service_from_config
        service = build_service_from_config()
    except Exception as e:
        print(f"Block store error: {str(e)}")
        return False

    try:
        print(f"Ledger loaded: {len(service.ledger)} blocks, tip {service.tip().hash[:16]}...")
        return True
    finally:
        service.store.close()


def main():
    """Main entry point for development server."""
    print("Verity - Development Server")
    print("=" * 50)

    if not check_environment():
        sys.exit(1)

    if os.getenv("BLOCK_STORE", "memory").lower() == "postgres" and not check_block_store():
        sys.exit(1)

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", 8000))
    debug = os.getenv("DEBUG", "true").lower() == "true"

    print("\nStarting development server...")
    print(f"   Host: {host}")
    print(f"   Port: {port}")
    print(f"   Debug: {debug}")
    print(f"   Docs: http://{host}:{port}/docs")
    print("=" * 50)

    try:
        uvicorn.run(
            "verity.main:app",
            host=host,
            port=port,
            reload=debug,
            log_level="debug" if debug else "info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\nServer stopped by user")
    except Exception as e:
        print(f"\nServer error: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
