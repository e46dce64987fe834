#!/usr/bin/env python3
"""
Trailhead Backend Runner
========================

Run the Trailhead API in different modes.

Usage:
    python run_app.py                    # Development server with auto-reload
    python run_app.py --mode prod        # Production mode, multiple workers
    python run_app.py --port 8001        # Custom port
    python run_app.py --host 127.0.0.1   # Custom host
    python run_app.py --init-db          # Create tables before starting
"""

import argparse
import asyncio
import os
import sys

def print_banner():
    """Print application banner"""
    banner = """
╔═══════════════════════════════════════════════════════╗
║                  Trailhead Backend                    ║
╚═══════════════════════════════════════════════════════╝
    """
    print(banner)

def check_environment():
    """Check if environment is properly set up"""
    print("\nChecking environment...")

    if os.path.exists(".env"):
        print(".env file found")
    else:
        print(".env file not found, relying on process environment")

    missing = [name for name in ("DATABASE_URL", "SECRET_KEY") if not os.environ.get(name)]
    if missing and not os.path.exists(".env"):
        print(f"Missing required settings: {', '.join(missing)}")
        return False

    return True

def init_database():
    """Create database tables"""
    from trailhead.core.database import init_db, close_db

    async def _run():
        try:
            await init_db()
        finally:
            await close_db()

    asyncio.run(_run())
    print("Database tables created")

def run_app(host="0.0.0.0", port=8000, reload=True, workers=1):
    """Run the FastAPI application"""
    print(f"\nStarting Trailhead API on {host}:{port}")
    print(f"API Docs: http://{host}:{port}/api/docs")
    print("\n" + "=" * 50)

    import uvicorn
    uvicorn.run(
        "trailhead.main:app",
        host=host,
        port=port,
        reload=reload,
        workers=1 if reload else workers,
        log_level="info"
    )

def main():
    parser = argparse.ArgumentParser(
        description="Trailhead Backend Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--mode",
        choices=["dev", "prod"],
        default="dev",
        help="Server mode (default: dev)"
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=4,
        help="Worker processes in prod mode (default: 4)"
    )
    parser.add_argument(
        "--no-reload",
        action="store_true",
        help="Disable auto-reload"
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create database tables before running"
    )

    args = parser.parse_args()

    print_banner()

    if not check_environment():
        return 1

    if args.init_db:
        init_database()

    reload = not args.no_reload and args.mode != "prod"
    run_app(args.host, args.port, reload, args.workers)

    return 0

if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nServer stopped by user")
        sys.exit(0)
