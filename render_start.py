"""
Production startup script.
Binds to $PORT on all interfaces without reload.
"""
import os
import sys


def main():
    """Start the FastAPI app in production mode."""
    try:
        import uvicorn
    except ImportError:
        print("uvicorn is not installed")
        print("Install with: pip install -e .")
        return 1

    port = int(os.environ.get("PORT", 8000))
    host = "0.0.0.0"

    print(f"Starting SevisPass API on {host}:{port}")

    # Single process: the in-memory token store is per process. Set
    # DATABASE_URL before adding workers.
    try:
        uvicorn.run(
            "sevispass.main:app",
            host=host,
            port=port,
            reload=False,
            log_level="info",
            access_log=True
        )
    except KeyboardInterrupt:
        print("\nServer shutdown complete")
        return 0

    return 0


if __name__ == "__main__":
    sys.exit(main())
