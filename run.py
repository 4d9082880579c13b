r"""Run helper for the FastAPI app.

Run with:
  python run.py

Set NO_RELOAD=true to disable auto-reload.
"""

import os
import signal
import sys


def main() -> int:
    try:
        import uvicorn
    except ImportError:
        print("uvicorn is not installed in this environment.")
        print("Install it with: pip install -e .")
        return 1

    def signal_handler(sig, frame):
        print("\n\nShutting down server...")
        os._exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    if hasattr(signal, 'SIGTERM') and sys.platform != "win32":
        signal.signal(signal.SIGTERM, signal_handler)

    use_reload = os.environ.get("NO_RELOAD", "").lower() != "true"
    try:
        uvicorn.run("sevispass.main:app", host="127.0.0.1", port=8000, reload=use_reload)
    except KeyboardInterrupt:
        print("\n\nShutting down server...")
        return 0
    return 0


if __name__ == "__main__":
    sys.exit(main())
