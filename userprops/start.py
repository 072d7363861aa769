#!/usr/bin/env python3
"""
Service startup wrapper.
"""
import os
import sys


def main() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    print("[userprops] Starting User Properties API")
    print(f"[userprops] Server: http://{host}:{port}")
    try:
        import uvicorn
        uvicorn.run(
            "userprops.main:app",
            host=host,
            port=port,
            reload=False,
            log_level="info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\n[userprops] Shutting down...")
        sys.exit(0)


if __name__ == "__main__":
    main()
