#!/usr/bin/env python3
from __future__ import annotations

import os
import sys
import time

from urllib.request import urlopen
from urllib.error import URLError


def main() -> int:
    base_url = os.getenv("WIKIRAG_API_URL", "http://localhost:8000").rstrip("/")
    try:
        with urlopen(f"{base_url}/api/health", timeout=5) as r:
            print("/api/health:", r.read().decode("utf-8"))
        # Storage may still be opening on a cold start
        time.sleep(0.5)
        for path in ("/api/health/db", "/api/health/providers"):
            with urlopen(f"{base_url}{path}", timeout=10) as r:
                print(f"{path}:", r.read().decode("utf-8"))
    except (URLError, OSError) as exc:
        print(f"Smoke check failed: {exc}", file=sys.stderr)
        return 1
    print("Smoke check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
