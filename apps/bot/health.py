"""Container health probe: ``python -m apps.bot.health [bot|scrapper]``."""

from __future__ import annotations

import sys

import requests

from libs.core.settings import get_settings


def main() -> None:
    settings = get_settings()
    service = sys.argv[1] if len(sys.argv) > 1 else "bot"
    port = settings.scrapper_port if service == "scrapper" else settings.bot_port

    try:
        resp = requests.get(f"http://127.0.0.1:{port}/health", timeout=5)
        if resp.ok and resp.json().get("status") == "ok":
            sys.exit(0)
    except (requests.RequestException, ValueError) as exc:
        print(exc, file=sys.stderr)

    sys.exit(1)


if __name__ == "__main__":
    main()
