from __future__ import annotations

import asyncio
import os
import sys

from auth.errors import OAuthError
from auth.flows import choose_login_flow
from auth.local_flow import DEFAULT_CALLBACK_PORT

from .env import _get_env_int, is_truthy, load_env, load_provider_endpoints, setup_logging


def run_login() -> str:
    flow = choose_login_flow(
        relay_url=os.getenv("THREADGATE_RELAY_URL", "").strip() or None,
        client_id=os.getenv("THREADGATE_CLIENT_ID", "").strip() or None,
        client_secret=os.getenv("THREADGATE_CLIENT_SECRET", "").strip() or None,
        endpoints=load_provider_endpoints(),
        callback_port=_get_env_int("THREADGATE_CALLBACK_PORT", DEFAULT_CALLBACK_PORT),
        upgrade_to_long_lived=is_truthy(os.getenv("THREADGATE_LONG_LIVED")),
    )
    token = asyncio.run(flow.login())
    return token.access_token


def main() -> None:
    load_env()
    try:
        setup_logging()
        access_token = run_login()
    except (OAuthError, RuntimeError) as error:
        print(f"Login failed: {error}", file=sys.stderr)
        sys.exit(1)
    print(access_token)


if __name__ == "__main__":
    main()
