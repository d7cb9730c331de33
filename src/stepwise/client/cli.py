"""CLI client for the stepwise API."""

from __future__ import annotations

import logging
import time
from typing import (
    Any,
    Dict,
    Tuple,
    cast,
)

import httpx

from stepwise.common import (
    AnsiColors,
    colored_print,
)
from stepwise.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def call_api(endpoint: str, data: Dict[str, Any], max_retries: int = 5) -> Dict[str, Any]:
    """
    Make a POST request to the API and return the decoded response, retrying while the server
    is still starting up.

    Transport failures are returned as ``{"status": "failed", "error_kind": ..., "error": ...}``
    so callers render them the same way as failed agent runs.
    """
    api_url = f"http://localhost:{settings.API_PORT}{endpoint}"

    for attempt in range(max_retries):
        try:
            with httpx.Client(timeout=120.0) as client:
                response = client.post(api_url, json=data)
                response.raise_for_status()
                return cast(Dict[str, Any], response.json())
        except httpx.ConnectError as exc:
            if attempt == max_retries - 1:
                logger.error("API request error: %s", exc)
                return _transport_failure(exc)
            retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
            logger.info(
                "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                retry_delay,
                attempt + 1,
                max_retries,
            )
            time.sleep(retry_delay)
        except httpx.HTTPStatusError as exc:
            logger.error("API returned %d: %s", exc.response.status_code, exc.response.text)
            return _transport_failure(exc)
        except httpx.HTTPError as exc:
            logger.error("API request error: %s", exc)
            return _transport_failure(exc)

    return {
        "status": "failed",
        "error_kind": "ConnectError",
        "error": f"Failed to connect to API after {max_retries} attempts",
    }


def _transport_failure(exc: httpx.HTTPError) -> Dict[str, Any]:
    return {"status": "failed", "error_kind": type(exc).__name__, "error": str(exc)}


def render_response(response: Dict[str, Any]) -> None:
    """Print an answer in yellow, a failure in red (never as a plain answer)."""
    if response.get("status") == "done":
        colored_print(response.get("reply") or "", AnsiColors.YELLOW)
        return
    colored_print(
        f"[{response.get('error_kind') or 'Error'}] {response.get('error') or 'No response'}",
        AnsiColors.RED,
    )
    if response.get("reply"):
        colored_print(f"Last result: {response['reply']}", AnsiColors.GREY)


def run_cli() -> None:
    """Run the CLI client that communicates with the API."""
    # Create a new session
    session_response = call_api("/sessions", {})
    session_id = session_response.get("session_id")

    if not session_id:
        colored_print("Failed to create a session", AnsiColors.RED)
        return

    colored_print("\nstepwise shell - type 'exit' or 'quit' (or Ctrl+C) to exit", AnsiColors.GREEN)
    while True:
        colored_print("\nYou: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if user_msg.lower() in {"exit", "quit"}:
            break
        if not user_msg:
            continue

        render_response(call_api("/agent", {"message": user_msg, "session_id": session_id}))


if __name__ == "__main__":
    run_cli()
