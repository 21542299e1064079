from __future__ import annotations

import html

from starlette.responses import HTMLResponse

_STYLE = """
    body {
        font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
        display: flex;
        justify-content: center;
        align-items: center;
        height: 100vh;
        margin: 0;
        background: #0a0a0a;
        color: #fff;
    }
    .container { text-align: center; padding: 2rem; }
    h1.ok { color: #00d4aa; }
    h1.failed { color: #ff4444; }
    p { color: #888; }
    .error { color: #ff8888; margin-top: 1rem; }
"""

SUCCESS_TITLE = "Authorization Complete"
FAILURE_TITLE = "Authorization Failed"


def _page(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>\n"
        "<html>\n<head>\n"
        '<meta charset="utf-8">\n'
        f"<title>threadgate - {title}</title>\n"
        f"<style>{_STYLE}</style>\n"
        "</head>\n<body>\n"
        f'<div class="container">\n{body}\n</div>\n'
        "</body>\n</html>\n"
    )


def success_html() -> str:
    return _page(
        SUCCESS_TITLE,
        f'<h1 class="ok">{SUCCESS_TITLE}</h1>\n'
        "<p>You can close this window and return to your terminal.</p>",
    )


def error_html(message: str) -> str:
    return _page(
        FAILURE_TITLE,
        f'<h1 class="failed">{FAILURE_TITLE}</h1>\n'
        "<p>Something went wrong during authentication.</p>\n"
        f'<p class="error">{html.escape(message)}</p>',
    )


def success_response() -> HTMLResponse:
    return HTMLResponse(success_html(), status_code=200)


def error_response(message: str) -> HTMLResponse:
    # The browser page always renders; the outcome is reported through polling.
    return HTMLResponse(error_html(message), status_code=200)
