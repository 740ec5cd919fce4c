"""Minimal HTML pages for the browser-facing OAuth endpoints."""

from __future__ import annotations

from html import escape

from fastapi.responses import HTMLResponse

_PAGE = """<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"><title>{title}</title></head>
  <body style="font-family: Arial, sans-serif; padding: 40px; max-width: 800px; margin: 0 auto;">
    <h1>{heading}</h1>
{body}
  </body>
</html>
"""


def render_page(title: str, heading: str, lines: list[str], status_code: int = 200) -> HTMLResponse:
    """Every piece of text is escaped; callers pass plain strings."""
    body = "\n".join(f"    <p>{escape(line)}</p>" for line in lines)
    html = _PAGE.format(title=escape(title), heading=escape(heading), body=body)
    return HTMLResponse(content=html, status_code=status_code)


def success_page(provider_label: str, details: list[str] | None = None) -> HTMLResponse:
    lines = [f"Your {provider_label} account is connected. You can close this window."]
    lines.extend(details or [])
    return render_page("Authentication Successful", "Authentication Successful", lines)


def error_page(
    heading: str,
    error: str,
    description: str | None = None,
    status_code: int = 400,
) -> HTMLResponse:
    lines = [f"Error: {error}"]
    if description:
        lines.append(f"Description: {description}")
    lines.append("Check the server logs for more details.")
    return render_page("OAuth Error", heading, lines, status_code=status_code)
