"""
Broadcast page rendering.

Turns a BroadcastContent into the URL the session should display: plain URL
broadcasts pass through, while messages and media are rendered into a
self-contained page delivered as a data: URI.
"""

from html import escape
from typing import Optional
from urllib.parse import quote

from .models import BroadcastContent
from .rules import resolve_source

DEFAULT_LOGO_POSITION = "top-left"

LOGO_POSITIONS = {
    "top-left": "top: 20px; left: 20px;",
    "top-center": "top: 20px; left: 50%; transform: translateX(-50%);",
    "top-right": "top: 20px; right: 20px;",
    "middle-left": "top: 50%; left: 20px; transform: translateY(-50%);",
    "middle-center": "top: 50%; left: 50%; transform: translate(-50%, -50%);",
    "middle-right": "top: 50%; right: 20px; transform: translateY(-50%);",
    "bottom-left": "bottom: 20px; left: 20px;",
    "bottom-center": "bottom: 20px; left: 50%; transform: translateX(-50%);",
    "bottom-right": "bottom: 20px; right: 20px;",
}

DEFAULT_BACKGROUND = "background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);"

MESSAGE_PAGE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Broadcast Message</title>
    <style>
      body {{
        margin: 0;
        display: flex;
        justify-content: center;
        align-items: center;
        min-height: 100vh;
        {background}
        font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;
      }}
      .message-container {{
        background: white;
        border-radius: 20px;
        padding: 60px 80px;
        box-shadow: 0 20px 60px rgba(0, 0, 0, 0.3);
        max-width: 80%;
        text-align: center;
      }}
      .broadcast-label {{
        font-size: 18px;
        color: #667eea;
        text-transform: uppercase;
        letter-spacing: 2px;
        margin-bottom: 30px;
        font-weight: 700;
      }}
      .message-text {{
        font-size: 48px;
        font-weight: 600;
        color: #2d3748;
        line-height: 1.4;
        white-space: pre-wrap;
        word-wrap: break-word;
      }}
    </style>
  </head>
  <body>
    {logo}
    <div class="message-container">
      <div class="broadcast-label">Broadcast Message</div>
      <div class="message-text">{message}</div>
    </div>
  </body>
</html>"""

MEDIA_PAGE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="UTF-8">
    <title>Broadcast {title}</title>
    <style>
      body {{
        margin: 0;
        display: flex;
        justify-content: center;
        align-items: center;
        min-height: 100vh;
        background: #000;
        overflow: hidden;
      }}
      img, video {{
        max-width: 100%;
        max-height: 100vh;
        object-fit: contain;
      }}
    </style>
  </head>
  <body>
    {element}
  </body>
</html>"""


def as_data_uri(html: str) -> str:
    return "data:text/html;charset=utf-8," + quote(html, safe="")


def logo_position_style(position: Optional[str]) -> str:
    return LOGO_POSITIONS.get(position or DEFAULT_LOGO_POSITION, LOGO_POSITIONS[DEFAULT_LOGO_POSITION])


def render_message_page(
    message: str,
    background: Optional[str] = None,
    logo: Optional[str] = None,
    logo_position: Optional[str] = None,
) -> str:
    """HTML for a full-screen text broadcast. The message is HTML-escaped."""
    if background:
        background_style = (
            f"background-image: url('{escape(background)}'); background-size: cover; "
            "background-position: center; background-repeat: no-repeat;"
        )
    else:
        background_style = DEFAULT_BACKGROUND

    logo_html = ""
    if logo:
        logo_html = (
            f'<img src="{escape(logo)}" alt="Logo" style="position: fixed; '
            f"{logo_position_style(logo_position)} max-width: 200px; max-height: 200px; "
            'object-fit: contain; z-index: 1000;" />'
        )

    return MESSAGE_PAGE.format(
        background=background_style, logo=logo_html, message=escape(message)
    )


def render_media_page(kind: str, media_url: str) -> str:
    """HTML showing one image or looping muted video, letterboxed on black."""
    src = escape(media_url)
    if kind == "image":
        element = f'<img src="{src}" alt="Broadcast image" />'
    else:
        element = (
            f'<video autoplay loop muted playsinline><source src="{src}" /></video>'
        )
    return MEDIA_PAGE.format(title=kind.capitalize(), element=element)


def build_broadcast_target(content: BroadcastContent, server_url: str) -> Optional[str]:
    """URL the session should navigate to for a broadcast.

    Returns None when the content lacks the field its kind requires.
    """
    if content.kind == "url":
        return content.url or None
    if content.kind in ("image", "video"):
        if not content.media_data:
            return None
        media_url = resolve_source(content.media_data, server_url)
        return as_data_uri(render_media_page(content.kind, media_url))
    if content.kind == "message":
        if not content.message:
            return None
        return as_data_uri(
            render_message_page(
                content.message,
                content.background,
                content.logo,
                content.logo_position,
            )
        )
    return None
