"""
Link resolution for workflow steps.

A step link is either a URL, an absolute path, or a short app name
("slack", "notion://") that maps to the app's URL scheme.
"""

from __future__ import annotations

import logging
import webbrowser
from typing import Callable, Optional

logger = logging.getLogger(__name__)

APP_SHORTCUTS = {
    "calendar": "x-fantastical3://",
    "notion-calendar": "notion-calendar://",
    "slack": "slack://",
    "notion": "notion://",
    "things": "things3://",
    "obsidian": "obsidian://",
    "discord": "discord://",
    "zoom": "zoommtg://",
    "mail": "mailto:",
    "messages": "imessage://",
    "facetime": "facetime://",
    "music": "music://",
    "spotify": "spotify://",
    "vscode": "vscode://",
    "xcode": "xcode://",
    "terminal": "x-terminal://",
    "finder": "x-finder://",
    "safari": "x-safari://",
    "chrome": "googlechrome://",
    "firefox": "firefox://",
    "arc": "arc://",
    "linear": "linear://",
    "github": "x-github-client://",
    "figma": "figma://",
    "twitter": "twitter://",
    "x": "twitter://",
    "whatsapp": "whatsapp://",
}


def supported_app_shortcuts() -> list[str]:
    return list(APP_SHORTCUTS)


def resolve_link(link: str) -> Optional[str]:
    """
    Turn a step link into something an opener can handle.

    Returns None when the link is neither a URL, a path, a known app
    shortcut nor a bare domain.
    """
    link = link.strip()
    if not link:
        return None

    shortcut = link.lower()
    if shortcut.endswith("://"):
        shortcut = shortcut[:-3]
    if shortcut in APP_SHORTCUTS:
        return APP_SHORTCUTS[shortcut]

    if "://" in link or link.startswith("/") or link.startswith("mailto:"):
        return link

    # Looks like a domain
    if "." in link and " " not in link:
        return f"https://{link}"

    return None


def open_link(link: str, opener: Callable[[str], bool] = webbrowser.open) -> bool:
    """Resolve and open a link. Returns False if it could not be resolved or opened."""
    target = resolve_link(link)
    if target is None:
        logger.warning(f"Failed to process link: {link}")
        return False

    logger.info(f"Opening link: {target}")
    return bool(opener(target))
