"""Screen content scraping (best effort).

The host exposes the current window as an opaque tree of ScreenNode.
Traversal is a bounded depth-first walk; nothing here knows about the
host UI toolkit.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from typing import Any

MAX_DEPTH = 30
MAX_NODES = 2000

# Address-bar view ids, tried in order before any text heuristic
BROWSER_URL_BAR_IDS: tuple[str, ...] = (
    "com.android.chrome:id/url_bar",
    "org.mozilla.firefox:id/mozac_browser_toolbar_url_view",
    "org.mozilla.fenix:id/mozac_browser_toolbar_url_view",
    "com.sec.android.app.sbrowser:id/location_bar_edit_text",
    "com.microsoft.emmx:id/url_bar",
    "com.opera.browser:id/url_field",
    "com.opera.mini.native:id/url_view",
)

BROWSER_PACKAGES: frozenset[str] = frozenset({
    "com.android.chrome",
    "org.mozilla.firefox",
    "org.mozilla.fennec_fdroid",
    "org.mozilla.fenix",
    "com.sec.android.app.sbrowser",
    "com.microsoft.emmx",
    "com.opera.browser",
    "com.opera.mini.native",
})

_URL_IN_TEXT = re.compile(r"https?://[^\s\"'<>]+", re.IGNORECASE)
_URL_HOST = re.compile(r"https?://([^/?#]+)", re.IGNORECASE)


class ScreenNode(ABC):
    """Opaque node of the host's window content tree."""

    @abstractmethod
    def text(self) -> str | None:
        ...

    @abstractmethod
    def description(self) -> str | None:
        ...

    @abstractmethod
    def children(self) -> Iterable[ScreenNode]:
        ...

    def view_id(self) -> str | None:
        return None


class DictScreenNode(ScreenNode):
    """ScreenNode backed by a JSON-like dict.

    {"text": ..., "description": ..., "view_id": ..., "children": [...]}
    """

    def __init__(self, data: dict[str, Any]) -> None:
        self._data = data

    def text(self) -> str | None:
        return self._data.get("text")

    def description(self) -> str | None:
        return self._data.get("description")

    def view_id(self) -> str | None:
        return self._data.get("view_id")

    def children(self) -> Iterable[ScreenNode]:
        return [DictScreenNode(c) for c in self._data.get("children") or [] if isinstance(c, dict)]


def iter_nodes(
    root: ScreenNode,
    max_depth: int = MAX_DEPTH,
    max_nodes: int = MAX_NODES,
) -> Iterator[ScreenNode]:
    """Depth-first, pre-order, bounded in depth and node count."""
    stack: list[tuple[ScreenNode, int]] = [(root, 0)]
    visited = 0
    while stack and visited < max_nodes:
        node, depth = stack.pop()
        visited += 1
        yield node
        if depth >= max_depth:
            continue
        children = list(node.children())
        stack.extend((child, depth + 1) for child in reversed(children))


def gather_text(root: ScreenNode) -> str:
    """Concatenate every text and description in the tree."""
    parts: list[str] = []
    for node in iter_nodes(root):
        for value in (node.text(), node.description()):
            if value:
                parts.append(value)
    return " ".join(parts)


def find_url_by_view_id(root: ScreenNode, view_ids: Iterable[str] = BROWSER_URL_BAR_IDS) -> str | None:
    """Text of the first node whose view id is a known address bar."""
    wanted = set(view_ids)
    for node in iter_nodes(root):
        if node.view_id() in wanted:
            value = (node.text() or "").strip()
            if value:
                return value
    return None


def find_url_node_text(root: ScreenNode) -> str | None:
    """Text of the first node starting with http:// or https://."""
    for node in iter_nodes(root):
        value = (node.text() or "").strip()
        if value.lower().startswith(("http://", "https://")):
            return value
    return None


def extract_url_from_text(text: str) -> str | None:
    match = _URL_IN_TEXT.search(text or "")
    return match.group(0) if match else None


def extract_url(root: ScreenNode) -> str | None:
    """Best-effort address shown by a browser window.

    Address-bar view ids first, then any node starting with http(s)://,
    then a free-text scan of the whole window.
    """
    url = find_url_by_view_id(root) or find_url_node_text(root)
    if url:
        return url
    return extract_url_from_text(gather_text(root))


def extract_domain(url: str | None) -> str | None:
    """Host part of a URL, lower-cased, without port.

    Address bars often omit the scheme; a bare host is accepted.
    """
    if not url:
        return None
    url = url.strip()
    if "://" not in url:
        url = "http://" + url
    match = _URL_HOST.match(url)
    if not match:
        return None
    host = match.group(1).rsplit("@", 1)[-1].split(":", 1)[0].lower().rstrip(".")
    if not host or any(c.isspace() for c in host):
        return None
    return host


class ScreenSnapshot:
    """Latest window content pushed by the host, used as screen provider."""

    def __init__(self) -> None:
        self._root: ScreenNode | None = None

    def update(self, data: dict[str, Any] | None) -> None:
        self._root = DictScreenNode(data) if data else None

    def clear(self) -> None:
        self._root = None

    def __call__(self) -> ScreenNode | None:
        return self._root
