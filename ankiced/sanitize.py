"""HTML cleaning templates and plain-text extraction for note fields."""

from __future__ import annotations

from typing import Any

import html5lib

from .domain import DEFAULT_ACTION_TEMPLATE_ID, ActionTemplate

ALLOWED_TAGS = frozenset({"b", "i", "u", "strong", "span", "div", "br", "img"})
ALLOWED_IMAGE_ATTRS = frozenset({"src", "alt", "title", "width", "height"})
# Bare media filenames carry no scheme; anything else must be one of these.
ALLOWED_IMAGE_SCHEMES = frozenset({"http", "https", "data"})

_ESCAPES = str.maketrans(
    {
        "&": "&amp;",
        "'": "&#39;",
        "<": "&lt;",
        ">": "&gt;",
        '"': "&#34;",
        "\r": "&#13;",
    }
)


class TemplateNotFoundError(LookupError):
    """Raised when no action template has the requested id."""


class HTMLCleanerTemplate:
    """Keeps a small set of formatting tags and drops everything else."""

    @property
    def id(self) -> str:
        return DEFAULT_ACTION_TEMPLATE_ID

    @property
    def name(self) -> str:
        return "HTML Cleaner"

    def apply(self, value: str) -> str:
        return keep_basic_tags(value)


class TemplateRegistry:
    """Looks up action templates by id."""

    def __init__(self) -> None:
        cleaner = HTMLCleanerTemplate()
        self._templates: dict[str, ActionTemplate] = {cleaner.id: cleaner}
        self._default_id = cleaner.id

    def get(self, template_id: str) -> ActionTemplate:
        try:
            return self._templates[template_id.strip()]
        except KeyError:
            raise TemplateNotFoundError(f"action template not found: {template_id}") from None

    def default(self) -> ActionTemplate:
        return self.get(self._default_id)


def _parse(value: str) -> Any:
    return html5lib.parse(value, treebuilder="etree", namespaceHTMLElements=False)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _escape(text: str) -> str:
    return text.translate(_ESCAPES)


def keep_basic_tags(value: str) -> str:
    """Return ``value`` with only the allowed tags kept, text re-escaped."""
    out: list[str] = []
    _write_node(out, _parse(value))
    return "".join(out)


def _write_children(out: list[str], node: Any) -> None:
    if node.text:
        out.append(_escape(node.text))
    for child in node:
        # Comments have a non-string tag; their text is dropped, their tail kept.
        if isinstance(child.tag, str):
            _write_node(out, child)
        if child.tail:
            out.append(_escape(child.tail))


def _write_node(out: list[str], node: Any) -> None:
    tag = _local_name(node.tag)
    if tag not in ALLOWED_TAGS:
        _write_children(out, node)
        return
    if tag == "br":
        out.append("<br>")
        return
    if tag == "img":
        _write_image(out, node)
        return
    out.append(f"<{tag}>")
    _write_children(out, node)
    out.append(f"</{tag}>")


def _write_image(out: list[str], node: Any) -> None:
    out.append("<img")
    for raw_key, raw_value in node.attrib.items():
        key = _local_name(str(raw_key)).strip().lower()
        trimmed = raw_value.strip()
        if key not in ALLOWED_IMAGE_ATTRS or not trimmed:
            continue
        if key == "src" and not is_safe_image_src(trimmed):
            continue
        out.append(f' {key}="{_escape(raw_value)}"')
    out.append(">")


def is_safe_image_src(value: str) -> bool:
    """True for a scheme-less path or a URL whose scheme is allowed."""
    idx = value.find(":")
    if idx <= 0:
        return True
    head = value[:idx]
    if any(ch in head for ch in "/?#"):
        return True
    return head.lower() in ALLOWED_IMAGE_SCHEMES


def strip_all_tags(value: str) -> str:
    """Return the plain-text content of an HTML fragment."""
    if not value:
        return ""
    out: list[str] = []
    _write_plain_text(out, _parse(value))
    return "".join(out)


def _write_plain_text(out: list[str], node: Any) -> None:
    if node.text:
        out.append(node.text)
    for child in node:
        if isinstance(child.tag, str):
            _write_plain_text(out, child)
        if child.tail:
            out.append(child.tail)