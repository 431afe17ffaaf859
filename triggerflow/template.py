"""Prompt template rendering.

Renders ``{{path}}`` and ``{{verbatim path}}`` expressions against an event
context (``{"name": ..., "payload": ...}``).

Template syntax:
    {{name}}                      The event name
    {{payload.<key>.<key>}}       A value inside the payload
    {{payload.items.0.id}}        Numeric segments index into lists
    {{verbatim payload.items}}    The sub-tree as compact JSON

Scalars render as text (``true``/``false`` for booleans, empty for null);
mappings and lists render as compact JSON.  Output is never HTML-escaped.
"""

from __future__ import annotations

import json
import re
from typing import Any

from triggerflow.exceptions import TemplateRenderError, TemplateSyntaxError

TEMPLATE_OPEN = "{{"
TEMPLATE_CLOSE = "}}"
HELPER_VERBATIM = "verbatim"

_EXPRESSION_RE = re.compile(re.escape(TEMPLATE_OPEN) + r"(.*?)" + re.escape(TEMPLATE_CLOSE), re.DOTALL)
_PATH_RE = re.compile(r"^[A-Za-z_][\w-]*(?:\.[\w-]+)*$")

_MISSING = object()


def to_compact_json(value: Any) -> str:
    """Serialise *value* the way ``{{verbatim ...}}`` inlines it."""
    return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


def _format_scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return to_compact_json(value)
    return str(value)


class TemplateRenderer:
    """Renders prompt templates against event contexts.

    Usage::

        renderer = TemplateRenderer()
        renderer.render("{{name}}:{{payload.id}}", {"name": "NewEmail", "payload": {"id": "abc123"}})
        # "NewEmail:abc123"

    Args:
        strict: When True (default) an unresolved path raises
                ``TemplateRenderError``.  When False it renders as "".
    """

    def __init__(self, strict: bool = True) -> None:
        self.strict = strict

    def validate(self, template: str) -> None:
        """Raise ``TemplateSyntaxError`` if *template* is malformed."""
        self._parse(template)

    def render(self, template: str, context: dict[str, Any]) -> str:
        """Return *template* with every expression substituted.

        Raises:
            TemplateSyntaxError: The template is malformed.
            TemplateRenderError: A path is missing and the renderer is strict.
        """
        parts: list[str] = []
        cursor = 0
        for start, end, helper, path in self._parse(template):
            parts.append(template[cursor:start])
            parts.append(self._render_expression(helper, path, context))
            cursor = end
        parts.append(template[cursor:])
        return "".join(parts)

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _parse(self, template: str) -> list[tuple[int, int, str | None, str]]:
        expressions: list[tuple[int, int, str | None, str]] = []
        cursor = 0
        for match in _EXPRESSION_RE.finditer(template):
            self._check_literal(template, template[cursor:match.start()])
            tokens = match.group(1).split()
            if len(tokens) == 1:
                helper, path = None, tokens[0]
            elif len(tokens) == 2:
                helper, path = tokens
                if helper != HELPER_VERBATIM:
                    raise TemplateSyntaxError(template, f"unknown helper '{helper}'")
            elif not tokens:
                raise TemplateSyntaxError(template, "empty expression")
            else:
                raise TemplateSyntaxError(template, f"too many tokens in '{match.group(0)}'")
            if not _PATH_RE.match(path):
                raise TemplateSyntaxError(template, f"invalid path '{path}'")
            expressions.append((match.start(), match.end(), helper, path))
            cursor = match.end()
        self._check_literal(template, template[cursor:])
        return expressions

    @staticmethod
    def _check_literal(template: str, literal: str) -> None:
        if TEMPLATE_OPEN in literal:
            raise TemplateSyntaxError(template, "unclosed '{{'")
        if TEMPLATE_CLOSE in literal:
            raise TemplateSyntaxError(template, "unmatched '}}'")

    def _render_expression(self, helper: str | None, path: str, context: dict[str, Any]) -> str:
        expression = path if helper is None else f"{helper} {path}"
        value = self._lookup(path, context)
        if value is _MISSING:
            if self.strict:
                raise TemplateRenderError(expression, f"path '{path}' not found in context")
            return ""
        if helper == HELPER_VERBATIM:
            return to_compact_json(value)
        return _format_scalar(value)

    @staticmethod
    def _lookup(path: str, context: dict[str, Any]) -> Any:
        current: Any = context
        for segment in path.split("."):
            if isinstance(current, dict):
                if segment not in current:
                    return _MISSING
                current = current[segment]
            elif isinstance(current, list) and segment.isdigit():
                index = int(segment)
                if index >= len(current):
                    return _MISSING
                current = current[index]
            else:
                return _MISSING
        return current


def render_template(template: str, context: dict[str, Any], strict: bool = True) -> str:
    """Convenience wrapper around ``TemplateRenderer(strict).render()``."""
    return TemplateRenderer(strict=strict).render(template, context)
