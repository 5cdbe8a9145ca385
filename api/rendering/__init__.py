"""Rendering module for presentation concerns.

This module turns a certificate template into pixels:
- Template validation and placeholder binding
- Layout (absolute geometry, text wrapping, image fitting)
- HTML markup for preview and capture
- Headless browser capture to PDF/PNG

Certificate lifecycle and export policy stay in services/.
"""

from rendering.binding import bind_template, find_placeholders, substitute
from rendering.capture import (
    BrowserRenderDriver,
    EngineError,
    RenderDriver,
    RenderDriverError,
    RenderTimeoutError,
    StructureError,
)
from rendering.layout import ResolvedLayout, compute_layout
from rendering.markup import (
    RenderDocument,
    render_document,
    render_fallback_document,
)
from rendering.validation import (
    TemplateIssue,
    TemplateValidationError,
    validate_template,
)

__all__ = [
    "BrowserRenderDriver",
    "EngineError",
    "RenderDocument",
    "RenderDriver",
    "RenderDriverError",
    "RenderTimeoutError",
    "ResolvedLayout",
    "StructureError",
    "TemplateIssue",
    "TemplateValidationError",
    "bind_template",
    "compute_layout",
    "find_placeholders",
    "render_document",
    "render_fallback_document",
    "substitute",
    "validate_template",
]
