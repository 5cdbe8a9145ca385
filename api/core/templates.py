"""Jinja2 template engine shared by the markup renderer and routes.

Provides a module-level ``templates`` instance so modules can import it
directly instead of reaching through ``request.app.state``.  This
matches the pattern shown in the official FastAPI template docs.

Certificate documents must be byte-stable for identical input, so the
environment keeps trailing newlines out and never injects request globals.
"""

from pathlib import Path

from fastapi.templating import Jinja2Templates
from jinja2 import StrictUndefined

_templates_dir = Path(__file__).resolve().parent.parent / "templates"

templates = Jinja2Templates(directory=str(_templates_dir))
templates.env.undefined = StrictUndefined
templates.env.trim_blocks = True
templates.env.lstrip_blocks = True
