"""Jinja2 template and static asset locations."""

from __future__ import annotations

from pathlib import Path

from fastapi.templating import Jinja2Templates

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
STYLESHEET_PATH = TEMPLATES_DIR / "static" / "style.css"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
