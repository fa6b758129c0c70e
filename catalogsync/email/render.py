"""Email rendering utilities."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

from catalogsync.config import BRAND_NAME

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent
ENV = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html",)),
)


class EmailRenderError(RuntimeError):
    pass


def render_email(kind: str, context: dict[str, Any]) -> tuple[str, str]:
    try:
        template = ENV.get_template(f"{kind}.html")
    except TemplateNotFound as exc:
        raise EmailRenderError(f"No email template for {kind!r}") from exc
    subject = context.get("subject") or f"{BRAND_NAME} catalog sync"
    html = template.render(brand_name=BRAND_NAME, **{**context, "subject": subject})
    return subject, html
