import os
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

import bleach
from bleach.css_sanitizer import CSSSanitizer
from jinja2 import Environment, FileSystemLoader, select_autoescape, TemplateNotFound
import resend

_CSS_SANITIZER = CSSSanitizer(
    allowed_css_properties=[
        "color","background-color","font-weight","font-style","text-decoration",
        "text-align","margin","padding","border","border-radius","font-size","line-height"
    ],
    allowed_svg_properties=[],
)

# Email configuration from environment (Resend only)
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
RESEND_FROM = os.getenv("RESEND_FROM", "FormSaaS <onboarding@resend.dev>")

EMAIL_DEBUG = os.getenv("EMAIL_DEBUG", "false").lower() in ("1", "true", "yes", "on")

logger = logging.getLogger("backend.email")

def _elog(msg: str):
    if EMAIL_DEBUG:
        logger.debug(msg)

# Template search paths: project templates/email, then env override
template_search_paths = [str(Path(__file__).resolve().parents[1] / "templates" / "email")]
_env_dir = os.getenv("EMAIL_TEMPLATE_DIR")
if _env_dir:
    template_search_paths.insert(0, _env_dir)

_templates_env = Environment(
    loader=FileSystemLoader(template_search_paths),
    autoescape=select_autoescape(["html", "xml"]),
)


def sanitize_html(html: str) -> str:
    """
    Sanitize a small subset of HTML suitable for email bodies.
    Allows formatting and simple layout while removing scripts, iframes, etc.
    """
    s = str(html or "")
    if not s:
        return ""
    allowed_tags = [
        "a","p","br","strong","em","b","i","ul","ol","li","blockquote",
        "code","pre","div","span","table","thead","tbody","tr","td","th",
        "h1","h2","h3","h4","h5","h6","hr"
    ]
    allowed_attrs = {
        "*": ["style"],
        "a": ["href","title","target","rel"],
        "td": ["colspan","rowspan","align","valign","style"],
        "th": ["colspan","rowspan","align","valign","scope","style"],
    }
    cleaned = bleach.clean(
        s,
        tags=allowed_tags,
        attributes=allowed_attrs,
        protocols=["http","https","mailto"],
        strip=True,
        css_sanitizer=_CSS_SANITIZER,
    )
    # Ensure links are safe targets in emails
    return cleaned.replace(' target="_blank"', ' target="_blank" rel="noopener noreferrer"')


def render_email(template_name: str, context: dict) -> str:
    try:
        template = _templates_env.get_template(template_name)
    except TemplateNotFound:
        logger.error("Email template '%s' not found. Paths searched: %s", template_name, template_search_paths)
        raise
    base_context = {"year": datetime.utcnow().year}
    base_context.update(context or {})
    return template.render(**base_context)


def send_email_html(to_email: str, subject: str, html_body: str, from_addr: str | None = None) -> Dict[str, Any]:
    """
    Send an HTML email through the Resend API and return the provider response.

    Raises RuntimeError when Resend is not configured; provider errors
    (resend.exceptions.ResendError) propagate to the caller.
    """
    if not RESEND_API_KEY:
        logger.error("RESEND_API_KEY missing; cannot send email")
        raise RuntimeError("Email is not configured. Provide RESEND_API_KEY.")
    resend.api_key = RESEND_API_KEY

    from_addr_effective = (from_addr or "").strip() or RESEND_FROM
    params = {
        "from": from_addr_effective,
        "to": [to_email],
        "subject": subject,
        "html": html_body,
    }
    response = resend.Emails.send(params)
    _elog(f"Resend send ok from={from_addr_effective} to={to_email} response={response}")
    return dict(response or {})
