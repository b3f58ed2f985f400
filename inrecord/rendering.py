"""
inrecord.rendering — Jinja2 Template Environment
=================================================

One environment for every text artifact the service produces: HTML and
plain-text emails under ``templates/email`` and the RSS feed under
``templates/rss``.  HTML and XML templates are autoescaped.
"""

from __future__ import annotations

from jinja2 import Environment, PackageLoader, select_autoescape

env = Environment(
    loader=PackageLoader("inrecord", "templates"),
    autoescape=select_autoescape(["html", "xml"]),
    keep_trailing_newline=True,
)


def render(template: str, **context) -> str:
    return env.get_template(template).render(**context)


def absolute_url(url: str | None, base_url: str) -> str | None:
    """Prefix site-relative paths (locally stored audio) with *base_url*."""
    if url and url.startswith("/"):
        return base_url.rstrip("/") + url
    return url
