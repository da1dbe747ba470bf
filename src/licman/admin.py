"""Admin page rendering."""

from datetime import datetime, timezone

from jinja2 import Environment, PackageLoader, select_autoescape


def _get_template_env() -> Environment:
    env = Environment(
        loader=PackageLoader("licman", "templates"),
        autoescape=select_autoescape(["html", "j2"]),
        keep_trailing_newline=True,
    )
    env.filters["utc"] = format_expiry
    return env


def format_expiry(expires_ms: int) -> str:
    """Render an epoch-milliseconds timestamp as a UTC date and time."""
    try:
        dt = datetime.fromtimestamp(expires_ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        # outside the range datetime can represent
        return f"{expires_ms} ms"
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


def render_admin_page(licenses, now: int) -> str:
    """Render the admin page listing *licenses*, soonest expiry first."""
    env = _get_template_env()
    template = env.get_template("admin.html.j2")
    rows = sorted(licenses, key=lambda lic: lic.expires)
    return template.render(licenses=rows, now=now)
