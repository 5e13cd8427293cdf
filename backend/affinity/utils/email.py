"""
HTML rendering for digest emails.

One template per notification category. Items arrive as plain dicts (the
serialized digest items), so the same renderers serve previews and real sends.
"""
from datetime import datetime
from html import escape
from typing import Any, Callable, Dict, List, Optional, Tuple

STYLE = """
    <style>
        body { font-family: Arial, sans-serif; color: #222; }
        .item { padding: 12px 0; border-bottom: 1px solid #ddd; }
        .match { background-color: #054745; color: white; padding: 2px 8px; border-radius: 10px; font-size: 12px; }
        .meta { color: #666; font-size: 12px; }
        a.button { color: #054745; font-weight: bold; }
    </style>
"""


def _e(value: Any) -> str:
    return escape(str(value)) if value is not None else ""


def _footer(base_url: str) -> str:
    return f"""
        <p style="margin-top: 30px; color: #666; font-size: 12px;">
            You are receiving this because email notifications are enabled in your
            <a href="{_e(base_url)}/settings">notification settings</a>.<br/>
            <em>Generated: {datetime.utcnow().strftime("%Y-%m-%d %H:%M UTC")}</em>
        </p>
    """


def _page(title: str, intro: str, rows: str, base_url: str) -> str:
    return f"""
    <html>
        <head>{STYLE}</head>
        <body>
            <h2>{_e(title)}</h2>
            <p>{intro}</p>
            {rows}
            {_footer(base_url)}
        </body>
    </html>
    """


def render_connection_updates(name: Optional[str], cadence: str, items: List[Dict[str, Any]], base_url: str) -> str:
    rows = ""
    for item in items:
        created = item.get("created_at")
        created_str = created.strftime("%Y-%m-%d") if isinstance(created, datetime) else _e(created)
        rows += f"""
            <div class="item">
                <span class="match">{_e(item.get("match_percentage"))}% match</span>
                <strong>{_e(item.get("title"))}</strong> &middot; {_e(item.get("type"))}<br/>
                <span class="meta">by {_e(item.get("author"))} on {created_str}</span>
                <p>{_e(item.get("description"))}</p>
                <a class="button" href="{_e(item.get("link"))}">View</a>
            </div>
        """
    intro = f"Hi {_e(name or 'there')}, here is what your connections shared recently ({_e(cadence)} digest)."
    return _page("Connection updates", intro, rows, base_url)


def render_connection_recommendations(name: Optional[str], cadence: str, items: List[Dict[str, Any]], base_url: str) -> str:
    rows = ""
    for item in items:
        tags = ", ".join(_e(t) for t in (item.get("categories") or []) + (item.get("subcategories") or []))
        goals = ", ".join(_e(g) for g in item.get("goals") or [])
        rows += f"""
            <div class="item">
                <span class="match">{_e(item.get("match_percentage"))}% match</span>
                <strong>{_e(item.get("name"))}</strong><br/>
                <span class="meta">{_e(item.get("location"))}</span>
                {f'<p>Works in: {tags}</p>' if tags else ''}
                {f'<p>Goals: {goals}</p>' if goals else ''}
                <a class="button" href="{_e(item.get("link"))}">View profile</a>
            </div>
        """
    intro = f"Hi {_e(name or 'there')}, we found {len(items)} people you may want to connect with."
    return _page("People you may know", intro, rows, base_url)


def render_job_opportunities(name: Optional[str], cadence: str, items: List[Dict[str, Any]], base_url: str) -> str:
    rows = ""
    for item in items:
        rows += f"""
            <div class="item">
                <span class="match">{_e(item.get("match_percentage"))}% match</span>
                <strong>{_e(item.get("title"))}</strong><br/>
                <span class="meta">{_e(item.get("company") or item.get("author"))} &middot; {_e(item.get("location") or "Remote / unspecified")}</span>
                <p>{_e(item.get("description"))}</p>
                <a class="button" href="{_e(item.get("link"))}">View job</a>
            </div>
        """
    intro = f"Hi {_e(name or 'there')}, these new jobs match your profile."
    return _page("Job opportunities", intro, rows, base_url)


# template name -> (subject builder, body renderer)
TEMPLATES: Dict[str, Tuple[Callable[[str], str], Callable[..., str]]] = {
    "connection-update": (lambda cadence: f"Your {cadence} connection updates", render_connection_updates),
    "connection-recommendation": (lambda cadence: "People you may want to connect with", render_connection_recommendations),
    "job-opportunity": (lambda cadence: "Job opportunities for you", render_job_opportunities),
}


def render_email(template_name: str, name: Optional[str], cadence: str, items: List[Dict[str, Any]], base_url: str) -> Tuple[str, str]:
    """Return (subject, html) for a digest email. Raises KeyError for unknown templates."""
    subject_for, render = TEMPLATES[template_name]
    return subject_for(cadence), render(name, cadence, items, base_url)
