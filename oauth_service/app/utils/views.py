"""HTML pages for the browser-facing authorize and consent steps.

Every interpolated value goes through ``html.escape``.
"""

import html
from typing import Iterable, Mapping, Optional

BRAND = "SpecterCRM"

SCOPE_DESCRIPTIONS = {
    "crm:read": "Read your CRM data (organizations, contacts, deals, activities, notes)",
    "crm:write": "Create and update CRM records on your behalf",
}

_STYLE = """
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
            background: #f4f5f7; color: #1f2933;
            display: flex; justify-content: center; align-items: center;
            min-height: 100vh; margin: 0; }
        .card { background: #fff; border: 1px solid #e4e7eb; border-radius: 10px;
            padding: 2rem; max-width: 420px; width: 90%;
            box-shadow: 0 4px 16px rgba(0, 0, 0, 0.08); }
        h1 { font-size: 1.3rem; margin: 0 0 1rem 0; }
        .client { font-weight: 600; }
        .error { background: #fde8e8; color: #9b1c1c; border-radius: 6px; padding: 0.75rem; margin-bottom: 1rem; }
        label { display: block; font-size: 0.9rem; margin: 0.75rem 0 0.25rem 0; }
        input[type=email], input[type=password] { width: 100%; padding: 0.6rem; box-sizing: border-box;
            border: 1px solid #cbd2d9; border-radius: 6px; }
        .buttons { display: flex; gap: 1rem; margin-top: 1.5rem; }
        button { flex: 1; padding: 0.7rem; border: none; border-radius: 6px; font-size: 1rem; cursor: pointer; }
        .primary { background: #2563eb; color: #fff; }
        .secondary { background: #e4e7eb; color: #1f2933; }
"""


def _page(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
    <title>{html.escape(BRAND)} - {html.escape(title)}</title>
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <style>{_STYLE}</style>
</head>
<body>
    <div class="card">
{body}
    </div>
</body>
</html>"""


def _hidden_fields(params: Mapping[str, Optional[str]]) -> str:
    return "\n".join(
        f'            <input type="hidden" name="{html.escape(name)}" value="{html.escape(value)}">'
        for name, value in params.items()
        if value is not None
    )


def render_login_page(client_name: str, params: Mapping[str, Optional[str]],
                      error: Optional[str] = None, email: str = "") -> str:
    error_html = f'        <div class="error">{html.escape(error)}</div>\n' if error else ""
    body = f"""        <h1>Sign in to {html.escape(BRAND)}</h1>
        <p><span class="client">{html.escape(client_name)}</span> is requesting access to your CRM account.</p>
{error_html}        <form method="POST" action="/oauth/authorize">
{_hidden_fields(params)}
            <label for="email">Email</label>
            <input type="email" id="email" name="email" value="{html.escape(email)}" required autofocus>
            <label for="password">Password</label>
            <input type="password" id="password" name="password" required>
            <div class="buttons">
                <button type="submit" class="primary">Sign in</button>
            </div>
        </form>"""
    return _page("Sign in", body)


def render_consent_page(client_name: str, display_name: str, scopes: Iterable[str],
                        auth_session_token: str, params: Mapping[str, Optional[str]]) -> str:
    scope_items = "\n".join(
        f"                <li>{html.escape(SCOPE_DESCRIPTIONS.get(s, s))}</li>" for s in scopes
    )
    fields = dict(params)
    fields["auth_session_token"] = auth_session_token
    body = f"""        <h1>Authorize access</h1>
        <p>Signed in as <strong>{html.escape(display_name)}</strong>.</p>
        <p><span class="client">{html.escape(client_name)}</span> wants to:</p>
        <ul>
{scope_items}
        </ul>
        <form method="POST" action="/oauth/authorize/consent">
{_hidden_fields(fields)}
            <div class="buttons">
                <button type="submit" name="decision" value="deny" class="secondary">Deny</button>
                <button type="submit" name="decision" value="allow" class="primary">Allow</button>
            </div>
        </form>"""
    return _page("Authorize", body)


def render_error_page(title: str, message: str) -> str:
    body = f"""        <h1>{html.escape(title)}</h1>
        <div class="error">{html.escape(message)}</div>
        <p>Return to the application and start the sign-in again.</p>"""
    return _page(title, body)
