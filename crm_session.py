"""
Login marker, page routing and the timed feedback banner.

The browser keeps a plain ``canfs_auth=true`` cookie for a day.  Streamlit
only exposes request cookies read at connect time, so the run that performs
the login also sets ``st.session_state["canfs_auth"]``.
"""

import time
from typing import NamedTuple, Optional

AUTH_COOKIE     = "canfs_auth"
AUTH_MAX_AGE    = 86400
TOAST_SECONDS   = 5
LOGIN_REQUIRED  = "Please enter email and password"

PAGE_LOGIN     = "Login"
PAGE_DASHBOARD = "Dashboard"
PAGE_FNA       = "Financial Need Analysis"
PAGE_PROSPECTS = "Prospect List"

# Login "Go to" choices → page
DESTINATIONS = {
    "dashboard": PAGE_DASHBOARD,
    "fna":       PAGE_FNA,
    "prospect":  PAGE_PROSPECTS,
}
PROTECTED_PAGES = [PAGE_DASHBOARD, PAGE_FNA, PAGE_PROSPECTS]


# ─────────────────────────────────────────────────────────────────────────────
# Auth marker
# ─────────────────────────────────────────────────────────────────────────────

def has_auth_cookie(cookies) -> bool:
    value = (cookies or {}).get(AUTH_COOKIE)
    return bool(value) and str(value).startswith("true")


def is_authenticated(cookies, state) -> bool:
    """Session marker wins; request cookies stay stale until the browser reconnects."""
    marker = state.get(AUTH_COOKIE)
    if marker is not None:
        return marker is True
    return has_auth_cookie(cookies)


def _cookie_attrs(secure: bool) -> str:
    return "; secure" if secure else ""


def auth_cookie_script(secure: bool = False) -> str:
    return (
        f"parent.document.cookie = '{AUTH_COOKIE}=true; path=/; "
        f"max-age={AUTH_MAX_AGE}; samesite=lax{_cookie_attrs(secure)}';"
    )


def clear_cookie_script(secure: bool = False) -> str:
    return (
        f"parent.document.cookie = '{AUTH_COOKIE}=; path=/; "
        f"max-age=0; samesite=lax{_cookie_attrs(secure)}';"
    )


def validate_login(email: str, password: str) -> Optional[str]:
    """Error text when the form is incomplete.  Credentials are not checked."""
    if not (email or "").strip() or not (password or "").strip():
        return LOGIN_REQUIRED
    return None


def destination_page(value) -> str:
    return DESTINATIONS.get((value or "").strip().lower(), PAGE_DASHBOARD)


def login(state, destination) -> str:
    state[AUTH_COOKIE] = True
    page = destination_page(destination)
    state["page"] = page
    return page


def logout(state) -> None:
    state[AUTH_COOKIE] = False
    state["page"] = PAGE_LOGIN


# ─────────────────────────────────────────────────────────────────────────────
# Timed banner
# ─────────────────────────────────────────────────────────────────────────────

class Toast(NamedTuple):
    kind:    str          # "error" | "success"
    message: str
    created: float


def push_toast(state, kind: str, message: str, now: float = None) -> Toast:
    toast = Toast(kind, message, time.time() if now is None else now)
    state["toast"] = toast
    return toast


def active_toast(state, now: float = None) -> Optional[Toast]:
    toast = state.get("toast")
    if toast is None:
        return None
    now = time.time() if now is None else now
    if now - toast.created >= TOAST_SECONDS:
        state["toast"] = None
        return None
    return toast


def error_text(verb: str, message: str) -> str:
    return f"Error {verb}: {message}"
