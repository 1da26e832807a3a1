import crm_session as sess


def test_has_auth_cookie():
    assert sess.has_auth_cookie({"canfs_auth": "true"})
    assert sess.has_auth_cookie({"canfs_auth": "true; extra"})
    assert not sess.has_auth_cookie({"canfs_auth": "false"})
    assert not sess.has_auth_cookie({"other": "true"})
    assert not sess.has_auth_cookie(None)


def test_is_authenticated_prefers_session_marker():
    assert sess.is_authenticated({"canfs_auth": "true"}, {})
    assert sess.is_authenticated({}, {"canfs_auth": True})
    assert not sess.is_authenticated({}, {})
    # logged out in this session while the connect-time cookie is still visible
    assert not sess.is_authenticated({"canfs_auth": "true"}, {"canfs_auth": False})


def test_cookie_scripts():
    set_js = sess.auth_cookie_script()
    assert "canfs_auth=true" in set_js
    assert "max-age=86400" in set_js
    assert "path=/" in set_js
    assert "samesite=lax" in set_js
    assert "secure" not in set_js
    assert sess.auth_cookie_script(secure=True).endswith("; secure';")

    clear_js = sess.clear_cookie_script(True)
    assert "canfs_auth=;" in clear_js
    assert "max-age=0" in clear_js
    assert "secure" in clear_js


def test_validate_login():
    assert sess.validate_login("", "pw") == "Please enter email and password"
    assert sess.validate_login("a@b.c", "  ") == "Please enter email and password"
    assert sess.validate_login("a@b.c", "pw") is None


def test_destination_page():
    assert sess.destination_page("fna") == sess.PAGE_FNA
    assert sess.destination_page("Prospect") == sess.PAGE_PROSPECTS
    assert sess.destination_page("dashboard") == sess.PAGE_DASHBOARD
    assert sess.destination_page("elsewhere") == sess.PAGE_DASHBOARD
    assert sess.destination_page(None) == sess.PAGE_DASHBOARD


def test_login_and_logout():
    state = {}
    assert sess.login(state, "prospect") == sess.PAGE_PROSPECTS
    assert state == {"canfs_auth": True, "page": sess.PAGE_PROSPECTS}
    sess.logout(state)
    assert state["canfs_auth"] is False
    assert state["page"] == sess.PAGE_LOGIN


def test_toast_expires_after_five_seconds():
    state = {}
    sess.push_toast(state, "success", "Saved", now=100.0)
    assert sess.active_toast(state, now=104.9).message == "Saved"
    assert sess.active_toast(state, now=105.0) is None
    assert state["toast"] is None


def test_new_toast_replaces_previous():
    state = {}
    sess.push_toast(state, "success", "Saved", now=100.0)
    sess.push_toast(state, "error", sess.error_text("saving", "boom"), now=101.0)
    toast = sess.active_toast(state, now=102.0)
    assert toast.kind == "error"
    assert toast.message == "Error saving: boom"
    assert sess.active_toast({}, now=0) is None
