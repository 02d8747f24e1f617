from __future__ import annotations

import httpx
import pytest

from webscan.errors import FetchError
from webscan.fetcher import TargetFetcher, parse_markup


def test_parse_markup_extracts_forms_and_fields():
    body = """
    <form action="/search" id="s">
      <input name="q" value="shoes">
      <select name="sort"><option>price</option></select>
      <button type="submit">Go</button>
    </form>
    <form action="https://other.test/login" method="post">
      <input name="user">
      <input name="pass" type="password" autocomplete="off">
      <textarea name="note"></textarea>
      <input type="submit" name="go">
    </form>
    <input name="orphan" type="hidden">
    """
    forms, inputs = parse_markup(body, "http://shop.test/catalog/")

    assert [form.action for form in forms] == ["http://shop.test/search", "https://other.test/login"]
    assert [form.method for form in forms] == ["GET", "POST"]
    assert forms[0].field_names() == ["q", "sort"]
    assert forms[1].field_names() == ["user", "pass", "note"]
    assert forms[1].fields[1].autocomplete == "off"
    assert forms[1].payload("x") == {"user": "x", "pass": "x", "note": "x"}
    assert "orphan" in [field.name for field in inputs]


def test_form_without_action_posts_to_page():
    forms, _ = parse_markup("<form method='post'><input name='a'></form>", "http://site.test/page")

    assert forms[0].action == "http://site.test/page"
    assert forms[0].method == "POST"


def test_parse_markup_tolerates_broken_html():
    body = "<html><body><form action='/x' method=post><input name='a'<div><<<</form></span>"

    forms, inputs = parse_markup(body, "http://site.test/")

    assert isinstance(forms, list)
    assert isinstance(inputs, list)


def test_parse_markup_empty_body():
    assert parse_markup("", "http://site.test/") == ([], [])


def test_fetch_returns_error_statuses():
    client = httpx.Client(
        transport=httpx.MockTransport(
            lambda request: httpx.Response(
                503,
                text="maintenance",
                headers=[("X-Frame-Options", "DENY"), ("Set-Cookie", "a=1"), ("Set-Cookie", "b=2; HttpOnly")],
            )
        )
    )
    fetcher = TargetFetcher(client=client)

    response = fetcher.fetch("http://site.test/")

    assert response.status_code == 503
    assert response.body == "maintenance"
    assert response.header("x-frame-options") == "DENY"
    assert response.set_cookies == ["a=1", "b=2; HttpOnly"]


def test_fetch_sends_user_agent():
    seen = {}

    def handler(request):
        seen["ua"] = request.headers["user-agent"]
        return httpx.Response(200, text="ok")

    fetcher = TargetFetcher(client=httpx.Client(transport=httpx.MockTransport(handler)), user_agent="probe/1.0")
    fetcher.fetch("http://site.test/")

    assert seen["ua"] == "probe/1.0"


def test_network_failure_raises_fetch_error():
    def handler(request):
        raise httpx.ConnectError("Name or service not known", request=request)

    fetcher = TargetFetcher(client=httpx.Client(transport=httpx.MockTransport(handler)))

    with pytest.raises(FetchError) as excinfo:
        fetcher.fetch("http://unreachable.test/")
    assert str(excinfo.value) == "Failed to fetch target URL: Name or service not known"


def test_fetch_view_parses_target():
    client = httpx.Client(
        transport=httpx.MockTransport(
            lambda request: httpx.Response(200, text="<form method='post'><input name='q'></form>")
        )
    )
    view = TargetFetcher(client=client).fetch_view("http://site.test/?id=7&q=")

    assert view.forms[0].method == "POST"
    assert view.query_params() == [("id", "7"), ("q", "")]
