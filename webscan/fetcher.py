from __future__ import annotations

import logging
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from webscan.errors import FetchError
from webscan.models import FetchedResponse, FormField, HtmlForm, TargetView

LOGGER = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 15.0
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; WebScan/1.0)"
FIELD_TAGS = ["input", "textarea", "select"]


def response_from_httpx(response: httpx.Response) -> FetchedResponse:
    return FetchedResponse(
        status_code=response.status_code,
        headers={key: value for key, value in response.headers.items()},
        body=response.text,
        url=str(response.url),
        set_cookies=response.headers.get_list("set-cookie"),
    )


def _field_from_tag(tag) -> FormField:
    field_type = (tag.get("type") or ("text" if tag.name == "input" else tag.name)).lower()
    return FormField(
        name=tag.get("name"),
        tag=tag.name,
        type=field_type,
        value=tag.get("value"),
        autocomplete=tag.get("autocomplete"),
    )


def parse_markup(body: str, base_url: str = "") -> tuple[list[HtmlForm], list[FormField]]:
    """Best-effort structural parse of a page.

    Returns the forms (method, absolute action, fields) and every input,
    textarea and select element on the page. Malformed markup yields
    whatever the parser could recover; this never raises.
    """
    try:
        soup = BeautifulSoup(body or "", "html.parser")
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning("Markup parsing failed for %s: %s", base_url or "<body>", exc)
        return [], []

    forms: list[HtmlForm] = []
    for form in soup.find_all("form"):
        action = (form.get("action") or "").strip()
        forms.append(
            HtmlForm(
                action=urljoin(base_url, action) if action else base_url,
                method=(form.get("method") or "GET").strip().upper() or "GET",
                fields=[_field_from_tag(tag) for tag in form.find_all(FIELD_TAGS)],
            )
        )
    inputs = [_field_from_tag(tag) for tag in soup.find_all(FIELD_TAGS)]
    return forms, inputs


def build_target_view(url: str, response: FetchedResponse) -> TargetView:
    forms, inputs = parse_markup(response.body, url)
    return TargetView(url=url, response=response, forms=forms, inputs=inputs)


class TargetFetcher:
    """Performs the one shared GET of the scan target.

    Every HTTP status is returned as a response; only network-level
    failures (DNS, connect, timeout, malformed URL) raise ``FetchError``.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self._client = client or httpx.Client(follow_redirects=True, verify=False)

    def fetch(self, url: str) -> FetchedResponse:
        LOGGER.info("Fetching target %s", url)
        try:
            response = self._client.get(url, timeout=self.timeout, headers={"User-Agent": self.user_agent})
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            raise FetchError(f"Failed to fetch target URL: {str(exc) or type(exc).__name__}") from exc
        return response_from_httpx(response)

    def fetch_view(self, url: str) -> TargetView:
        return build_target_view(url, self.fetch(url))

    def close(self) -> None:
        self._client.close()
