"""
Tests for page fetching: Microlink, the direct HTML fallback, date extraction, page cache.
"""

from datetime import date

import httpx
import pytest

from app.core.cache_store import InMemoryCacheStore
from app.core.errors import AllProvidersFailedError
from app.services.fetch import FetchService, date_from_url, extract_published_date, html_to_text

ARTICLE_HTML = """
<html>
  <head>
    <title>Grid storage report</title>
    <meta property="article:published_time" content="2024-11-02T08:00:00Z">
  </head>
  <body>
    <nav>Home | About</nav>
    <script>var tracking = 1;</script>
    <h1>Grid storage</h1>
    <p>Battery capacity doubled in 2024.</p>
    <footer>Copyright</footer>
  </body>
</html>
"""


def _service(handler, cache=None, use_microlink: bool = False) -> FetchService:
    return FetchService(cache=cache, use_microlink=use_microlink, transport=httpx.MockTransport(handler))


class TestHtmlToText:
    def test_strips_chrome_and_reads_metadata(self) -> None:
        text, title, published = html_to_text(ARTICLE_HTML, "https://news.com/grid")
        assert "Battery capacity doubled" in text
        assert "tracking" not in text
        assert "Home | About" not in text
        assert title == "Grid storage report"
        assert published == date(2024, 11, 2)

    def test_date_from_url_path(self) -> None:
        assert date_from_url("https://news.com/2023/07/14/story") == date(2023, 7, 14)
        assert date_from_url("https://news.com/2023/07/story") == date(2023, 7, 1)
        assert date_from_url("https://news.com/story") is None

    def test_body_date_is_last_resort(self) -> None:
        assert extract_published_date("https://news.com/x", None, "Updated 2022-05-09 by staff") == date(2022, 5, 9)


class TestFetchService:
    def test_direct_fetch_parses_html(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"content-type": "text/html"}, text=ARTICLE_HTML)

        result = _service(handler).fetch("https://news.com/grid")
        assert result.ok
        assert result.title == "Grid storage report"
        assert result.source == "direct"

    def test_http_error_status_is_returned_not_raised(self) -> None:
        result = _service(lambda r: httpx.Response(404, text="missing")).fetch("https://news.com/gone")
        assert result.status == 404
        assert not result.ok

    def test_pdf_is_rejected(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"content-type": "application/pdf"}, content=b"%PDF-1.4")

        with pytest.raises(AllProvidersFailedError):
            _service(handler).fetch("https://news.com/report")

    def test_microlink_first_then_direct(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.host)
            if request.url.host.endswith("microlink.io"):
                return httpx.Response(200, json={"status": "fail"})
            return httpx.Response(200, headers={"content-type": "text/html"}, text=ARTICLE_HTML)

        result = _service(handler, use_microlink=True).fetch("https://news.com/grid")
        assert result.source == "direct"
        assert seen[0].endswith("microlink.io")

    def test_microlink_success(self) -> None:
        payload = {
            "status": "success",
            "data": {"text": "Battery capacity doubled.", "title": "Grid", "date": "2024-11-02T08:00:00.000Z"},
        }
        result = _service(lambda r: httpx.Response(200, json=payload), use_microlink=True).fetch("https://news.com/grid")
        assert result.source == "microlink"
        assert result.published_date == date(2024, 11, 2)

    def test_successful_pages_are_cached(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url)
            return httpx.Response(200, headers={"content-type": "text/html"}, text=ARTICLE_HTML)

        service = _service(handler, cache=InMemoryCacheStore())
        service.fetch("https://news.com/grid")
        cached = service.fetch("https://news.com/grid")
        assert len(calls) == 1
        assert cached.source == "cache"
        assert cached.published_date == date(2024, 11, 2)

    def test_text_is_truncated(self) -> None:
        body = "<html><body><p>" + "word " * 5000 + "</p></body></html>"
        service = FetchService(
            use_microlink=False,
            max_chars=100,
            transport=httpx.MockTransport(lambda r: httpx.Response(200, headers={"content-type": "text/html"}, text=body)),
        )
        assert len(service.fetch("https://news.com/long").text) == 100
