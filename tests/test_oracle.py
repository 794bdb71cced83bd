from __future__ import annotations

import pytest
import requests

from ordswap.model import OutPoint
from ordswap.oracle import InscriptionOracle, OracleError

PLAIN = OutPoint("aa" * 32, 0)
INSCRIBED = OutPoint("bb" * 32, 1)


def _response(status: int, text: str) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response._content = text.encode()
    response.encoding = "utf-8"
    return response


class FakeSession:
    def __init__(self, pages: dict[str, requests.Response] | None = None, error: Exception | None = None) -> None:
        self.pages = pages or {}
        self.error = error
        self.urls: list[str] = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.pages[url]


def _oracle(session: FakeSession) -> InscriptionOracle:
    return InscriptionOracle("https://ord.example/", session=session, timeout=3)


def test_output_url_tolerates_trailing_slash() -> None:
    oracle = _oracle(FakeSession())
    assert oracle.output_url(PLAIN) == f"https://ord.example/output/{'aa' * 32}:0"


def test_marker_in_body_means_inscription() -> None:
    session = FakeSession(
        {
            f"https://ord.example/output/{PLAIN}": _response(200, "<h1>Output</h1><dl><dt>value</dt></dl>"),
            f"https://ord.example/output/{INSCRIBED}": _response(200, '<a href="/inscription/abc">inscription</a>'),
        }
    )
    oracle = _oracle(session)

    assert oracle.classify([PLAIN, INSCRIBED]) == {PLAIN: False, INSCRIBED: True}


def test_results_are_cached_until_reset() -> None:
    url = f"https://ord.example/output/{PLAIN}"
    session = FakeSession({url: _response(200, "plain output")})
    oracle = _oracle(session)

    oracle.is_inscription(PLAIN)
    oracle.classify([PLAIN, PLAIN])
    assert session.urls == [url]

    oracle.reset()
    oracle.is_inscription(PLAIN)
    assert session.urls == [url, url]


def test_http_error_is_fatal() -> None:
    session = FakeSession({f"https://ord.example/output/{PLAIN}": _response(503, "busy")})

    with pytest.raises(OracleError, match="HTTP 503"):
        _oracle(session).is_inscription(PLAIN)


def test_transport_error_is_fatal() -> None:
    session = FakeSession(error=requests.Timeout("slow"))

    with pytest.raises(OracleError, match="unreachable"):
        _oracle(session).is_inscription(PLAIN)


def test_base_url_is_required() -> None:
    with pytest.raises(ValueError):
        InscriptionOracle("")
