import pytest
import requests

from app.domain import notices as notices_module
from app.domain.notices import EMPTY_MESSAGE, Notice, NoticeFetcher, format_notices_message, parse_notices

PAGE = """
<html><body>
  <ul>
    <li><a href="/docs/edital-001.pdf">Edital 001/2024 - Imóvel em Campinas</a></li>
    <li><a href="https://cdn.leiloes.com/Licitacao_02.PDF">Licitação 02</a></li>
    <li><a href="/docs/catalogo.pdf">Catálogo de lotes</a></li>
    <li><a href="/docs/edital-001.pdf">Edital 001/2024 (cópia)</a></li>
    <li><a href="/noticias/edital">Edital em HTML</a></li>
    <li><a href="pregao-7.pdf">Pregão   eletrônico 7</a></li>
  </ul>
  <div class="editais">
    <span class="item"><a href="/arquivos/a.pdf"></a></span>
    <span class="item"><a href="/arquivos/b.pdf">Lote B</a></span>
  </div>
</body></html>
"""

BASE = "https://leiloes.com/agenda/"


class FakeResponse:
    def __init__(self, text, status_code=200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


@pytest.mark.nivel("baixo")
def test_default_selector_keeps_notice_pdfs_only():
    found = parse_notices(PAGE, BASE)

    assert found == [
        Notice(title="Edital 001/2024 - Imóvel em Campinas", url="https://leiloes.com/docs/edital-001.pdf"),
        Notice(title="Licitação 02", url="https://cdn.leiloes.com/Licitacao_02.PDF"),
        Notice(title="Pregão eletrônico 7", url="https://leiloes.com/agenda/pregao-7.pdf"),
    ]


@pytest.mark.nivel("baixo")
def test_custom_selector_skips_keyword_filter():
    found = parse_notices(PAGE, BASE, selector="div.editais span.item")

    assert found == [
        Notice(title="Edital", url="https://leiloes.com/arquivos/a.pdf"),
        Notice(title="Lote B", url="https://leiloes.com/arquivos/b.pdf"),
    ]


@pytest.mark.nivel("baixo")
def test_max_results_and_blank_selector():
    assert len(parse_notices(PAGE, BASE, selector="  ", max_results=2)) == 2
    assert parse_notices("<p>sem links</p>", BASE) == []


@pytest.mark.nivel("baixo")
def test_format_notices_message():
    assert format_notices_message([]) == EMPTY_MESSAGE

    text = format_notices_message([
        Notice(title="Edital_1", url="https://x.com/1.pdf"),
        Notice(title="Edital 2", url="https://x.com/2.pdf"),
    ])

    assert text == (
        "📄 *Edital\\_1*\n[Baixar PDF](https://x.com/1.pdf)\n\n"
        "📄 *Edital 2*\n[Baixar PDF](https://x.com/2.pdf)"
    )


@pytest.mark.nivel("medio")
def test_fetcher_downloads_and_parses(monkeypatch):
    calls = []

    def fake_get(url, timeout, headers):
        calls.append((url, timeout, headers))
        return FakeResponse(PAGE)

    monkeypatch.setattr(notices_module.requests, "get", fake_get)
    fetcher = NoticeFetcher(timeout=3.0, user_agent="teste-ua", max_results=1)

    found = fetcher.fetch(BASE)

    assert [notice.url for notice in found] == ["https://leiloes.com/docs/edital-001.pdf"]
    assert calls == [(BASE, 3.0, {"User-Agent": "teste-ua"})]


@pytest.mark.nivel("medio")
def test_fetcher_returns_empty_list_on_http_error(monkeypatch):
    monkeypatch.setattr(notices_module.requests, "get", lambda url, timeout, headers: FakeResponse("", 503))

    assert NoticeFetcher().fetch(BASE) == []


@pytest.mark.nivel("medio")
def test_fetcher_returns_empty_list_on_network_error(monkeypatch):
    def fake_get(url, timeout, headers):
        raise requests.ConnectionError("sem rede")

    monkeypatch.setattr(notices_module.requests, "get", fake_get)

    assert NoticeFetcher().fetch(BASE) == []


@pytest.mark.nivel("medio")
def test_fetcher_returns_empty_list_on_bad_selector(monkeypatch):
    monkeypatch.setattr(notices_module.requests, "get", lambda url, timeout, headers: FakeResponse(PAGE))

    assert NoticeFetcher().fetch(BASE, selector="a[") == []
