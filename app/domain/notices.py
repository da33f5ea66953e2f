"""
Busca de editais (PDFs) nas páginas dos leiloeiros.

O site é baixado com requests e os links são extraídos com BeautifulSoup.
Sem seletor próprio, pegamos links terminados em .pdf cujo texto
parece de edital; com seletor próprio, todo link encontrado vale.
"""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup
from telegram.helpers import escape_markdown

logger = logging.getLogger(__name__)

DEFAULT_SELECTOR = 'a[href$=".pdf" i]'
NOTICE_KEYWORDS = re.compile(r"edital|licita|concorr|preg[aã]o", re.IGNORECASE)
DEFAULT_TITLE = "Edital"
EMPTY_MESSAGE = "Nenhum edital encontrado."


@dataclass(frozen=True)
class Notice:
    title: str
    url: str


def _link_of(element) -> Optional[str]:
    href = element.get("href")
    if href:
        return href
    # Seletor pode apontar para um contêiner com o link dentro
    anchor = element.find("a", href=True)
    return anchor["href"] if anchor else None


def parse_notices(
    html: str,
    base_url: str,
    selector: Optional[str] = None,
    max_results: int = 5,
) -> List[Notice]:
    """
    Extrai editais do HTML.

    Links relativos são resolvidos contra `base_url`; links repetidos
    aparecem uma vez só. Retorna no máximo `max_results` itens, na
    ordem do documento.
    """
    soup = BeautifulSoup(html, "html.parser")
    custom = bool(selector and selector.strip())
    css = selector.strip() if custom else DEFAULT_SELECTOR

    notices: List[Notice] = []
    seen = set()
    for element in soup.select(css):
        href = _link_of(element)
        if not href:
            continue
        title = " ".join(element.get_text(" ", strip=True).split())
        if not custom and not NOTICE_KEYWORDS.search(title):
            continue
        url = urljoin(base_url, href.strip())
        if url in seen:
            continue
        seen.add(url)
        notices.append(Notice(title=title or DEFAULT_TITLE, url=url))
        if len(notices) >= max_results:
            break
    return notices


class NoticeFetcher:
    """
    Baixa a página do leiloeiro e extrai os editais.
    Qualquer falha de rede ou de parsing vira lista vazia.
    """

    def __init__(self, timeout: float = 10.0, user_agent: str = "Mozilla/5.0", max_results: int = 5) -> None:
        self._timeout = timeout
        self._user_agent = user_agent
        self._max_results = max_results

    def fetch(self, url: str, selector: Optional[str] = None) -> List[Notice]:
        try:
            response = requests.get(url, timeout=self._timeout, headers={"User-Agent": self._user_agent})
            response.raise_for_status()
            notices = parse_notices(response.text, url, selector=selector, max_results=self._max_results)
        except requests.RequestException as e:
            logger.warning(f"Erro ao baixar página de editais: url={url}, error={type(e).__name__}: {e}")
            return []
        except Exception as e:
            # Seletor inválido ou HTML que o parser não aceita
            logger.error(f"Erro ao extrair editais: url={url}, selector={selector}, error={type(e).__name__}: {e}")
            return []

        logger.info(f"Editais encontrados: url={url}, total={len(notices)}")
        return notices


def format_notices_message(notices: List[Notice]) -> str:
    """
    Monta a mensagem em Markdown do Telegram com os editais.
    """
    if not notices:
        return EMPTY_MESSAGE
    return "\n\n".join(
        f"📄 *{escape_markdown(notice.title)}*\n[Baixar PDF]({notice.url})"
        for notice in notices
    )
