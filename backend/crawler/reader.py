"""
Page reader: pulls raw text and links out of a loaded session.

The reader snapshots the session's rendered HTML and parses it with
BeautifulSoup. Every lookup takes an ordered list of selectors; the first
one that yields something wins. "Not found" is never an error: fields
come back as "" and link lists as []. Only session failures raise.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urljoin
from bs4 import BeautifulSoup

from .utils.normalizers import normalize_text


@dataclass(frozen=True)
class PaginationRule:
    """
    One strategy for locating the "next page" link.

    Args:
        selector: CSS selector for candidate anchors
        href_contains: Substrings that must all appear in the href
    """
    selector: str
    href_contains: Tuple[str, ...] = ()

    def matches(self, href: str) -> bool:
        return all(part in href for part in self.href_contains)


class PageReader:
    """BeautifulSoup-backed reader over a BrowserSession."""

    def __init__(self, parser: str = 'html.parser'):
        self.parser = parser

    async def soup(self, session) -> BeautifulSoup:
        """Parse the session's current DOM."""
        html = await session.content()
        return BeautifulSoup(html, self.parser)

    async def extract_links(
        self,
        session,
        selectors: Sequence[str],
        limit: Optional[int] = None,
    ) -> List[str]:
        """
        Collect absolute anchor hrefs.

        Args:
            session: Loaded BrowserSession
            selectors: Ordered fallback selectors; the first with matches wins
            limit: Maximum number of links to return (None = all)

        Returns:
            Absolute URLs in document order
        """
        soup = await self.soup(session)
        base_url = session.url
        for selector in selectors:
            links = [
                urljoin(base_url, a['href'])
                for a in soup.select(selector)
                if a.get('href')
            ]
            if links:
                return links[:limit] if limit is not None else links
        return []

    async def extract_field(self, session, selectors: Sequence[str]) -> str:
        """
        Return the text of the first selector with non-empty text.

        Returns:
            Stripped text, or "" when no selector matches
        """
        soup = await self.soup(session)
        return first_text(soup, selectors)

    async def find_pagination_link(self, session, rules: Sequence[PaginationRule]) -> str:
        """
        Return the absolute "next page" URL, or "" when there is none.
        """
        soup = await self.soup(session)
        base_url = session.url
        for rule in rules:
            for anchor in soup.select(rule.selector):
                href = anchor.get('href')
                if href and rule.matches(href):
                    return urljoin(base_url, href)
        return ""


def first_text(soup: BeautifulSoup, selectors: Sequence[str]) -> str:
    """First non-empty element text across an ordered selector list, whitespace collapsed."""
    for selector in selectors:
        element = soup.select_one(selector)
        if element is None:
            continue
        text = normalize_text(element.get_text(' '))
        if text:
            return text
    return ""
