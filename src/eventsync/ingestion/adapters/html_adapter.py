"""
HTML Listing Adapter.

Reads an events listing page, cuts it into one card per heading and, unless
enrichment is disabled, visits each card's detail page for JSON-LD, meta tags
and body paragraphs.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from eventsync.extraction.strategies import FieldExtractor
from eventsync.extraction.text import collapse_ws
from eventsync.ingestion.adapters.base_adapter import (
    BaseSourceAdapter,
    DocumentGroup,
)
from eventsync.runtime.http import FetchError
from eventsync.schemas.event import ExtractionStrategy


class HtmlListingAdapter(BaseSourceAdapter):
    """
    Adapter for server-rendered event listing pages.

    Options:
        listing_url: page listing the events (required)
        base_url: base for relative links (defaults to listing_url)
        item_selector: CSS selector of the per-event heading (default "h3")
        container_selector: closest ancestor holding the card (default: parent)
        venue_pattern: regex picking the venue line inside a card
        description_selector: detail-page paragraphs used as description
    """

    # Each group is [detail JSON-LD, listing card, detail meta tags, detail body]
    orders_partials = True

    def __init__(self, config, http_client=None):
        super().__init__(config, http_client)
        self.extractor = FieldExtractor()

    def _validate_config(self) -> None:
        if not self.option("listing_url"):
            raise ValueError(f"{self.source_id}: 'listing_url' is required")

    @property
    def listing_url(self) -> str:
        return self.option("listing_url")

    def collect(self, *, metadata: Dict[str, Any], errors: List[str], **kwargs) -> List[DocumentGroup]:
        html = self.http.get_text(self.listing_url)
        cards = self.split_cards(html)
        metadata["cards"] = len(cards)

        groups: List[DocumentGroup] = []
        seen = set()
        for card_doc in cards:
            partial = self.extractor.extract(card_doc)
            if not partial.title:
                continue
            detail_url = partial.url if partial.url and partial.url != self.listing_url else None
            source_id = detail_url or f"{self.listing_url}::{partial.title}"
            if source_id in seen:
                continue
            seen.add(source_id)
            card_doc.source_id = source_id

            group: DocumentGroup = [card_doc]
            if detail_url and not self.config.skip_enrich:
                group = self._enrich(card_doc, detail_url, source_id, errors)
            groups.append(group)

        metadata["events"] = len(groups)
        return groups

    def split_cards(self, html: str):
        """One DOM_HEURISTIC document per listing heading."""
        soup = BeautifulSoup(html or "", "lxml")
        container = self.option("container_selector")
        base_url = self.option("base_url") or self.listing_url
        cards = []
        for heading in soup.select(self.option("item_selector", "h3")):
            title = collapse_ws(heading.get_text(" "))
            if not title:
                continue
            block = heading.css.closest(container) if container else None
            block = block or heading.parent or heading
            cards.append(
                self.document(
                    ExtractionStrategy.DOM_HEURISTIC,
                    str(block),
                    url=self.listing_url,
                    mode="listing",
                    title=title,
                    title_selector=self.option("item_selector", "h3"),
                    venue_pattern=self.option("venue_pattern"),
                    base_url=base_url,
                )
            )
        return cards

    def _enrich(self, card_doc, detail_url: str, source_id: str, errors: List[str]) -> DocumentGroup:
        try:
            detail_html = self.http.get_text(detail_url)
        except FetchError as e:
            # keep the card alone
            self.logger.warning(f"Enrich failed for {detail_url}: {e}")
            errors.append(f"enrich {detail_url}: {e}")
            return [card_doc]

        return [
            self.document(ExtractionStrategy.STRUCTURED_DATA, detail_html, source_id=source_id, url=detail_url),
            card_doc,
            self.document(ExtractionStrategy.METADATA, detail_html, source_id=source_id, url=detail_url),
            self.document(
                ExtractionStrategy.DOM_HEURISTIC,
                _paragraphs_only(detail_html, self.option("description_selector")),
                source_id=source_id,
                url=detail_url,
                description_selector="article p",
            ),
        ]


def _paragraphs_only(html: str, selector: Optional[str]) -> str:
    """
    Reduce a detail page to its body paragraphs so the page heuristic only
    contributes a description.
    """
    soup = BeautifulSoup(html or "", "lxml")
    paragraphs = soup.select(selector or "article p, .entry-content p")
    return "<html><body><article>" + "".join(str(p) for p in paragraphs) + "</article></body></html>"