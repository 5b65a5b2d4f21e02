"""
Discovery API Adapter.

Pages through a public JSON discovery endpoint. The first pages can be read
from the search page's hydration state with a headless browser (the endpoint
it hands back carries the right filters); otherwise the configured discovery
URL is paged directly. Each result may be enriched with its detail object.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, urlparse, urlunparse

from eventsync.extraction.strategies import discovery_slug
from eventsync.ingestion.adapters.base_adapter import (
    BaseSourceAdapter,
    DocumentGroup,
)
from eventsync.runtime.browser import BrowserRenderer
from eventsync.runtime.http import FetchError
from eventsync.schemas.event import ExtractionStrategy

HYDRATION_EXPR = "() => globalThis.__NEXT_DATA__?.props?.pageProps?.dehydratedState || null"

DEFAULT_MAX_PAGES = 8


def pick_discovery_query(dehydrated_state: Any) -> Optional[Dict[str, Any]]:
    """The first hydrated query whose first page carries `results`."""
    if not isinstance(dehydrated_state, dict):
        return None
    for query in dehydrated_state.get("queries") or []:
        pages = (((query or {}).get("state") or {}).get("data") or {}).get("pages") or []
        if pages and isinstance(pages[0], dict) and pages[0].get("results") is not None:
            return query
    return None


class DiscoveryApiAdapter(BaseSourceAdapter):
    """
    Adapter for a paginated discovery API.

    Options:
        base_url: site root (required)
        search_url: public search page holding the hydration state
        discovery_url: first API page; built from point_location when absent
        point_location: "lat,lng,radius_km"
        max_pages: page cap per crawl (default 8)
        bootstrap_with_browser: read the first pages through the browser
        detail_path: detail endpoint template, "{slug}" substituted
    """

    # Each group is [detail object, list result]
    orders_partials = True

    def __init__(self, config, http_client=None, renderer: Optional[BrowserRenderer] = None):
        super().__init__(config, http_client)
        self._renderer = renderer
        self._owns_renderer = renderer is None

    def _validate_config(self) -> None:
        if not self.option("base_url"):
            raise ValueError(f"{self.source_id}: 'base_url' is required")

    @property
    def base_url(self) -> str:
        return str(self.option("base_url")).rstrip("/")

    @property
    def max_pages(self) -> int:
        return int(self.option("max_pages", DEFAULT_MAX_PAGES))

    @property
    def renderer(self) -> BrowserRenderer:
        if self._renderer is None:
            self._renderer = BrowserRenderer()
        return self._renderer

    def discovery_url(self) -> str:
        if self.option("discovery_url"):
            return self.option("discovery_url")
        point = quote(str(self.option("point_location", "")), safe="")
        return (
            f"{self.base_url}/api/public/discovery/?location__point_location={point}"
            "&page_size=12&payment_type=2&purchase_platform=psp_web&source_channel=discovery"
        )

    def normalize_api_url(self, url: Optional[str]) -> Optional[str]:
        """Force https and the public host onto `next` links from the API."""
        if not url:
            return None
        base = urlparse(self.base_url)
        parsed = urlparse(url)
        if not parsed.netloc or parsed.hostname == "app-web-server-service":
            parsed = parsed._replace(netloc=base.netloc)
        return urlunparse(parsed._replace(scheme="https"))

    def _api_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.option("search_url"):
            headers["Referer"] = self.option("search_url")
        return headers

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def bootstrap_pages(self) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Read hydrated pages from the search page; empty on any failure."""
        search_url = self.option("search_url")
        if not search_url:
            return [], None
        try:
            state = self.renderer.evaluate(search_url, HYDRATION_EXPR)
        except Exception as e:
            self.logger.error(f"Failed to load listing via browser: {e}")
            return [], None
        query = pick_discovery_query(state)
        if not query:
            return [], None
        pages = query["state"]["data"]["pages"]
        return pages, (pages[-1] or {}).get("next")

    def _paginate(self, next_url: Optional[str], page_count: int, results: List[Dict[str, Any]], errors: List[str]) -> int:
        next_url = self.normalize_api_url(next_url)
        while next_url and page_count < self.max_pages:
            try:
                data = self.http.get_json(next_url, headers=self._api_headers(), timeout_s=self.config.request_timeout)
            except FetchError as e:
                self.logger.warning(f"Pagination request failed: {e}")
                errors.append(str(e))
                break
            results.extend((data or {}).get("results") or [])
            next_url = self.normalize_api_url((data or {}).get("next"))
            page_count += 1
        return page_count

    def collect_results(self, errors: List[str]) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        pages: List[Dict[str, Any]] = []
        next_url = None
        if self.option("bootstrap_with_browser", False):
            pages, next_url = self.bootstrap_pages()
            for page in pages:
                results.extend((page or {}).get("results") or [])
            self._paginate(next_url, len(pages), results, errors)

        if not results:
            self._paginate(self.discovery_url(), 0, results, errors)
        return results

    # ------------------------------------------------------------------
    # Detail
    # ------------------------------------------------------------------

    def fetch_detail(self, slug: str) -> Optional[Dict[str, Any]]:
        template = self.option("detail_path", "/api/public/events/{slug}/")
        url = f"{self.base_url}{template.format(slug=slug)}"
        try:
            return self.http.get_json(url, timeout_s=self.config.request_timeout)
        except FetchError as e:
            self.logger.warning(f"Failed to fetch detail for {slug}: {e}")
            return None

    def collect(self, *, metadata: Dict[str, Any], errors: List[str], **kwargs) -> List[DocumentGroup]:
        results = self.collect_results(errors)
        metadata["results"] = len(results)
        if not results and errors:
            raise FetchError(self.discovery_url(), "no discovery results")

        groups: List[DocumentGroup] = []
        seen = set()
        for result in results:
            if not isinstance(result, dict):
                continue
            slug = discovery_slug(result)
            key = slug or result.get("uuid") or result.get("item_id")
            if not key or key in seen:
                continue
            seen.add(key)

            context = {"base_url": self.base_url}
            group: DocumentGroup = [
                self.document(ExtractionStrategy.DISCOVERY_API, result, source_id=str(key), **context)
            ]
            if slug and not self.config.skip_enrich:
                detail = self.fetch_detail(slug)
                if detail:
                    group.insert(
                        0,
                        self.document(ExtractionStrategy.DISCOVERY_API, detail, source_id=str(key), **context),
                    )
            groups.append(group)
        return groups

    def release_fetch_resources(self) -> None:
        if self._renderer is not None and self._owns_renderer:
            self._renderer.close()
            self._renderer = None

    def close(self) -> None:
        self.release_fetch_resources()
        super().close()
