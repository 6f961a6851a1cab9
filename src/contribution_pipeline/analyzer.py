"""URL analysis: classify the hosting archive and find the actual document.

A single outbound fetch per analysis. Direct PDF links are never
downloaded; only a HEAD request is made for size and modification date.
Every failure is recorded on the result instead of being raised.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential_jitter,
)

from .config import CONFIG, PipelineConfig
from .exceptions import UpstreamFetchError
from .models import (
    AnalysisError,
    ContentAccess,
    ContentType,
    Pagination,
    Question,
    SourceAnalysis,
    SourceType,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchiveProfile:
    archive_name: str
    source_type: SourceType
    content_access: ContentAccess


# Matched as substrings of the domain, first match wins
ARCHIVE_PATTERNS: tuple[tuple[str, ArchiveProfile], ...] = (
    ("msa.maryland.gov", ArchiveProfile("Maryland State Archives", SourceType.PRIMARY, ContentAccess.PDF_LINK)),
    ("civilwardc.org", ArchiveProfile("Civil War Washington DC", SourceType.PRIMARY, ContentAccess.DIRECT)),
    ("ancestry.com", ArchiveProfile("Ancestry.com", SourceType.SECONDARY, ContentAccess.AUTH_REQUIRED)),
    ("familysearch.org", ArchiveProfile("FamilySearch", SourceType.SECONDARY, ContentAccess.MIXED)),
    ("findagrave.com", ArchiveProfile("Find A Grave", SourceType.SECONDARY, ContentAccess.DIRECT)),
    ("wikipedia.org", ArchiveProfile("Wikipedia", SourceType.TERTIARY, ContentAccess.DIRECT)),
)

TITLE_SELECTORS = (
    "h1",
    ".document-title",
    ".page-title",
    "#title",
    'meta[property="og:title"]',
    'meta[name="title"]',
)

SOURCE_TYPE_DESCRIPTIONS = {
    SourceType.PRIMARY: "**GOVERNMENT/INSTITUTIONAL ARCHIVE** - May contain primary source documents",
    SourceType.SECONDARY: "**GENEALOGY DATABASE** - Compiled/indexed records",
    SourceType.TERTIARY: "**REFERENCE SOURCE** - Encyclopedia or article",
    SourceType.UNKNOWN: "**UNKNOWN SOURCE TYPE** - Needs your help to classify",
}

_PAGE_SUFFIX = re.compile(r"--(\d+)\.html$")
_MARYLAND_PDF = re.compile(r'href="([^"]*\.pdf)"', re.IGNORECASE)
_MARYLAND_COLLECTION = re.compile(r"sc(\d+)/sc(\d+)/(\d+)/(\d+)")


def classify_domain(domain: str) -> ArchiveProfile | None:
    for pattern, profile in ARCHIVE_PATTERNS:
        if pattern in domain:
            return profile
    return None


def is_pdf_url(url: str) -> bool:
    lowered = url.lower()
    return lowered.endswith(".pdf") or ".pdf?" in lowered or urlparse(lowered).path.endswith(".pdf")


def resolve_url(href: str | None, base_url: str) -> str | None:
    if not href:
        return None
    if href.startswith("http"):
        return href
    try:
        return urljoin(base_url, href)
    except ValueError:
        return None


def extract_document_title(soup: BeautifulSoup) -> str | None:
    for selector in TITLE_SELECTORS:
        element = soup.select_one(selector)
        if element is None:
            continue
        text = (element.get("content") or element.get_text()).strip()
        if 0 < len(text) < 200:
            return text
    return None


def _link_with_text(soup: BeautifulSoup, label: str) -> str | None:
    for anchor in soup.find_all("a", href=True):
        if label in anchor.get_text():
            return anchor["href"]
    return None


def detect_pagination(soup: BeautifulSoup, url: str) -> Pagination:
    pagination = Pagination()

    match = _PAGE_SUFFIX.search(url)
    if match:
        pagination.detected = True
        pagination.current_page = int(match.group(1))
        pagination.pattern = _PAGE_SUFFIX.sub("--{page}.html", url)

    rel_next = soup.find("a", rel="next", href=True)
    rel_prev = soup.find("a", rel="prev", href=True)
    next_link = _link_with_text(soup, "Next") or (rel_next["href"] if rel_next else None)
    prev_link = _link_with_text(soup, "Previous") or (rel_prev["href"] if rel_prev else None)

    if next_link:
        pagination.detected = True
        pagination.next_url = resolve_url(next_link, url)
    if prev_link:
        pagination.prev_url = resolve_url(prev_link, url)
    return pagination


def determine_content_type(analysis: SourceAnalysis) -> ContentType:
    if analysis.content_url and analysis.content_url.endswith(".pdf"):
        return ContentType.PDF
    if analysis.has_iframe:
        return ContentType.IFRAME
    if analysis.domain and "wikipedia" in analysis.domain:
        return ContentType.HTML_ARTICLE
    return ContentType.HTML_PAGE


def is_transient(exc: BaseException) -> bool:
    """Timeouts, connection failures and 5xx answers are worth another try; 4xx are not."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))


class URLAnalyzer:
    """Fetches a source URL once and describes what it hosts.

    Args:
        client: Optional shared ``httpx.AsyncClient``. When omitted a client
            is created per analysis and closed afterwards.
        config: Timeouts, retry attempts and User-Agent.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, config: PipelineConfig = CONFIG):
        self._client = client
        self.config = config

    @property
    def headers(self) -> dict[str, str]:
        return {"User-Agent": self.config.user_agent}

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.config.fetch_timeout,
            follow_redirects=True,
            max_redirects=self.config.max_redirects,
            headers=self.headers,
        )

    async def analyze(self, url: str) -> SourceAnalysis:
        """Analyze ``url``. Never raises; problems land in ``errors``."""
        analysis = SourceAnalysis(url=url, final_url=url)
        try:
            parsed = urlparse(url)
            host = (parsed.hostname or "").lower()
            analysis.domain = host[4:] if host.startswith("www.") else host

            profile = classify_domain(analysis.domain)
            if profile is not None:
                analysis.archive_name = profile.archive_name
                analysis.source_type = profile.source_type
                analysis.content_access = profile.content_access

            if self._client is not None:
                await self._inspect(self._client, analysis)
            else:
                async with self._new_client() as client:
                    await self._inspect(client, analysis)
        except Exception as exc:
            logger.warning(f"URL analysis failed for {url}: {exc}")
            analysis.errors.append(AnalysisError(stage="url_fetch", message=str(exc) or type(exc).__name__))
        return analysis

    async def _inspect(self, client: httpx.AsyncClient, analysis: SourceAnalysis) -> None:
        if is_pdf_url(analysis.url):
            await self._inspect_pdf(client, analysis)
        else:
            await self._inspect_page(client, analysis)

    async def _inspect_pdf(self, client: httpx.AsyncClient, analysis: SourceAnalysis) -> None:
        logger.info(f"Direct PDF detected: {analysis.url}")
        name = urlparse(analysis.url).path.rsplit("/", 1)[-1].replace(".pdf", "")
        analysis.content_type = ContentType.PDF
        analysis.content_url = analysis.url
        analysis.has_pdf_link = True
        analysis.content_access = ContentAccess.DIRECT_PDF
        analysis.page_title = name
        analysis.document_title = name

        try:
            resp = await client.head(analysis.url, headers=self.headers, timeout=self.config.head_timeout)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            # Not fatal: the document may still be reachable through a browser session
            logger.info(f"HEAD request failed (likely protected): {exc}")
            analysis.content_access = ContentAccess.PROTECTED_PDF
            return

        length = resp.headers.get("content-length")
        analysis.content_length = int(length) if length and length.isdigit() else None
        analysis.last_modified = resp.headers.get("last-modified")

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        @retry(
            reraise=True,
            stop=stop_after_attempt(max(1, self.config.fetch_attempts)) | stop_after_delay(self.config.fetch_timeout),
            wait=wait_exponential_jitter(initial=0.5, max=4.0),
            retry=retry_if_exception(is_transient),
        )
        async def _do() -> httpx.Response:
            resp = await client.get(url, headers=self.headers)
            resp.raise_for_status()
            return resp

        try:
            return await _do()
        except httpx.HTTPError as exc:
            raise UpstreamFetchError(url, str(exc) or type(exc).__name__) from exc

    async def _inspect_page(self, client: httpx.AsyncClient, analysis: SourceAnalysis) -> None:
        url = analysis.url
        resp = await self._fetch(client, url)
        analysis.final_url = str(resp.url)
        html = resp.text
        soup = BeautifulSoup(html, "html.parser")

        if soup.title is not None:
            analysis.page_title = soup.title.get_text().strip()
        analysis.document_title = extract_document_title(soup)

        iframe = soup.find("iframe")
        if iframe is not None:
            analysis.has_iframe = True
            analysis.iframe_src = iframe.get("src")

        pdf_link = soup.select_one('a[href*=".pdf"]')
        if pdf_link is not None:
            analysis.has_pdf_link = True
            analysis.content_url = resolve_url(pdf_link.get("href"), url)

        if analysis.domain and "msa.maryland.gov" in analysis.domain:
            pdf_match = _MARYLAND_PDF.search(html)
            if pdf_match:
                analysis.content_url = resolve_url(pdf_match.group(1), url)
                analysis.content_access = ContentAccess.PDF_LINK
            collection = _MARYLAND_COLLECTION.search(url)
            if collection:
                a, b, c, d = collection.groups()
                analysis.collection_id = f"sc{a}/sc{b}/{c}/{d}"

        analysis.pagination = detect_pagination(soup, url)
        analysis.content_type = determine_content_type(analysis)


def summarize(analysis: SourceAnalysis) -> str:
    """Human-readable account of an analysis, ending with the layout prompt."""
    lines = ["I've analyzed this URL. Here's what I found:", ""]
    lines.append(f"**Source:** {analysis.display_name}")
    if analysis.document_title:
        lines.append(f"**Document:** {analysis.document_title}")
    if analysis.content_url:
        kind = "PDF" if analysis.content_type == ContentType.PDF else "separate file"
        lines.append(f"**Content:** The actual document is a {kind}")
    if analysis.has_iframe:
        lines.append("**Note:** Content is loaded in an iframe")

    lines.append("")
    lines.append(SOURCE_TYPE_DESCRIPTIONS[analysis.source_type])
    lines.append("")
    lines.append(
        "*Note: Document confirmation status will be determined by the actual content, not the source domain.*"
    )

    if analysis.pagination.detected:
        page = analysis.pagination.current_page or "?"
        lines.append("")
        lines.append(f"**Pagination:** This appears to be page {page} of a multi-page document")

    if analysis.errors:
        lines.append("")
        lines.append("**Issues:** " + ", ".join(e.message for e in analysis.errors))

    lines.append("")
    lines.append(
        "Before I try to extract data, I need to understand what you're seeing. "
        "Can you describe the document layout?"
    )
    return "\n".join(lines)


def initial_questions(analysis: SourceAnalysis) -> list[Question]:
    questions = [
        Question.choice(
            "layout_type",
            "What type of layout do you see?",
            [
                ("table", "Table with columns and rows"),
                ("list", "List of names/entries"),
                ("prose", "Paragraph text / narrative"),
                ("form", "Filled-out form"),
                ("image_only", "Just an image / scan"),
                ("mixed", "Mix of different formats"),
            ],
        )
    ]

    if analysis.is_pdf:
        questions.append(
            Question.choice(
                "scan_quality",
                "How is the document quality?",
                [
                    ("excellent", "Excellent - very clear"),
                    ("good", "Good - mostly readable"),
                    ("fair", "Fair - some parts hard to read"),
                    ("poor", "Poor - significant portions illegible"),
                ],
            )
        )
        questions.append(
            Question.choice(
                "handwriting_type",
                "Is the document handwritten or printed?",
                [
                    ("printed", "Printed / Typed"),
                    ("cursive", "Handwritten - Cursive"),
                    ("print_hand", "Handwritten - Print/Block"),
                    ("mixed", "Mix of printed and handwritten"),
                ],
            )
        )

    if analysis.source_type == SourceType.UNKNOWN:
        questions.append(
            Question.choice(
                "source_type",
                "What type of source is this?",
                [
                    ("primary", "Primary - Original historical document (census, deed, will, petition)"),
                    ("secondary", "Secondary - Database, index, or transcription"),
                    ("tertiary", "Tertiary - Encyclopedia, article, or summary"),
                ],
            )
        )
    return questions
