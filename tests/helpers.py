"""Canned pages, fake transports and fake extraction backends for the tests."""
from __future__ import annotations

import httpx

from contribution_pipeline.models import ExtractionJob

MARYLAND_URL = (
    "https://msa.maryland.gov/megafile/msa/speccol/sc2900/sc2908/000001/000812/html/am812--3.html"
)

MARYLAND_PAGE = """
<html>
  <head><title>Archives of Maryland Online</title></head>
  <body>
    <h1>Slave Statistics, 1864-1868</h1>
    <a href="../pdf/am812--3.pdf">View PDF</a>
    <a href="am812--2.html">Previous</a>
    <a href="am812--4.html">Next</a>
  </body>
</html>
"""

BLOG_URL = "https://randomblog.com/family-notes"

BLOG_PAGE = """
<html>
  <head><title>Family Notes</title></head>
  <body><h1>Notes on the Smith family</h1><p>Some text.</p></body>
</html>
"""

TABLE_DESCRIPTION = "It's a table. The first column is the owner name, the second column is the date"


def make_transport(pages: dict[str, tuple[int, str]]) -> httpx.MockTransport:
    """Serve ``pages`` by URL; anything else is a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        status, body = pages.get(str(request.url), (404, "not found"))
        return httpx.Response(status, text=body, headers={"content-type": "text/html"})

    return httpx.MockTransport(handler)


class RecordingBackend:
    """Extraction backend that only remembers what it was given."""

    def __init__(self):
        self.jobs: list[ExtractionJob] = []

    def submit(self, job: ExtractionJob) -> None:
        self.jobs.append(job)


class ForbiddenBackend:
    def submit(self, job: ExtractionJob) -> None:
        raise RuntimeError("Download failed: 403 Forbidden")
