"""Shared fixtures: SQLite storage in tmp_path and HTTP faked with httpx.MockTransport."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace

import httpx
import pytest
from helpers import BLOG_PAGE, BLOG_URL, MARYLAND_PAGE, MARYLAND_URL, RecordingBackend, make_transport

from contribution_pipeline.analyzer import URLAnalyzer
from contribution_pipeline.config import CONFIG, PipelineConfig
from contribution_pipeline.pipeline import ContributionPipeline
from contribution_pipeline.storage import ContributionStorage


@pytest.fixture()
def config() -> PipelineConfig:
    return replace(CONFIG, fetch_attempts=1)


@pytest.fixture()
def storage(tmp_path):
    store = ContributionStorage(tmp_path / "contributions.db")
    yield store
    store.close()


@pytest.fixture()
def make_analyzer(config) -> Callable[[httpx.MockTransport], URLAnalyzer]:
    def build(transport: httpx.MockTransport) -> URLAnalyzer:
        client = httpx.AsyncClient(transport=transport, follow_redirects=True)
        return URLAnalyzer(client=client, config=config)

    return build


@pytest.fixture()
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture()
def pipeline(storage, config, make_analyzer, backend) -> ContributionPipeline:
    analyzer = make_analyzer(make_transport({MARYLAND_URL: (200, MARYLAND_PAGE), BLOG_URL: (200, BLOG_PAGE)}))
    return ContributionPipeline(storage, analyzer=analyzer, backend=backend, config=config)
