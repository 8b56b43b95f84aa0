"""sitebot ingestion: chunkers, crawler, PDF extraction and the ingestion pipeline."""

from sitebot.ingest.base import BaseChunker, reassemble
from sitebot.ingest.pipeline import IngestionPipeline, TrainingStatus
from sitebot.ingest.recursive import RecursiveChunker, chunk_text
from sitebot.ingest.web import CrawlError, CrawledPage, SsrfError, WebCrawler
from sitebot.ingest.window import WindowChunker

__all__ = [
    "BaseChunker",
    "CrawlError",
    "CrawledPage",
    "IngestionPipeline",
    "RecursiveChunker",
    "SsrfError",
    "TrainingStatus",
    "WebCrawler",
    "WindowChunker",
    "chunk_text",
    "reassemble",
]
