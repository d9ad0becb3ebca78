"""Article processing, job handlers and runtime wiring."""

from .articles import ArticleProcessor
from .jobs import (
    ExtractMetadataHandler,
    GetUpdatedArticleHandler,
    ImportArticleHandler,
    SyncFeedArticlesHandler,
    build_handlers,
    parse_payload,
)
from .orchestrator import PipelineRuntime

__all__ = [
    "ArticleProcessor",
    "ExtractMetadataHandler",
    "GetUpdatedArticleHandler",
    "ImportArticleHandler",
    "PipelineRuntime",
    "SyncFeedArticlesHandler",
    "build_handlers",
    "parse_payload",
]
