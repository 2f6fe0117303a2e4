"""Exception taxonomy shared by the crawl stages."""
from __future__ import annotations


class CrawlError(RuntimeError):
    pass


class RetryableRequestError(CrawlError):
    """The current attempt failed; the request should be retried on a fresh session."""


class SoftBlockError(RetryableRequestError):
    pass


class RenderError(RetryableRequestError):
    pass


class RenderTimeoutError(RenderError):
    pass


class PlaceParseError(CrawlError):
    pass
