from typing import Any, Dict, List


class ConfigValidationError(ValueError):
    """Raised when a plugin configuration document fails validation"""

    def __init__(self, message: str, errors: List[Dict[str, Any]] = None):
        super().__init__(message)
        self.errors = errors or []


class PageFetchError(Exception):
    """Raised when a single page could not be fetched (DNS, timeout, connection)"""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason
