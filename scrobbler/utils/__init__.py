from scrobbler.utils.url_builder import build_url, validate_base_url, URLValidationError
from scrobbler.utils.logging import setup_logging

__all__ = ["build_url", "validate_base_url", "URLValidationError", "setup_logging"]
