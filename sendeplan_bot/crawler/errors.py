from __future__ import annotations


ERROR_HTTP = "HTTP_ERROR"
ERROR_TIMEOUT = "TIMEOUT"
ERROR_PARSE_FAIL = "PARSE_FAIL"
ERROR_UNKNOWN = "UNKNOWN"


class FetchError(Exception):
    """A schedule or team page could not be retrieved.

    Transient by nature; callers log it for the affected unit and move on.
    """

    def __init__(self, error_type: str, detail: str = "", status_code: int | None = None, url: str | None = None):
        super().__init__(f"{error_type}: {detail}" if detail else error_type)
        self.error_type = error_type
        self.detail = detail
        self.status_code = status_code
        self.url = url
