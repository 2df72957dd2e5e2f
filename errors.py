from typing import Optional


class NotFoundError(ValueError):
    pass


class AuthorizationError(Exception):
    pass


class RateLimitExceeded(Exception):
    def __init__(self, remaining: int, reset_in_secs: int) -> None:
        super().__init__("Too many requests. Please try again later.")
        self.remaining = remaining
        self.reset_in_secs = reset_in_secs


class RequestBlocked(Exception):
    def __init__(self, reason: Optional[str] = None) -> None:
        super().__init__("Request blocked")
        self.reason = reason


class AIServiceError(RuntimeError):
    pass


class ReceiptScanError(RuntimeError):
    pass
