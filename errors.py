from typing import Optional, Dict, Any


class FetchServiceError(Exception):
    """Base error mapped to a JSON body at the request boundary."""

    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidInput(FetchServiceError):
    status_code = 400


class FetchFailed(FetchServiceError):
    pass


class DownloadFailed(FetchServiceError):
    pass


class ConversionFailed(FetchServiceError):
    pass


class NotFound(FetchServiceError):
    status_code = 404
