class DocumentAnalysisError(Exception):
    """Base class for every error raised by the document analysis client"""


class ValidationError(DocumentAnalysisError, ValueError):
    """Input rejected locally, before any request is made"""


class TransportError(DocumentAnalysisError):
    """The backend was unreachable or answered with a non-success response"""


class UploadError(TransportError):
    pass


class StatusCheckError(TransportError):
    pass


class NotFoundError(StatusCheckError):
    """The backend does not know the job identifier"""


class ResultFetchError(TransportError):
    pass


class ResultNotFoundError(ResultFetchError):
    """The job is completed but its result is not available (yet)"""


class MalformedResultError(ResultFetchError):
    pass
