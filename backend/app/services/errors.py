"""Exceptions raised by the OCR ingestion pipeline"""


class OCRPipelineError(RuntimeError):
    """Base class for ingestion failures"""

    def __init__(self, message: str, *, cause: Exception = None):
        super().__init__(message)
        self.__cause__ = cause


class ConfigurationError(OCRPipelineError):
    """Credentials or processor configuration missing; nothing was attempted"""


class DocumentNotFoundError(OCRPipelineError):
    """Document record does not exist"""


class TokenAcquisitionError(OCRPipelineError):
    """Service account assertion could not be exchanged for an access token"""


class JobSubmissionError(OCRPipelineError):
    """Batch process request was rejected"""


class JobFailedError(OCRPipelineError):
    """Operation completed with an error payload"""


class JobTimeoutError(OCRPipelineError):
    """Operation did not complete within the polling ceiling"""


class ShardDownloadError(OCRPipelineError):
    """Result shard listing or download failed"""
