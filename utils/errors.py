from enum import Enum
from fastapi import status


class ErrorDetail:
    def __init__(self, status_code: int, code: str, message: str):
        self.status_code = status_code
        self.code = code
        self.message = message


class ErrorKind(str, Enum):
    """Failure taxonomy of the model subsystem."""
    MODEL_NOT_FOUND = "ModelNotFound"
    MODEL_UNAVAILABLE = "ModelUnavailable"
    MODEL_LOAD_TIMEOUT = "ModelLoadTimeout"
    MODEL_LOAD_FAILED = "ModelLoadFailed"
    INFERENCE_TIMEOUT = "InferenceTimeout"
    INFERENCE_FAILED = "InferenceFailed"
    DOWNLOAD_FAILED = "DownloadFailed"
    STORAGE_ACCESS_DENIED = "StorageAccessDenied"
    OUT_OF_RESOURCES = "OutOfResources"


class ErrorCode:
    """System error code and message definitions"""

    # Common errors
    COMMON_INTERNAL_ERROR = ErrorDetail(status.HTTP_500_INTERNAL_SERVER_ERROR, "COMMON_INTERNAL_ERROR", "An unexpected internal server error occurred.")
    COMMON_NOT_FOUND = ErrorDetail(status.HTTP_404_NOT_FOUND, "COMMON_NOT_FOUND", "The requested resource does not exist")
    COMMON_INVALID_PARAMS = ErrorDetail(status.HTTP_400_BAD_REQUEST, "COMMON_INVALID_PARAMS", "Invalid parameters")
    COMMON_VALIDATION_ERROR = ErrorDetail(status.HTTP_400_BAD_REQUEST, "COMMON_VALIDATION_ERROR", "Data validation failed")
    COMMON_SERVICE_UNAVAILABLE = ErrorDetail(status.HTTP_503_SERVICE_UNAVAILABLE, "COMMON_SERVICE_UNAVAILABLE", "Service unavailable")

    # Model related errors
    MODEL_NOT_FOUND = ErrorDetail(status.HTTP_404_NOT_FOUND, "MODEL_NOT_FOUND", "Model not found")
    MODEL_UNAVAILABLE = ErrorDetail(status.HTTP_409_CONFLICT, "MODEL_UNAVAILABLE", "Model is not downloaded or its file is not accessible")
    MODEL_LOAD_TIMEOUT = ErrorDetail(status.HTTP_504_GATEWAY_TIMEOUT, "MODEL_LOAD_TIMEOUT", "Model loading timed out")
    MODEL_LOAD_ERROR = ErrorDetail(status.HTTP_500_INTERNAL_SERVER_ERROR, "MODEL_LOAD_ERROR", "Model load failed")
    MODEL_DOWNLOAD_FAILED = ErrorDetail(status.HTTP_502_BAD_GATEWAY, "MODEL_DOWNLOAD_FAILED", "Model download failed")
    MODEL_NOT_LOADED = ErrorDetail(status.HTTP_409_CONFLICT, "MODEL_NOT_LOADED", "No model is currently loaded")

    # Storage related errors
    STORAGE_ACCESS_DENIED = ErrorDetail(status.HTTP_507_INSUFFICIENT_STORAGE, "STORAGE_ACCESS_DENIED", "No writable storage location for model references")
    OUT_OF_RESOURCES = ErrorDetail(status.HTTP_503_SERVICE_UNAVAILABLE, "OUT_OF_RESOURCES", "Insufficient memory or device resources")

    # Inference related errors
    INFERENCE_TIMEOUT = ErrorDetail(status.HTTP_504_GATEWAY_TIMEOUT, "INFERENCE_TIMEOUT", "Inference request timeout")
    INFERENCE_FAILED = ErrorDetail(status.HTTP_500_INTERNAL_SERVER_ERROR, "INFERENCE_FAILED", "Inference execution failed")
    INFERENCE_INPUT_ERROR = ErrorDetail(status.HTTP_400_BAD_REQUEST, "INFERENCE_INPUT_ERROR", "Inference input data error")

    @classmethod
    def for_kind(cls, kind: ErrorKind) -> ErrorDetail:
        return _KIND_TO_DETAIL.get(kind, cls.COMMON_INTERNAL_ERROR)


_KIND_TO_DETAIL = {
    ErrorKind.MODEL_NOT_FOUND: ErrorCode.MODEL_NOT_FOUND,
    ErrorKind.MODEL_UNAVAILABLE: ErrorCode.MODEL_UNAVAILABLE,
    ErrorKind.MODEL_LOAD_TIMEOUT: ErrorCode.MODEL_LOAD_TIMEOUT,
    ErrorKind.MODEL_LOAD_FAILED: ErrorCode.MODEL_LOAD_ERROR,
    ErrorKind.INFERENCE_TIMEOUT: ErrorCode.INFERENCE_TIMEOUT,
    ErrorKind.INFERENCE_FAILED: ErrorCode.INFERENCE_FAILED,
    ErrorKind.DOWNLOAD_FAILED: ErrorCode.MODEL_DOWNLOAD_FAILED,
    ErrorKind.STORAGE_ACCESS_DENIED: ErrorCode.STORAGE_ACCESS_DENIED,
    ErrorKind.OUT_OF_RESOURCES: ErrorCode.OUT_OF_RESOURCES,
}
