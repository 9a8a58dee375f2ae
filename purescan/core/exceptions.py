"""Custom exceptions for the application."""

class ApplicationError(Exception):
    """Base application error."""
    pass

class WebcamError(ApplicationError):
    """Webcam access errors."""
    pass

class PermissionDenied(WebcamError):
    """Camera access was refused by the operating system or the user."""
    pass

class DeviceUnavailable(WebcamError):
    """No usable camera device for the requested facing."""
    pass

class ModelError(ApplicationError):
    """Model loading/inference errors."""
    pass

class ModelLoadError(ModelError):
    """Detection model could not be loaded on any compute backend."""
    pass

class CaptureError(ApplicationError):
    """Still capture could not be produced."""
    pass

class ServiceError(ApplicationError):
    """Service operation errors."""
    pass

class AIServiceError(ServiceError):
    """AI service specific errors."""
    pass
