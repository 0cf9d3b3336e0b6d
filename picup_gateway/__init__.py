from .app import GatewayConfig, create_app
from .categories import CategoryConfig, CategoryTable
from .responses import ResponseCode, RestResponse, UploadError

__all__ = [
    "GatewayConfig",
    "create_app",
    "CategoryConfig",
    "CategoryTable",
    "ResponseCode",
    "RestResponse",
    "UploadError",
]
