from .client import PicupClient, PicupError

__all__ = [
    "PicupClient",
    "PicupError",
]
