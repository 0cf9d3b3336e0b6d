"""Response envelope and error taxonomy shared by every endpoint."""

from __future__ import annotations

from enum import IntEnum
from typing import Generic, Optional, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel

T = TypeVar("T")


class ResponseCode(IntEnum):
    OK = 0
    INTERNAL_ERROR = 999
    BAD_REQUEST = 1000
    INVALID_TOKEN = 1001
    BAD_FILE_NAME = 1002
    NOT_AN_IMAGE = 1003
    FILE_EXISTED = 1004
    BAD_FILE = 1005
    INVALID_CATEGORY = 1006
    NOT_IMPLEMENTED = 1007

    @property
    def http_status(self) -> int:
        if self is ResponseCode.OK:
            return 200
        if self is ResponseCode.INTERNAL_ERROR:
            return 500
        return 400


class RestResponse(BaseModel, Generic[T]):
    """Wire envelope: ``{"code": int, "msg": str, "data": T | null}``."""

    code: int
    msg: str
    data: Optional[T] = None


class UploadError(Exception):
    """A terminal pipeline failure carrying its taxonomy code."""

    def __init__(self, code: ResponseCode, msg: str, status_code: Optional[int] = None):
        super().__init__(msg)
        self.code = code
        self.msg = msg
        self.status_code = status_code or code.http_status

    def to_response(self) -> JSONResponse:
        return response_no(self.code, self.msg, status_code=self.status_code)


def response_ok(data: object) -> JSONResponse:
    envelope = RestResponse[object](code=int(ResponseCode.OK), msg="ok", data=data)
    return JSONResponse(envelope.model_dump(), status_code=200)


def response_no(code: ResponseCode, msg: str, status_code: Optional[int] = None) -> JSONResponse:
    envelope = RestResponse[object](code=int(code), msg=msg)
    return JSONResponse(envelope.model_dump(), status_code=status_code or code.http_status)


def request_timed_out() -> UploadError:
    return UploadError(ResponseCode.INTERNAL_ERROR, "request timed out", status_code=408)


def not_implemented(feature: Optional[str] = None) -> UploadError:
    msg = f"not implemented: {feature}" if feature else "not implemented"
    return UploadError(ResponseCode.NOT_IMPLEMENTED, msg)
