"""Middleware modules for the Companion API."""

from companion.middleware.functions_cors import FunctionsCORSMiddleware
from companion.middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware

__all__ = ["FunctionsCORSMiddleware", "RequestIDMiddleware", "REQUEST_ID_HEADER"]
