"""
Core module - configuration, database, and response formatting.
"""
from .config import Settings, get_settings
from .db import Base, get_engine, get_sessionmaker, init_models
from .responses import (
    ApiResponse,
    ErrorDetail,
    ErrorCodes,
    success_response,
    error_response,
    pricing_error_response,
    assignment_response,
)

__all__ = [
    "Settings",
    "get_settings",
    "Base",
    "get_engine",
    "get_sessionmaker",
    "init_models",
    "ApiResponse",
    "ErrorDetail",
    "ErrorCodes",
    "success_response",
    "error_response",
    "pricing_error_response",
    "assignment_response",
]
