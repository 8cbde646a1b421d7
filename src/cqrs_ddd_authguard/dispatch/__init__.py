"""Dispatch policy: operation → tier + identifier rule."""

from __future__ import annotations

from .identifiers import extract_client_ip, peek_subject
from .operations import (
    DEFAULT_PATHS,
    DEFAULT_ROUTES,
    IdentifierRule,
    Operation,
    Route,
    operation_for_path,
    resolve,
)
from .policy import Admission, DispatchPolicy, OperationDescriptor

__all__: list[str] = [
    # Operations
    "Operation",
    "IdentifierRule",
    "Route",
    "DEFAULT_ROUTES",
    "DEFAULT_PATHS",
    "operation_for_path",
    "resolve",
    # Identifiers
    "extract_client_ip",
    "peek_subject",
    # Policy
    "OperationDescriptor",
    "Admission",
    "DispatchPolicy",
]
