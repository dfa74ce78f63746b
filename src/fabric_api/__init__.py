"""
Remote-API layer for Microsoft Fabric.

Components:
    - FabricApiClient: aiohttp client with bearer auth and error normalization
    - OperationPoller: Follows 202 Accepted operations to a terminal state
    - PaginationWalker: Exhausts continuation-token listings
    - WriteGuard: Allow-list gate for destructive actions
    - Orchestrator: Facade composing the above
    - JobScheduler: On-demand item jobs
"""

from fabric_api.client import (
    FABRIC_BASE_URL,
    POWERBI_BASE_URL,
    ApiResponse,
    FabricApiClient,
)
from fabric_api.guard import ALLOW_ALL, WriteGuard, parse_allow_list
from fabric_api.jobs import JobInstance, JobScheduler, JobStatus
from fabric_api.lro import (
    OperationHandle,
    OperationPoller,
    OperationState,
    OperationStatus,
    extract_operation_id,
)
from fabric_api.orchestrator import Orchestrator
from fabric_api.pagination import Page, PaginationWalker

__all__ = [
    "ALLOW_ALL",
    "ApiResponse",
    "FABRIC_BASE_URL",
    "FabricApiClient",
    "JobInstance",
    "JobScheduler",
    "JobStatus",
    "OperationHandle",
    "OperationPoller",
    "OperationState",
    "OperationStatus",
    "Orchestrator",
    "POWERBI_BASE_URL",
    "Page",
    "PaginationWalker",
    "WriteGuard",
    "extract_operation_id",
    "parse_allow_list",
]
