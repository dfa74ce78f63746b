"""On-demand item jobs (notebook runs, pipeline runs, table maintenance, ...)."""

import logging
import re
from enum import Enum
from typing import Any, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fabric_api.client import FabricApiClient
from fabric_api.pagination import PaginationWalker

logger = logging.getLogger(__name__)

_LOCATION_INSTANCE_PATTERN = re.compile(r"instances/([^/?]+)")


class JobStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    DEDUPED = "Deduped"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Any) -> "JobStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class JobFailureReason(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message: Optional[str] = None
    error_code: Optional[str] = Field(default=None, alias="errorCode")


class JobInstance(BaseModel):
    """A single run of an item job."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    item_id: Optional[str] = Field(default=None, alias="itemId")
    job_type: Optional[str] = Field(default=None, alias="jobType")
    invoke_type: Optional[str] = Field(default=None, alias="invokeType")
    status: JobStatus = JobStatus.NOT_STARTED
    start_time_utc: Optional[str] = Field(default=None, alias="startTimeUtc")
    end_time_utc: Optional[str] = Field(default=None, alias="endTimeUtc")
    failure_reason: Optional[JobFailureReason] = Field(default=None, alias="failureReason")

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> JobStatus:
        return JobStatus.parse(value)


def _instances_path(workspace_id: str, item_id: str) -> str:
    return f"/workspaces/{workspace_id}/items/{item_id}/jobs/instances"


class JobScheduler:
    """Runs and inspects item jobs through the Fabric client."""

    def __init__(self, client: FabricApiClient, walker: Optional[PaginationWalker] = None):
        self._client = client
        self._walker = walker or PaginationWalker(client)

    async def run_on_demand_job(
        self,
        workspace_id: str,
        item_id: str,
        job_type: str,
        execution_data: Optional[dict[str, Any]] = None,
    ) -> JobInstance:
        """
        Start a job. The API usually answers 202 with no body; the instance id
        then comes from the ``Location`` header (``.../instances/{id}``).
        """
        path = f"{_instances_path(workspace_id, item_id)}?jobType={quote(job_type, safe='')}"
        body = {"executionData": execution_data} if execution_data else None
        response = await self._client.post(path, json_body=body)

        if isinstance(response.body, dict) and response.body.get("id"):
            return JobInstance.model_validate(response.body)

        instance_id = None
        location = response.headers.get("Location") if response.headers else None
        if location:
            match = _LOCATION_INSTANCE_PATTERN.search(location)
            if match:
                instance_id = match.group(1)
        if instance_id is None and response.operation is not None:
            instance_id = response.operation.operation_id

        logger.info(
            "Job started",
            extra={
                "resource_id": item_id,
                "job_type": job_type,
                "job_instance_id": instance_id,
            },
        )
        return JobInstance(
            id=instance_id or "unknown",
            item_id=item_id,
            job_type=job_type,
            invoke_type="OnDemand",
            status=JobStatus.NOT_STARTED,
        )

    async def get_job_instance(
        self, workspace_id: str, item_id: str, job_instance_id: str
    ) -> JobInstance:
        response = await self._client.get(
            f"{_instances_path(workspace_id, item_id)}/{job_instance_id}"
        )
        return JobInstance.model_validate(response.body)

    async def cancel_job_instance(
        self, workspace_id: str, item_id: str, job_instance_id: str
    ) -> None:
        await self._client.post(
            f"{_instances_path(workspace_id, item_id)}/{job_instance_id}/cancel"
        )
        logger.info(
            "Job cancel requested",
            extra={"resource_id": item_id, "job_instance_id": job_instance_id},
        )

    async def list_job_instances(self, workspace_id: str, item_id: str) -> list[JobInstance]:
        items = await self._walker.collect_all(_instances_path(workspace_id, item_id))
        return [JobInstance.model_validate(item) for item in items]


__all__ = ["JobFailureReason", "JobInstance", "JobScheduler", "JobStatus"]
