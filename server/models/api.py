"""Request and response bodies for the daemon HTTP API."""

from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field


class AcceptedResponse(BaseModel):
    status: Literal["accepted"] = "accepted"
    message: str


class ConflictResponse(BaseModel):
    status: Literal["conflict"] = "conflict"
    error: str


class TaskRunRunRequest(BaseModel):
    """Body of POST /api/taskrun/run."""
    yaml_path: str = ""


class SecretsRequest(BaseModel):
    """Optional body of POST /api/deploy/secrets.

    Keys: AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, SSH_KEY_PATH. Missing keys
    fall back to the daemon's own environment.
    """
    credentials: Dict[str, str] = Field(default_factory=dict)


class ClusterStatusResponse(BaseModel):
    status: str
    error: Optional[str] = None
