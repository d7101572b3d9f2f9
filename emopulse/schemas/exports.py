"""
S3 event notification payload (ObjectCreated), as delivered to
POST /exports/notifications. Only the fields the completion handler
reads are modelled.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _S3Bucket(BaseModel):
    model_config = ConfigDict(extra="ignore")
    name: Optional[str] = None


class _S3Object(BaseModel):
    model_config = ConfigDict(extra="ignore")
    key: Optional[str] = None


class _S3Entity(BaseModel):
    model_config = ConfigDict(extra="ignore")
    bucket: _S3Bucket = Field(default_factory=_S3Bucket)
    object: _S3Object = Field(default_factory=_S3Object)


class S3EventRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")
    s3: _S3Entity = Field(default_factory=_S3Entity)


class S3EventNotification(BaseModel):
    model_config = ConfigDict(extra="ignore")
    Records: list[S3EventRecord] = Field(default_factory=list)


class ExportNotificationResponse(BaseModel):
    received: int = Field(description="Records in the notification.")
    transformed: list[str] = Field(description="Completion markers that were processed.")
