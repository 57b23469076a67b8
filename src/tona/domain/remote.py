"""Request and response models for the processing service."""

import base64
import binascii

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tona.domain.jobs import JobStatus


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class UploadGroupResponse(_WireModel):
    """Response of a group upload."""

    success: bool
    message: str | None = None
    group_id: str | None = Field(default=None, alias="groupId")


class ProcessingOptions(_WireModel):
    """Optional knobs forwarded to the processing job."""

    quality: str | None = None
    format: str | None = None


class ProcessingRequest(_WireModel):
    """Body of the start-processing call."""

    first_group_id: str = Field(alias="firstGroupId")
    second_group_id: str = Field(alias="secondGroupId")
    options: ProcessingOptions | None = None

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ProcessingResponse(_WireModel):
    """Response of the start-processing call."""

    success: bool
    job_id: str | None = Field(default=None, alias="jobId")
    message: str | None = None


class StatusResponse(_WireModel):
    """Response of a status poll."""

    status: JobStatus
    progress: float | None = None
    message: str | None = None


class ResultResponse(_WireModel):
    """Response of the result call.

    ``data`` travels as base64 text; ``resultUrl`` and ``resultUrls`` reference
    remote objects to download.
    """

    success: bool
    result_url: str | None = Field(default=None, alias="resultUrl")
    result_urls: list[str] | None = Field(default=None, alias="resultUrls")
    data: bytes | None = None
    message: str | None = None

    @field_validator("data", mode="before")
    @classmethod
    def _decode_base64(cls, value: object) -> object:
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except binascii.Error as exc:
                raise ValueError("data is not valid base64") from exc
        return value

    @property
    def urls(self) -> list[str]:
        """All result URLs, single and list form combined, in order."""
        urls: list[str] = []
        if self.result_url:
            urls.append(self.result_url)
        for url in self.result_urls or []:
            if url not in urls:
                urls.append(url)
        return urls


class CancelResponse(_WireModel):
    """Response of the cancel call."""

    success: bool
    message: str | None = None
