from pydantic import BaseModel, ConfigDict, Field


class ProcessingJob(BaseModel):
    """Queue message asking the worker to turn an uploaded source into a stream."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    video_id: str = Field(alias="videoId")
    owner_id: str = Field(alias="ownerId")
    source_location: str = Field(alias="sourceLocation")  # Local path written by the upload handler

    def to_message(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_message(cls, payload) -> "ProcessingJob":
        return cls.model_validate_json(payload)
