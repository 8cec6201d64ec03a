from pydantic import BaseModel, Field

from pipeline.file_processor import TranscriptionResult


class ErrorResponse(BaseModel):
    code: str
    message: str


class TranscribeResponse(BaseModel):
    text: str


class ReelResolveRequest(BaseModel):
    url: str = Field(min_length=1, max_length=2048)


class ReelResolveResponse(BaseModel):
    video_url: str


class ProcessResponse(BaseModel):
    text: str

    @classmethod
    def from_result(cls, result: TranscriptionResult) -> "ProcessResponse":
        return cls(text=result.text or "")
