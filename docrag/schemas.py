"""Request and response models for the HTTP API."""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from docrag import config
from docrag.models import SearchResult


class AskRequest(BaseModel):
    """Body of ``POST /ask`` and ``POST /ask/stream``."""
    question: str = Field(..., max_length=config.MAX_QUESTION_LENGTH)

    @field_validator("question")
    @classmethod
    def question_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Question must not be empty")
        return value


class SearchRequest(BaseModel):
    """Query parameters of ``GET /search``."""
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(..., max_length=config.MAX_QUESTION_LENGTH)
    top_k: Optional[int] = Field(None, alias="topK")

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Query must not be empty")
        return value


class Source(BaseModel):
    id: str
    content: str
    source: str
    sequence: int
    similarity: float

    @classmethod
    def from_result(cls, result: SearchResult) -> "Source":
        return cls(**result.to_dict())


class AskResponse(BaseModel):
    question: str
    answer: str
    sources: List[Source]


class RetrievedDocument(BaseModel):
    """A chunk returned by the retrieval debug endpoint."""
    content: str
    source: str
    similarity: float


class RetrieveResponse(BaseModel):
    question: str
    documents: List[RetrievedDocument]


class IngestResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    documents_ingested: int = Field(..., alias="documentsIngested")


class SearchResponse(BaseModel):
    query: str
    results: List[RetrievedDocument]
    count: int
