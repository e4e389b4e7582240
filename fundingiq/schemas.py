"""Request bodies accepted by the HTTP API."""
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fundingiq import config


class ProcessDocumentRequest(BaseModel):
    """Input for the process-document endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(..., alias="documentId", min_length=1)
    file_path: str = Field(..., alias="filePath", min_length=1)


class ConversationTurn(BaseModel):
    """One earlier message of the conversation, supplied by the caller."""

    role: Literal["user", "assistant"]
    content: str


class QueryRequest(BaseModel):
    """Input for the rag-query endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(..., max_length=config.MAX_QUERY_LENGTH)
    language: str = Field(default=config.DEFAULT_LANGUAGE)
    conversation_history: List[ConversationTurn] = Field(
        default_factory=list, alias="conversationHistory"
    )
    use_knowledge_base: bool = Field(default=True, alias="useKnowledgeBase")

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Query is required")
        return value
