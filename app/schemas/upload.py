"""Schemas for the upload endpoints."""

from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    """Response after saving uploaded contracts to disk (data/uploads/). Indexing continues in the background."""

    files_saved: int = Field(..., description="Number of files successfully saved.")
    paths: list[str] = Field(..., description="Relative paths to saved files, e.g. data/uploads/msa.pdf")

    model_config = {
        "json_schema_extra": {
            "examples": [{"files_saved": 2, "paths": ["data/uploads/msa.pdf", "data/uploads/nda.txt"]}]
        }
    }


class UploadRecord(BaseModel):
    """One row of the upload registry."""

    id: int
    path: str
    source: str
    status: str = Field(..., description="pending, indexed or failed")
    chunk_count: int = 0
    error: str | None = None
    created_at: str
    updated_at: str
