"""
Pydantic models for evidence results and HTTP response payloads.
"""

from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class SubmissionResult(BaseModel):
    """Outcome of a successful evidence submission."""
    index: int = Field(..., ge=1, description="Index of the appended block")
    fingerprint: str = Field(..., description="Evidence fingerprint recorded in the block")


class VerificationResult(BaseModel):
    """Outcome of an evidence verification lookup."""
    verified: bool = Field(..., description="Whether the presented media and metadata were recorded")
    index: Optional[int] = Field(None, description="Index of the matching block")
    recorded_at: Optional[int] = Field(None, description="Block creation time (epoch ms)")
    captured_at: Optional[Union[int, float, str]] = Field(None, description="Claimed capture time stored in the block")


class SubmitResponse(BaseModel):
    """Response model for evidence upload."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(True, description="Submission succeeded")
    block_index: int = Field(..., alias="blockIndex", description="Index of the appended block")
    hash: str = Field(..., description="Evidence fingerprint")


class VerifyResponse(BaseModel):
    """Response model for evidence verification."""
    model_config = ConfigDict(populate_by_name=True)

    verified: bool = Field(..., description="Whether a matching block exists")
    block_index: Optional[int] = Field(None, alias="blockIndex", description="Index of the matching block")
    timestamp: Optional[int] = Field(None, description="Block creation time (epoch ms)")


class BlockRecord(BaseModel):
    """Persisted block layout."""
    model_config = ConfigDict(populate_by_name=True)

    index: int = Field(..., ge=0)
    timestamp: int = Field(..., description="Block creation time (epoch ms)")
    data: Dict[str, Any] = Field(..., description="Evidence payload")
    previous_hash: str = Field(..., alias="previousHash")
    hash: str
    nonce: int = Field(..., ge=0)


class ChainValidationResponse(BaseModel):
    """Response model for chain validation."""
    model_config = ConfigDict(populate_by_name=True)

    valid: bool = Field(..., description="Whether every block's hash and linkage check out")
    length: int = Field(..., description="Number of blocks in the ledger")
    tip_hash: str = Field(..., alias="tipHash")


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error message")
    cause: Optional[str] = Field(None, description="Underlying cause")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Overall service status")
    version: str = Field(..., description="API version")
    components: Dict[str, Any] = Field(..., description="Component health status")
