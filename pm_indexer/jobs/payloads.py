"""Job payload shapes, tagged by job type."""

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field, ValidationError

from pm_indexer.models.job import JOB_TYPE_EMBED_MARKET_BATCH


class JobPayloadError(ValueError):
    """A job's payload does not match its type. Retrying cannot fix it."""


class EmbedMarketBatchPayload(BaseModel):
    type: Literal["embed_market_batch"] = JOB_TYPE_EMBED_MARKET_BATCH
    market_ids: List[str] = Field(..., min_length=1)


PAYLOAD_MODELS = {
    JOB_TYPE_EMBED_MARKET_BATCH: EmbedMarketBatchPayload,
}


def build_payload(job_type: str, **fields) -> Dict[str, Any]:
    """Validated payload dict for a new job."""
    model = PAYLOAD_MODELS[job_type]
    return model(type=job_type, **fields).model_dump()


def parse_payload(job_type: str, payload: Any) -> BaseModel:
    """Validate a stored payload against its job's type.

    Raises:
        JobPayloadError: Unknown type, mismatched tag, or malformed fields
    """
    model = PAYLOAD_MODELS.get(job_type)
    if model is None:
        raise JobPayloadError(f"unknown job type: {job_type}")
    if not isinstance(payload, dict):
        raise JobPayloadError(f"{job_type} payload must be an object")
    if payload.get("type") != job_type:
        raise JobPayloadError(f"payload tagged {payload.get('type')!r} on a {job_type} job")

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise JobPayloadError(f"invalid {job_type} payload: {e.errors()[0]['msg']}") from e
