"""
Translation of service results into HTTP responses.
"""
from fastapi import HTTPException


FORBIDDEN_ERRORS = {"Unauthorized", "This ticket is not assigned to you"}


def raise_for_result(result: dict) -> dict:
    """Return ``result`` unchanged on success, otherwise raise the matching HTTPException."""
    if result.get("success"):
        return result
    error = result.get("error") or "Request failed"
    if error in FORBIDDEN_ERRORS:
        raise HTTPException(status_code=403, detail=error)
    if error.endswith("not found"):
        raise HTTPException(status_code=404, detail=error)
    raise HTTPException(status_code=400, detail=error)
