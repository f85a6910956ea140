from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, File, Request, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from labtrend.models import (
    ImportCsvRequest,
    ImportResponse,
    ImportTextRequest,
    ObservationOut,
)
from labtrend.services.tokens import CATEGORY_LABELS
from labtrend.services.parser_service import (
    ImportResult,
    ImportValidationError,
    import_service,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/import")

ERROR_STATUS: dict[str, int] = {
    "too_large": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
}


def _error_response(exc: ImportValidationError) -> JSONResponse:
    logger.info(f"Import rejected: {exc.code}")
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
        content={"detail": exc.message, "code": exc.code},
    )


def _to_response(result: ImportResult) -> dict[str, Any]:
    rows = [
        ObservationOut(
            id=f"r{i}",
            resolved_flag=resolved,
            category_label=CATEGORY_LABELS.get(row.category_hint or ""),
            **row.to_dict(),
        )
        for i, (row, resolved) in enumerate(zip(result.rows, result.resolved_flags), start=1)
    ]
    return ImportResponse(
        format=result.format,
        rows=rows,
        meta={"row_count": result.row_count, "line_count": result.line_count},
    ).model_dump()


@router.post("/text")
async def import_text_endpoint(payload: ImportTextRequest) -> Any:
    try:
        result = import_service.import_text(payload.text or "")
    except ImportValidationError as e:
        return _error_response(e)
    return _to_response(result)


@router.post("/csv")
async def import_csv_endpoint(
    request: Request,
    file: UploadFile | None = File(default=None),
) -> Any:
    content_type = request.headers.get("content-type", "").lower()

    if file is not None:
        # One byte past the ceiling is enough to reject the upload
        data = await file.read(import_service.max_bytes + 1)
        try:
            import_service.check_size(len(data))
        except ImportValidationError as e:
            return _error_response(e)
        # Excel exports prepend a BOM
        csv_text = data.decode("utf-8-sig", errors="replace")
    else:
        if "application/json" not in content_type:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"detail": 'Send a CSV file or JSON {"csv": "..."}.', "code": "bad_request"},
            )
        try:
            payload = await request.json()
        except Exception:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"detail": "Invalid JSON body.", "code": "bad_request"},
            )
        try:
            csv_text = ImportCsvRequest.model_validate(payload).csv
        except ValidationError:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"detail": "Body must include 'csv'.", "code": "bad_request"},
            )

    try:
        result = import_service.import_csv(csv_text)
    except ImportValidationError as e:
        return _error_response(e)
    return _to_response(result)
