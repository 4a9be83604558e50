from fastapi import HTTPException, Request, UploadFile

from ..services.operations import FleetOperations
from ..services.results import OperationResult


ERROR_STATUS = {
    "validation": 422,
    "import": 400,
    "stale_reference": 404,
    "store_write": 502,
}


def get_operations(request: Request) -> FleetOperations:
    return request.app.state.operations


def unwrap(result: OperationResult):
    """Return the intent's value or raise the matching HTTP error."""
    if result.ok:
        return result.value
    error = result.error
    raise HTTPException(
        status_code=ERROR_STATUS.get(error.kind, 400),
        detail={"kind": error.kind, "message": error.message, **error.details},
    )


async def read_csv_upload(file: UploadFile) -> str:
    content = await file.read()
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV file must be UTF-8 encoded")
