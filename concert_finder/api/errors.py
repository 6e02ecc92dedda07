from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from concert_finder.schemas.venue import VenueErrorResponse


class VenueAPIError(Exception):
    def __init__(self, status_code: int, error: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.message = message


async def venue_api_error_handler(request: Request, exc: VenueAPIError) -> JSONResponse:
    body = VenueErrorResponse(error=exc.error, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(VenueAPIError, venue_api_error_handler)
