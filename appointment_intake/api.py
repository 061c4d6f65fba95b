"""
HTTP API for appointment intake.
Exposes text parsing, image upload and the appointment listing over FastAPI.
"""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, File, HTTPException, UploadFile
from pydantic import BaseModel, Field

from appointment_intake.intake_controller import IntakeController
from appointment_intake.ocr_client import ImageTextExtractionError


class ParseTextRequest(BaseModel):
    text: str = Field(min_length=1)
    timezone: Optional[str] = None


def create_app(controller: Optional[IntakeController] = None) -> FastAPI:
    app = FastAPI(title="Appointment Intake", version="1.0.0")
    intake = controller or IntakeController()

    @app.post("/api/parse-text")
    def parse_text(payload: ParseTextRequest) -> dict:
        try:
            return intake.process_text(payload.text, timezone=payload.timezone)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.post("/api/upload")
    def upload(image: UploadFile = File(...)) -> dict:
        image_bytes = image.file.read()
        if not image_bytes:
            raise HTTPException(status_code=400, detail="No image file")
        try:
            return intake.process_image(image_bytes, image_name=image.filename)
        except ImageTextExtractionError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.get("/api/appointments")
    def appointments() -> dict:
        return intake.list_appointments()

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    return app
