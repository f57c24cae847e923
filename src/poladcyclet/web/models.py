"""Pydantic v2 response models for the Polad Cyclet API."""

from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    message: str
    database: str
    tables: int
