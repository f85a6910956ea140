"""
Pydantic models for request/response validation.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .services.tokens import normalize_date


class ImportTextRequest(BaseModel):
    text: str


class ImportCsvRequest(BaseModel):
    csv: str


class ObservationOut(BaseModel):
    """One parsed observation as returned to the dashboard."""
    id: str
    test_name_raw: str
    test_name_ko: Optional[str] = None
    test_name_en: str = Field(..., description="English or fallback test name")
    category_hint: Optional[
        Literal["general_blood", "chemistry", "coagulation", "urinalysis", "other"]
    ] = None
    category_label: Optional[str] = Field(None, description="Display label for category_hint")
    observed_at: str = Field(..., description="YYYY-MM-DD")
    value_numeric: Optional[float] = None
    value_text: Optional[str] = None
    unit: Optional[str] = None
    ref_low: Optional[float] = None
    ref_high: Optional[float] = None
    flag: Optional[Literal["H", "L"]] = None
    resolved_flag: Optional[Literal["H", "L"]] = Field(
        None, description="Flag after comparing the value with its reference range"
    )
    raw_row: str

    @field_validator("test_name_en")
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Test name cannot be empty")
        return v

    @field_validator("observed_at")
    def validate_observed_at(cls, v):
        if normalize_date(v) != v:
            raise ValueError("observed_at must be a calendar date in YYYY-MM-DD form")
        return v

    @model_validator(mode="after")
    def validate_value(self):
        if (self.value_numeric is None) == (self.value_text is None):
            raise ValueError("Exactly one of value_numeric or value_text must be set")
        return self


class ImportMeta(BaseModel):
    row_count: int
    line_count: int


class ImportResponse(BaseModel):
    format: str
    rows: List[ObservationOut]
    meta: ImportMeta
