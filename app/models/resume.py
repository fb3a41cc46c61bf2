from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional
import uuid


def new_change_id() -> str:
    return f"change-{uuid.uuid4().hex[:12]}"


class JobDetails(BaseModel):
    """Target job submitted for a generation run (immutable once submitted)"""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    job_title: str = Field(min_length=1)
    company_name: str = Field(min_length=1)
    job_description: str = Field(min_length=1)


class ChangeDetail(BaseModel):
    """One candidate edit proposed by the model.

    Field aliases follow the model's JSON contract (originalText, newText, pageIndex).
    An empty original_text marks a pure addition.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=new_change_id)
    section: str
    summary: str
    original_text: str = Field(default="", alias="originalText")
    new_text: str = Field(alias="newText")
    page_index: int = Field(alias="pageIndex")
    # None until checked against the transcription; additions stay None
    original_text_found: Optional[bool] = None

    @field_validator("original_text", mode="before")
    @classmethod
    def _none_is_addition(cls, value):
        return "" if value is None else value

    @property
    def is_addition(self) -> bool:
        return not self.original_text.strip()


class TextGenerationResult(BaseModel):
    """Candidate-phase output"""
    model_config = ConfigDict(frozen=True)

    cover_letter: str
    summary: str
    changes: List[ChangeDetail]
    ats_keywords: List[str]


class ReviewSummary(BaseModel):
    applied_changes: List[ChangeDetail]
    affected_page_count: int
    approx_input_tokens: int
    estimated_cost: float
    unverified_change_count: int = 0


class FinalAssetsResult(BaseModel):
    final_images: List[str]
    final_texts: List[str]


class GeneratedAssets(BaseModel):
    """Final bundle presented read-only after phase 2"""
    model_config = ConfigDict(frozen=True)

    tailored_resume_images: List[str]
    cover_letter: str
    summary: str
    original_resume_text: str
    rewritten_resume_text: List[str]
    applied_changes: List[ChangeDetail]
    ats_keywords: List[str]


class SectionRequest(BaseModel):
    section: str
