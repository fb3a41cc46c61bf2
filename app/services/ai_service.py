import json
import logging
from typing import List, Sequence

from pydantic import ValidationError

from app.models.gateway import ImagePart, Modality
from app.models.resume import ChangeDetail, JobDetails, TextGenerationResult, new_change_id
from app.services.errors import MalformedModelOutput, PageCountMismatch
from app.services.gateway import ModelGateway
from app.utils.parsers import extract_json

logger = logging.getLogger(__name__)


async def generate_text_assets(
    gateway: ModelGateway, pages: Sequence[ImagePart], job: JobDetails
) -> TextGenerationResult:
    """
    Analyze the resume pages against the job and return the candidate change set,
    cover letter, tailoring summary and ATS keywords.
    Each candidate gets a fresh synthetic id; page indexes are taken as given.
    """
    page_count = len(pages)
    prompt = f"""
    # Role
    You are a professional resume tailoring assistant.

    # Task
    Analyze the candidate's resume (provided as {page_count} page image(s), in order) against
    the job description for "{job.job_title}" at "{job.company_name}" and propose targeted edits.

    # Deliverables
    - coverLetter: a professional cover letter for this role.
    - executiveSummary: a short explanation of the tailoring strategy.
    - atsKeywords: the ATS keywords the tailored resume should contain.
    - changesMade: an itemized list of edits. Each item has:
      - section: the resume section being edited (e.g. "Professional Summary", "Experience").
      - summary: one human-readable sentence describing the edit.
      - originalText: the EXACT verbatim text span being replaced, copied from the page.
        Use an empty string if the change is a pure addition.
      - newText: the proposed replacement or added text.
      - pageIndex: zero-based index of the page image that holds the text (0 to {page_count - 1}).

    # Constraints
    - Never invent experience, employers, dates or credentials.
    - Keep each edit small enough to be applied on its own.
    - Return ONLY a single valid JSON object inside a ```json markdown block. No other text.

    # Output Format
    ```json
    {{
      "coverLetter": "Dear Hiring Manager,\\n\\n...",
      "executiveSummary": "The resume was updated to highlight ...",
      "changesMade": [
        {{
          "section": "Experience",
          "summary": "Quantified the team leadership bullet",
          "originalText": "Led team",
          "newText": "Led a team of 5 engineers",
          "pageIndex": 0
        }}
      ],
      "atsKeywords": ["Product Roadmap", "Agile"]
    }}
    ```

    # Input Data
    <job_description>
    {job.job_description}
    </job_description>
    """
    response = await gateway.generate(pages, prompt, modalities=(Modality.TEXT,))
    payload = extract_json(response.text, "content generation")

    try:
        changes = [
            ChangeDetail.model_validate({**item, "id": new_change_id(), "original_text_found": None})
            for item in payload.get("changesMade") or []
        ]
        return TextGenerationResult(
            cover_letter=payload["coverLetter"],
            summary=payload.get("executiveSummary", ""),
            changes=changes,
            ats_keywords=payload.get("atsKeywords") or [],
        )
    except (KeyError, TypeError, ValidationError) as e:
        logger.error("Candidate payload failed validation: %s", e)
        raise MalformedModelOutput("content generation", response.text, str(e)) from e


async def extract_original_text(gateway: ModelGateway, pages: Sequence[ImagePart]) -> str:
    prompt = (
        "Transcribe all the text from the following resume images. Preserve the original "
        "line breaks and basic paragraph structure. Output only the plain text content."
    )
    response = await gateway.generate(pages, prompt, modalities=(Modality.TEXT,))
    return response.text


async def synthesize_final_text(
    gateway: ModelGateway,
    original_text: str,
    all_changes: Sequence[ChangeDetail],
    applied_changes: Sequence[ChangeDetail],
    page_count: int,
) -> List[str]:
    """Rewrite the resume with only the applied changes, split into page_count strings."""
    applied_ids = {c.id for c in applied_changes}
    rejected = [c for c in all_changes if c.id not in applied_ids]

    prompt = f"""
    # Role
    You are an expert resume editor.

    # Task
    Rewrite the original resume text below as one cohesive document, incorporating ONLY the
    applied changes. Ignore every rejected change. Where no changes are applied, return the
    original text unchanged apart from formatting.

    # Constraints
    - Split the result into EXACTLY {page_count} strings, one per page, in page order.
      Each change belongs to the page given by its pageIndex.
    - Do not add content beyond the applied changes.
    - Return ONLY a single valid JSON object inside a ```json markdown block.

    # Output Format
    ```json
    {{"rewrittenResumeText": ["text of page 1", "..."]}}
    ```

    # Input Data
    <original_resume>
    {original_text}
    </original_resume>

    <applied_changes>
    {_changes_as_json(applied_changes)}
    </applied_changes>

    <rejected_changes>
    {_changes_as_json(rejected)}
    </rejected_changes>
    """
    response = await gateway.generate([], prompt, modalities=(Modality.TEXT,))
    payload = extract_json(response.text, "final text synthesis")

    pages = payload.get("rewrittenResumeText")
    if not isinstance(pages, list) or not all(isinstance(p, str) for p in pages):
        raise MalformedModelOutput(
            "final text synthesis", response.text, "rewrittenResumeText is not a list of strings"
        )
    if len(pages) != page_count:
        raise PageCountMismatch(page_count, len(pages))
    return pages


def _changes_as_json(changes: Sequence[ChangeDetail]) -> str:
    items = [
        {
            "section": c.section,
            "originalText": c.original_text,
            "newText": c.new_text,
            "pageIndex": c.page_index,
        }
        for c in changes
    ]
    return json.dumps(items, indent=2)
