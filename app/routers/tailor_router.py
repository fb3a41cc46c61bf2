from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from typing import List

from app.models.resume import JobDetails, SectionRequest
from app.services.errors import InvalidImage, InvalidTransition, TailorError
from app.services.gateway import ModelGateway
from app.services.orchestrator import SessionStore, Stage, TailoringSession
from app.utils import generators, parsers


router = APIRouter(
    prefix="/api",
    tags=["tailor"]
)

session_store = SessionStore()


def get_gateway(request: Request) -> ModelGateway:
    return request.app.state.gateway


def get_store() -> SessionStore:
    return session_store


def _get_session(store: SessionStore, session_id: str) -> TailoringSession:
    try:
        return store.get(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Session not found.")


def session_view(session: TailoringSession) -> dict:
    view = {
        "session_id": session.id,
        "stage": session.stage.value,
        "error": session.error,
        "job": session.job.model_dump() if session.job else None,
        "page_count": session.page_count,
        "candidates": None,
        "review": None,
        "result": None,
    }
    if session.candidates is not None:
        view["candidates"] = {
            "cover_letter": session.candidates.cover_letter,
            "summary": session.candidates.summary,
            "ats_keywords": session.candidates.ats_keywords,
            "sections": {
                section: [
                    {**change.model_dump(), "applied": session.review.is_applied(change.id)}
                    for change in changes
                ]
                for section, changes in session.review.grouped_by_section().items()
            },
        }
        view["review"] = session.review.summary().model_dump()
    if session.assets is not None:
        view["result"] = session.assets.model_dump()
    return view


async def _run_phase(session: TailoringSession, phase) -> dict:
    try:
        await phase()
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except TailorError:
        return JSONResponse(status_code=502, content=session_view(session))
    return session_view(session)


@router.post("/sessions")
async def create_session(
    job_title: str = Form(...),
    company_name: str = Form(...),
    job_description: str = Form(...),
    resume_files: List[UploadFile] = File(...),
    gateway: ModelGateway = Depends(get_gateway),
    store: SessionStore = Depends(get_store),
):
    try:
        job = JobDetails(job_title=job_title, company_name=company_name, job_description=job_description)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Please provide the job title, company name and job description.")

    try:
        pages = [await parsers.read_image_upload(f) for f in resume_files]
        session = store.create(gateway)
        session.submit_input(job, pages)
    except InvalidImage as e:
        raise HTTPException(status_code=400, detail=str(e))

    return await _run_phase(session, session.generate_candidates)


@router.post("/sessions/{session_id}/generate")
async def retry_generation(session_id: str, store: SessionStore = Depends(get_store)):
    session = _get_session(store, session_id)
    return await _run_phase(session, session.generate_candidates)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, store: SessionStore = Depends(get_store)):
    return session_view(_get_session(store, session_id))


def _require_review(session: TailoringSession) -> None:
    if session.stage != Stage.REVIEWING:
        raise HTTPException(status_code=409, detail="Changes can only be edited during review.")


@router.post("/sessions/{session_id}/changes/{change_id}/toggle")
async def toggle_change(session_id: str, change_id: str, store: SessionStore = Depends(get_store)):
    session = _get_session(store, session_id)
    _require_review(session)
    try:
        applied = session.review.toggle(change_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Change not found.")
    return {"change_id": change_id, "applied": applied, "review": session.review.summary().model_dump()}


@router.post("/sessions/{session_id}/sections/{action}")
async def bulk_section(
    session_id: str,
    action: str,
    body: SectionRequest,
    store: SessionStore = Depends(get_store),
):
    if action not in ("accept", "reject"):
        raise HTTPException(status_code=404, detail="Unknown section action.")
    session = _get_session(store, session_id)
    _require_review(session)
    try:
        updated = session.review.set_section(body.section, action == "accept")
    except KeyError:
        raise HTTPException(status_code=404, detail="Section not found.")
    return {"section": body.section, "updated": updated, "review": session.review.summary().model_dump()}


@router.post("/sessions/{session_id}/finalize")
async def finalize(session_id: str, store: SessionStore = Depends(get_store)):
    session = _get_session(store, session_id)
    return await _run_phase(session, session.finalize)


DOWNLOADS = {
    "resume.pdf": "application/pdf",
    "cover-letter.pdf": "application/pdf",
    "cover-letter.docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "resume-text.docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


@router.get("/sessions/{session_id}/download/{artifact}")
async def download_artifact(session_id: str, artifact: str, store: SessionStore = Depends(get_store)):
    if artifact not in DOWNLOADS:
        raise HTTPException(status_code=404, detail="Unknown artifact.")
    session = _get_session(store, session_id)
    assets = session.assets
    if assets is None:
        raise HTTPException(status_code=409, detail="Results are not ready yet.")

    if artifact == "resume.pdf":
        file_stream = generators.create_images_pdf(assets.tailored_resume_images)
    elif artifact == "cover-letter.pdf":
        file_stream = generators.create_text_pdf(assets.cover_letter)
    elif artifact == "cover-letter.docx":
        file_stream = generators.create_docx(assets.cover_letter)
    else:
        file_stream = generators.create_docx(assets.rewritten_resume_text)

    return StreamingResponse(
        file_stream,
        media_type=DOWNLOADS[artifact],
        headers={"Content-Disposition": f"attachment; filename={artifact}"}
    )


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, store: SessionStore = Depends(get_store)):
    _get_session(store, session_id)
    store.discard(session_id)
    return {"status": "reset"}
