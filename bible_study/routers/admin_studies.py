from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import Database, get_database, get_db
from ..schemas import (
    CreateFromParseRequest,
    CreateStudyRequest,
    CreateStudyResponse,
    ParsedStudy,
    StudyRead,
    StudySummary,
    StudyUpdatePayload,
    UpdateStudyResponse,
    ValidateStudyResponse,
)
from ..services.edit_tree import edit_tree_from_payload
from ..services.ingest import create_from_outcome, create_study
from ..services.reconcile import reconcile_study
from ..services.stats import study_stats
from ..services.studies import delete_study, list_studies, require_study_tree
from ..services.validation import validate_parsed_study
from ..utils import AdminActor, require_admin_user

router = APIRouter(prefix="/api/admin/studies", tags=["admin", "studies"])


@router.post("/validate", response_model=ValidateStudyResponse)
async def admin_study_validate(
    study: ParsedStudy,
    admin: AdminActor = Depends(require_admin_user),
):
    # Preview for the upload screen; nothing is written
    return ValidateStudyResponse(validation=validate_parsed_study(study), stats=study_stats(study))


@router.post("", response_model=CreateStudyResponse)
async def admin_study_create(
    payload: CreateStudyRequest,
    db: Database = Depends(get_database),
    admin: AdminActor = Depends(require_admin_user),
):
    result = await create_study(db, payload.study, payload.options, **admin.audit_fields())
    return CreateStudyResponse(
        study=StudyRead.model_validate(result.study),
        stats=result.stats,
        warnings=result.warnings,
    )


@router.post("/from-parse", response_model=CreateStudyResponse)
async def admin_study_create_from_parse(
    payload: CreateFromParseRequest,
    db: Database = Depends(get_database),
    admin: AdminActor = Depends(require_admin_user),
):
    result = await create_from_outcome(db, payload.outcome, payload.options, **admin.audit_fields())
    return CreateStudyResponse(
        study=StudyRead.model_validate(result.study),
        stats=result.stats,
        warnings=result.warnings,
    )


@router.get("", response_model=list[StudySummary])
async def admin_study_list(
    session: AsyncSession = Depends(get_db),
    admin: AdminActor = Depends(require_admin_user),
):
    return await list_studies(session)


@router.get("/{study_id}", response_model=StudyRead)
async def admin_study_get(
    study_id: int,
    session: AsyncSession = Depends(get_db),
    admin: AdminActor = Depends(require_admin_user),
):
    return StudyRead.model_validate(await require_study_tree(session, study_id))


@router.put("/{study_id}", response_model=UpdateStudyResponse)
async def admin_study_update(
    study_id: int,
    payload: StudyUpdatePayload,
    db: Database = Depends(get_database),
    admin: AdminActor = Depends(require_admin_user),
):
    edit = edit_tree_from_payload(payload)
    result = await reconcile_study(db, study_id, edit, **admin.audit_fields())
    return UpdateStudyResponse(study=StudyRead.model_validate(result.study), report=result.report)


@router.delete("/{study_id}")
async def admin_study_delete(
    study_id: int,
    db: Database = Depends(get_database),
    admin: AdminActor = Depends(require_admin_user),
):
    await delete_study(db, study_id, **admin.audit_fields())
    return {"success": True}


__all__ = ["router"]
