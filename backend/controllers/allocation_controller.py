"""HTTP controller layer for allocation runs, results and reports."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from backend.controllers.dependencies import (
    get_allocation_controller,
    get_report_service,
    require_admin,
    require_student,
)
from backend.domain.models import AllocationResult, StudentAllocationRecord
from backend.services.allocation_service import (
    AllocationAlreadyRunningError,
    AllocationLaunchError,
    AllocationNotFoundError,
    AllocationNotRunningError,
    AllocationRunController,
)
from backend.services.auth_service import Principal
from backend.services.report_service import (
    InvalidReportFormatError,
    ReportService,
    ResultNotFoundError,
)
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/api/allocation", tags=["allocation"])


class BlockAvailabilityResponse(BaseModel):
    block: str
    available_spaces: int = Field(ge=0)
    estimated_students: int = Field(ge=0)


class PreAllocationCheckResponse(BaseModel):
    approved_students: int = Field(ge=0)
    available_spaces: int
    can_allocate_all: bool
    warnings: list[str]
    block_availability: list[BlockAvailabilityResponse]


class AllocationStatusResponse(BaseModel):
    is_running: bool
    progress: int = Field(ge=0, le=100)
    current_step: str
    start_time: Optional[str] = None
    last_run_duration_seconds: Optional[float] = Field(default=None, ge=0.0)


class StartAllocationRequest(BaseModel):
    run_id: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=64,
        pattern=r"^[A-Za-z0-9_.-]+$",
    )


class MessageResponse(BaseModel):
    message: str
    run_id: Optional[str] = None


class ConflictResponse(BaseModel):
    student_id: int
    student_name: str
    issue: str


class AllocationViewResponse(BaseModel):
    student_id: int
    student_name: str
    matric_number: str
    block: str
    room_number: str


class AllocationResultResponse(BaseModel):
    id: str
    timestamp: str
    status: str
    students_allocated: int = Field(ge=0)
    students_unallocated: int = Field(ge=0)
    total_students: int = Field(ge=0)
    errors: list[str]
    conflicts: list[ConflictResponse]
    allocations: list[AllocationViewResponse]


class AllocationRecordResponse(BaseModel):
    allocation_id: int
    student_id: int
    student_name: str
    matric_number: str
    room_id: int
    block: str
    room_number: str
    capacity: int = Field(gt=0)
    allocated_at: str


def _to_result_response(result: AllocationResult) -> AllocationResultResponse:
    return AllocationResultResponse(
        id=result.id,
        timestamp=result.timestamp,
        status=result.status.value,
        students_allocated=result.students_allocated,
        students_unallocated=result.students_unallocated,
        total_students=result.total_students,
        errors=list(result.errors),
        conflicts=[
            ConflictResponse(
                student_id=conflict.student_id,
                student_name=conflict.student_name,
                issue=conflict.issue,
            )
            for conflict in result.conflicts
        ],
        allocations=[
            AllocationViewResponse(
                student_id=view.student_id,
                student_name=view.student_name,
                matric_number=view.matric_number,
                block=view.block,
                room_number=view.room_number,
            )
            for view in result.allocations
        ],
    )


def _to_record_response(record: StudentAllocationRecord) -> AllocationRecordResponse:
    return AllocationRecordResponse(
        allocation_id=record.allocation_id,
        student_id=record.student_id,
        student_name=record.student_name,
        matric_number=record.matric_number,
        room_id=record.room_id,
        block=record.block,
        room_number=record.room_number,
        capacity=record.capacity,
        allocated_at=record.allocated_at,
    )


@router.get(
    "/pre-check",
    response_model=PreAllocationCheckResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def pre_allocation_check(
    controller: AllocationRunController = Depends(get_allocation_controller),
) -> PreAllocationCheckResponse:
    try:
        check = controller.get_pre_allocation_check()
        return PreAllocationCheckResponse(
            approved_students=check.approved_students,
            available_spaces=check.available_spaces,
            can_allocate_all=check.can_allocate_all,
            warnings=list(check.warnings),
            block_availability=[
                BlockAvailabilityResponse(
                    block=item.block,
                    available_spaces=item.available_spaces,
                    estimated_students=item.estimated_students,
                )
                for item in check.block_availability
            ],
        )
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected pre-allocation check failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc) or "Failed to compute pre-allocation check",
        ) from exc


@router.get(
    "/status",
    response_model=AllocationStatusResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def allocation_status(
    controller: AllocationRunController = Depends(get_allocation_controller),
) -> AllocationStatusResponse:
    snapshot = controller.get_status()
    return AllocationStatusResponse(
        is_running=snapshot.is_running,
        progress=snapshot.progress,
        current_step=snapshot.current_step,
        start_time=snapshot.start_time,
        last_run_duration_seconds=snapshot.last_run_duration_seconds,
    )


@router.post(
    "/start",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_admin)],
)
async def start_allocation(
    payload: Optional[StartAllocationRequest] = None,
    controller: AllocationRunController = Depends(get_allocation_controller),
) -> MessageResponse:
    """Kick off a background run; progress is observed through /status."""
    try:
        handle = controller.start(run_id=payload.run_id if payload else None)
        return MessageResponse(
            message="Allocation process started successfully.",
            run_id=handle.run_id,
        )
    except AllocationAlreadyRunningError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except AllocationLaunchError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc


@router.post(
    "/cancel",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_admin)],
)
async def cancel_allocation(
    controller: AllocationRunController = Depends(get_allocation_controller),
) -> MessageResponse:
    try:
        handle = controller.cancel()
        return MessageResponse(
            message="Allocation cancellation requested.",
            run_id=handle.run_id,
        )
    except AllocationNotRunningError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc


@router.get(
    "/last-result",
    response_model=AllocationResultResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def last_result(
    controller: AllocationRunController = Depends(get_allocation_controller),
) -> AllocationResultResponse:
    result = controller.get_last_result()
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No allocation results found",
        )
    return _to_result_response(result)


@router.get(
    "/report/{result_id}",
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def download_report(
    result_id: str,
    report_format: Optional[str] = Query(default=None, alias="format"),
    report_service: ReportService = Depends(get_report_service),
) -> Response:
    try:
        report = report_service.render(result_id, report_format or "")
        return Response(
            content=report.content,
            media_type=report.content_type,
            headers={"Content-Disposition": f"attachment; filename={report.filename}"},
        )
    except InvalidReportFormatError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except ResultNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected report rendering failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate allocation report",
        ) from exc


@router.get(
    "/my-allocation",
    response_model=AllocationRecordResponse,
    status_code=status.HTTP_200_OK,
)
async def my_allocation(
    principal: Principal = Depends(require_student),
    controller: AllocationRunController = Depends(get_allocation_controller),
) -> AllocationRecordResponse:
    try:
        record = controller.get_student_allocation(principal.student_id)
        return _to_record_response(record)
    except AllocationNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc


@router.get(
    "/all",
    response_model=list[AllocationRecordResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def all_allocations(
    controller: AllocationRunController = Depends(get_allocation_controller),
) -> list[AllocationRecordResponse]:
    try:
        return [_to_record_response(record) for record in controller.list_all_allocations()]
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected allocation listing failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list allocations",
        ) from exc
