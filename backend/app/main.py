from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from meet_core import DataStore, IdentityService, SchoolRegistry, ScoreRecorder, compute_scoreboard
from meet_core.errors import MeetError
from meet_core.scoreboard import TIE_BREAKS

app = FastAPI(title="Sports Meet Admin API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = logging.getLogger(__name__)

Number = Union[int, float]


class WinnerPayload(BaseModel):
    position: Optional[Union[int, str]] = None
    chest_no: Optional[Union[str, int]] = Field(default=None, alias="chestNo")
    name: Optional[str] = None
    school: Optional[str] = None
    points: Optional[Number] = None

    model_config = ConfigDict(populate_by_name=True)


class TeamEntryPayload(BaseModel):
    team_name: Optional[str] = Field(default=None, alias="teamName")
    school: Optional[str] = None
    points: Optional[Number] = None

    model_config = ConfigDict(populate_by_name=True)


class ScoreRequest(BaseModel):
    event_type: str = Field(alias="eventType")
    event_name: str = Field(alias="eventName")
    winners: Optional[List[WinnerPayload]] = None
    team_entry: Optional[TeamEntryPayload] = Field(default=None, alias="teamEntry")

    model_config = ConfigDict(populate_by_name=True)


class ScoreResponse(BaseModel):
    success: bool
    event_id: str = Field(alias="eventId")
    items_saved: int = Field(alias="itemsSaved")
    slots: List[str]

    model_config = ConfigDict(populate_by_name=True)


class EditWinnerRequest(BaseModel):
    event_id: str = Field(alias="eventId")
    position_id: str = Field(alias="positionId")
    new_chest_no: Optional[Union[str, int]] = Field(default=None, alias="newChestNo")
    new_student_name: Optional[str] = Field(default=None, alias="newStudentName")
    new_school_name: Optional[str] = Field(default=None, alias="newSchoolName")
    new_event_name: Optional[str] = Field(default=None, alias="newEventName")
    new_position: Optional[Union[int, str]] = Field(default=None, alias="newPosition")
    new_points: Optional[Number] = Field(default=None, alias="newPoints")

    model_config = ConfigDict(populate_by_name=True)


class DeleteWinnerRequest(BaseModel):
    event_name: Optional[str] = Field(default=None, alias="eventName")
    position: Optional[Union[int, str]] = None
    chest_no: Optional[Union[str, int]] = Field(default=None, alias="chestNo")
    student_name: Optional[str] = Field(default=None, alias="studentName")
    school_name: Optional[str] = Field(default=None, alias="schoolName")
    position_id: Optional[str] = Field(default=None, alias="positionId")

    model_config = ConfigDict(populate_by_name=True)


class IdentityRequest(BaseModel):
    identifier: str


class AttendanceRequest(BaseModel):
    identifier: str
    event_id: str = Field(alias="eventId")

    model_config = ConfigDict(populate_by_name=True)


class AttendanceResponse(BaseModel):
    success: bool
    message: str
    updated_count: int = Field(alias="updatedCount")
    failed_count: int = Field(alias="failedCount")
    clear_ids: List[str] = Field(alias="clearIds")

    model_config = ConfigDict(populate_by_name=True)


class ChestNumberRequest(BaseModel):
    clear_id: str = Field(alias="clearId")
    chest_number: Union[str, int] = Field(alias="chestNumber")

    model_config = ConfigDict(populate_by_name=True)


class SchoolRequest(BaseModel):
    school_name: str = Field(alias="schoolName")

    model_config = ConfigDict(populate_by_name=True)


class SchoolModel(BaseModel):
    school_id: str = Field(alias="schoolId")
    school_name: str = Field(alias="schoolName")
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class SchoolListResponse(BaseModel):
    schools: List[SchoolModel]


class CatalogEventModel(BaseModel):
    id: str
    name: str
    category: str


class EventListResponse(BaseModel):
    events: List[CatalogEventModel]


@lru_cache(maxsize=1)
def store() -> DataStore:
    return DataStore()


def tie_break_policy() -> str:
    policy = os.getenv("SCOREBOARD_TIE_BREAK", "alphabetical").strip().lower()
    if policy not in TIE_BREAKS:
        logger.warning("Ignoring unknown SCOREBOARD_TIE_BREAK '%s'", policy)
        return "alphabetical"
    return policy


@app.exception_handler(MeetError)
async def meet_error_handler(request: Request, exc: MeetError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request body"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("%s %s failed", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc) or exc.__class__.__name__})


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/score", response_model=ScoreResponse)
def submit_score(payload: ScoreRequest):
    winners = None
    if payload.winners is not None:
        winners = [winner.model_dump(by_alias=True) for winner in payload.winners]
    team_entry = payload.team_entry.model_dump(by_alias=True) if payload.team_entry else None
    result = ScoreRecorder(store()).record_results(
        payload.event_type,
        payload.event_name,
        winners=winners,
        team_entry=team_entry,
    )
    return ScoreResponse(**result)


@app.post("/score/edit")
def edit_score(payload: EditWinnerRequest) -> Dict[str, Any]:
    return ScoreRecorder(store()).edit_winner(
        payload.event_id,
        payload.position_id,
        new_chest_no=payload.new_chest_no,
        new_student_name=payload.new_student_name,
        new_school_name=payload.new_school_name,
        new_event_name=payload.new_event_name,
        new_position=payload.new_position,
        new_points=payload.new_points,
    )


@app.post("/score/delete")
def delete_score(payload: DeleteWinnerRequest) -> Dict[str, Any]:
    return ScoreRecorder(store()).delete_winner(
        payload.event_name,
        payload.position,
        payload.chest_no,
        payload.student_name,
        payload.school_name,
        position_id=payload.position_id,
    )


@app.get("/scores/events")
def score_events() -> Dict[str, Any]:
    return {"events": ScoreRecorder(store()).list_events()}


@app.get("/scores/events/{event_id}")
def score_event_results(event_id: str) -> Dict[str, Any]:
    return {"eventId": event_id, "results": ScoreRecorder(store()).event_results(event_id)}


@app.get("/scoreboard")
def scoreboard() -> Dict[str, Any]:
    records = store().scan("scores")
    return compute_scoreboard(records, tie_break=tie_break_policy()).as_dict()


@app.post("/identity/lookup")
def identity_lookup(payload: IdentityRequest) -> Dict[str, Any]:
    return IdentityService(store()).lookup(payload.identifier)


@app.post("/attendance/mark", response_model=AttendanceResponse)
def mark_attendance(payload: AttendanceRequest):
    return AttendanceResponse(**IdentityService(store()).mark_attendance(payload.identifier, payload.event_id))


@app.post("/attendance/unmark", response_model=AttendanceResponse)
def unmark_attendance(payload: AttendanceRequest):
    return AttendanceResponse(**IdentityService(store()).unmark_attendance(payload.identifier, payload.event_id))


@app.post("/chest-number/assign")
def assign_chest_number(payload: ChestNumberRequest) -> Dict[str, Any]:
    return IdentityService(store()).assign_chest_number(payload.clear_id, str(payload.chest_number))


@app.get("/events", response_model=EventListResponse)
def events():
    catalog = IdentityService(store()).catalog()
    return EventListResponse(events=[CatalogEventModel(**event.as_dict()) for event in catalog.events()])


@app.get("/events/{event_id}/participants")
def event_participants(event_id: str) -> Dict[str, Any]:
    return {"eventId": event_id, "participants": IdentityService(store()).event_roster(event_id)}


@app.get("/schools", response_model=SchoolListResponse)
def list_schools():
    return SchoolListResponse(schools=[SchoolModel(**row) for row in SchoolRegistry(store()).list_schools()])


@app.post("/schools", status_code=201)
def add_school(payload: SchoolRequest) -> Dict[str, Any]:
    return SchoolRegistry(store()).add_school(payload.school_name)


@app.post("/schools/delete")
def delete_school(payload: SchoolRequest) -> Dict[str, Any]:
    return SchoolRegistry(store()).delete_school(payload.school_name)
