from datetime import date, datetime, time

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from siteguard.models import AttendanceState


class DeploymentRead(BaseModel):
    person_id: int
    person_name: str | None = None
    site_id: int
    site_name: str | None = None
    shift_id: int | None = None
    shift_name: str | None = None
    deployment_date: date
    start_time: time
    end_time: time
    source_assignment_id: int
    supervisor_id: int | None = None
    shift_resolved: bool = True

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("start_time", "end_time")
    def _serialize_hhmm(self, value: time) -> str:
        return value.strftime("%H:%M")


class RosterRowRead(BaseModel):
    person_id: int
    person_name: str
    roster_date: date
    deployment: DeploymentRead | None = None

    model_config = ConfigDict(from_attributes=True)


class RosterResponse(BaseModel):
    date_from: date
    date_to: date
    rows: list[RosterRowRead]


class AttendanceCheckinRequest(BaseModel):
    person_id: int = Field(ge=1)
    site_id: int = Field(ge=1)
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    ts_utc: datetime | None = None
    notes: str | None = Field(default=None, max_length=1000)


class AttendanceCheckoutRequest(BaseModel):
    person_id: int = Field(ge=1)
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    ts_utc: datetime | None = None
    notes: str | None = Field(default=None, max_length=1000)


class MarkAbsentRequest(BaseModel):
    person_id: int = Field(ge=1)
    attendance_date: date
    actor_id: str = Field(min_length=1, max_length=255)
    remarks: str | None = Field(default=None, max_length=1000)


class ForceCheckoutRequest(BaseModel):
    actor_id: str = Field(min_length=1, max_length=255)
    ts_utc: datetime | None = None
    remarks: str | None = Field(default=None, max_length=1000)


class AttendanceRecordRead(BaseModel):
    id: int
    person_id: int
    site_id: int | None
    shift_id: int | None
    assignment_id: int | None
    attendance_date: date
    state: AttendanceState
    check_in_time: datetime | None = None
    check_in_lat: float | None = None
    check_in_lon: float | None = None
    check_in_distance_m: float | None = None
    check_out_time: datetime | None = None
    check_out_lat: float | None = None
    check_out_lon: float | None = None
    check_out_distance_m: float | None = None
    geofence_bypassed: bool = False
    remarks: str | None = None
    marked_by: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AttendanceStatusResponse(BaseModel):
    person_id: int
    attendance_date: date
    state: AttendanceState
    open_record: AttendanceRecordRead | None = None
