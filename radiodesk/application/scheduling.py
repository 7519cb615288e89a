from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Union

from radiodesk.crosscutting.logging import CorrelationContext, log_schedule_rejected
from radiodesk.domain.entities import BroadcastSchedule
from radiodesk.domain.errors import ScheduleValidationError
from radiodesk.domain.ports import RadioBackend
from radiodesk.domain.timeutils import parse_clock_to_seconds, seconds_to_hms, to_24_hour

logger = logging.getLogger(__name__)

DateInput = Union[date, str, None]
TimeInput = Union[time, datetime, str, None]

SECONDS_PER_DAY = 24 * 3600


def _coerce_date(value: DateInput) -> date:
    if value is None or value == '':
        raise ScheduleValidationError("Please fill all schedule fields")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip()[:10], "%Y-%m-%d").date()
    except ValueError:
        raise ScheduleValidationError(f"Invalid schedule date: {value!r}")


def _coerce_playlist_id(value: Any) -> int:
    if value is None or value == '' or isinstance(value, bool):
        raise ScheduleValidationError("Please select a playlist")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int):
        playlist_id = value
    elif isinstance(value, str) and value.strip().isdigit():
        playlist_id = int(value.strip())
    else:
        raise ScheduleValidationError("Please select a playlist")
    if playlist_id <= 0:
        raise ScheduleValidationError("Please select a playlist")
    return playlist_id


def _coerce_time(value: TimeInput, label: str) -> int:
    """Seconds since midnight for a time-of-day input, within one calendar day."""
    if value is None or value == '':
        raise ScheduleValidationError("Please fill all schedule fields")
    if isinstance(value, datetime):
        value = value.time()
    if isinstance(value, time):
        return value.hour * 3600 + value.minute * 60 + value.second

    seconds = parse_clock_to_seconds(str(value).strip())
    if seconds is None or seconds >= SECONDS_PER_DAY:
        raise ScheduleValidationError(f"Invalid {label}: {value!r}")
    return seconds


def validate_schedule(playlist_id: Optional[int],
                      schedule_date: DateInput,
                      start_time: TimeInput,
                      end_time: TimeInput,
                      schedule_id: Optional[int] = None) -> BroadcastSchedule:
    """Validate a schedule form and return it in canonical form.

    Times may be 12- or 24-hour strings or ``datetime.time`` values; the
    result always carries 24-hour "HH:mm:ss". Raises
    ``ScheduleValidationError`` when a field is missing or the end time is
    not strictly after the start time.
    """
    playlist = _coerce_playlist_id(playlist_id)
    day = _coerce_date(schedule_date)
    start = _coerce_time(start_time, "start time")
    end = _coerce_time(end_time, "end time")

    if end <= start:
        raise ScheduleValidationError("End time must be after start time")

    return BroadcastSchedule(
        id=schedule_id,
        playlist_id=playlist,
        schedule_date=day,
        start_time=seconds_to_hms(start),
        end_time=seconds_to_hms(end),
    )


class ScheduleService:
    """Schedules playlists on the backend. Validation always runs before any call."""

    def __init__(self, backend: RadioBackend):
        self.backend = backend

    def _validated(self, playlist_id, schedule_date, start_time, end_time,
                   schedule_id: Optional[int] = None) -> BroadcastSchedule:
        try:
            return validate_schedule(playlist_id, schedule_date, start_time, end_time,
                                     schedule_id=schedule_id)
        except ScheduleValidationError as e:
            log_schedule_rejected(logger, str(e), playlist_id=playlist_id,
                                  start_time=str(start_time), end_time=str(end_time))
            raise

    def create(self, playlist_id: int, schedule_date: DateInput,
               start_time: TimeInput, end_time: TimeInput) -> Dict[str, Any]:
        schedule = self._validated(playlist_id, schedule_date, start_time, end_time)
        with CorrelationContext(playlist_id=playlist_id, stage='schedule_create'):
            logger.info(f"Scheduling playlist {playlist_id} on {schedule.schedule_date} "
                        f"{schedule.start_time}-{schedule.end_time}")
            return self.backend.create_schedule(schedule.to_payload())

    def update(self, schedule_id: int, playlist_id: int, schedule_date: DateInput,
               start_time: TimeInput, end_time: TimeInput) -> Dict[str, Any]:
        schedule = self._validated(playlist_id, schedule_date, start_time, end_time,
                                   schedule_id=schedule_id)
        with CorrelationContext(schedule_id=schedule_id, stage='schedule_update'):
            logger.info(f"Updating schedule {schedule_id}")
            return self.backend.update_schedule(schedule_id, schedule.to_payload())

    def delete(self, schedule_id: int) -> None:
        with CorrelationContext(schedule_id=schedule_id, stage='schedule_delete'):
            logger.info(f"Deleting schedule {schedule_id}")
            self.backend.delete_schedule(schedule_id)

    def list(self) -> List[BroadcastSchedule]:
        return self.backend.list_schedules()

    def view(self, schedule_id: int) -> Dict[str, Any]:
        with CorrelationContext(schedule_id=schedule_id, stage='schedule_view'):
            return self.backend.get_schedule(schedule_id)

    def today(self) -> Dict[str, Any]:
        """Today's playlist and time window, with times in 24-hour form."""
        data = dict(self.backend.today_schedule() or {})
        for key in ('start_time', 'end_time'):
            if data.get(key):
                data[key] = to_24_hour(data[key])
        return data
