# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""Two way mapping between ReadingProgress rows and the device ReadingState API.

Outbound, a progress row is rendered as a ReadingState with StatusInfo and, when
there is something to say, CurrentBookmark and Statistics blocks. Inbound, a
device submission is merged field by field: only the blocks (and keys) present
in the payload touch the stored row.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy import exc
from sqlalchemy.orm.attributes import flag_modified

from . import logger, ub
from .errors import MalformedRequest
from .helper import convert_to_kobo_timestamp_string, utcnow

log = logger.create()

STATUS_READY_TO_READ = "ReadyToRead"
STATUS_READING = "Reading"
STATUS_FINISHED = "Finished"

# status -> (is_finished, progress)
STATUS_MAP = {
    STATUS_READY_TO_READ: (False, 0.0),
    STATUS_READING: (False, 0.01),
    STATUS_FINISHED: (True, 1.0),
}

RESULT_SUCCESS = {"Result": "Success"}


def get_read_status_for_kobo(progress):
    if progress.is_finished:
        return STATUS_FINISHED
    if (progress.progress or 0) > 0:
        return STATUS_READING
    return STATUS_READY_TO_READ


def get_ub_read_status(kobo_read_status):
    """Map a device status to (is_finished, progress); unknown values read as ReadyToRead"""
    if kobo_read_status not in STATUS_MAP:
        log.debug("Unknown reading status %r, treating it as %s", kobo_read_status, STATUS_READY_TO_READ)
        return STATUS_MAP[STATUS_READY_TO_READ]
    return STATUS_MAP[kobo_read_status]


@dataclass
class BookmarkUpdate:
    progress: Optional[float] = None
    location: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ReadingStatistics:
    spent_reading_minutes: Optional[int] = None
    remaining_time_minutes: Optional[int] = None
    # keys the device sent that have no column of their own
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload):
        stats = cls()
        for key, value in payload.items():
            if key == "SpentReadingMinutes":
                stats.spent_reading_minutes = _as_int(value, key)
            elif key == "RemainingTimeMinutes":
                stats.remaining_time_minutes = _as_int(value, key)
            elif key != "LastModified":
                stats.extra[key] = value
        return stats


@dataclass
class ReadingStateSubmission:
    bookmark: Optional[BookmarkUpdate] = None
    statistics: Optional[ReadingStatistics] = None
    status: Optional[str] = None
    has_status: bool = False

    @property
    def is_empty(self):
        return self.bookmark is None and self.statistics is None and not self.has_status


def _as_int(value, key):
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedRequest("Malformed request data: {} is not a number".format(key))


def parse_submission(request_data):
    """Validate a PUT body and pull out its first ReadingState, before anything is stored"""
    if not isinstance(request_data, dict):
        raise MalformedRequest("Malformed request data is missing 'ReadingStates' key")
    reading_states = request_data.get("ReadingStates")
    if not isinstance(reading_states, list) or not reading_states or not isinstance(reading_states[0], dict):
        raise MalformedRequest("Malformed request data is missing 'ReadingStates' key")
    request_reading_state = reading_states[0]
    submission = ReadingStateSubmission()

    request_bookmark = request_reading_state.get("CurrentBookmark")
    if request_bookmark:
        if not isinstance(request_bookmark, dict):
            raise MalformedRequest("Malformed request data: CurrentBookmark is not an object")
        bookmark = BookmarkUpdate()
        if request_bookmark.get("ProgressPercent") is not None:
            try:
                percent = float(request_bookmark["ProgressPercent"])
            except (TypeError, ValueError):
                raise MalformedRequest("Malformed request data: ProgressPercent is not a number")
            bookmark.progress = min(max(percent / 100.0, 0.0), 1.0)
        location = request_bookmark.get("Location")
        if location:
            if not isinstance(location, dict):
                raise MalformedRequest("Malformed request data: Location is not an object")
            for key, column in (("Value", "location_value"), ("Type", "location_type"),
                                ("Source", "location_source")):
                if key in location:
                    bookmark.location[column] = location[key]
        submission.bookmark = bookmark

    request_statistics = request_reading_state.get("Statistics")
    if request_statistics:
        if not isinstance(request_statistics, dict):
            raise MalformedRequest("Malformed request data: Statistics is not an object")
        submission.statistics = ReadingStatistics.from_payload(request_statistics)

    request_status_info = request_reading_state.get("StatusInfo")
    if request_status_info:
        if not isinstance(request_status_info, dict):
            raise MalformedRequest("Malformed request data: StatusInfo is not an object")
        submission.status = request_status_info.get("Status")
        submission.has_status = True

    return submission


_TRACKED_COLUMNS = ("is_finished", "progress", "location_value", "location_type", "location_source",
                    "spent_reading_minutes", "remaining_time_minutes", "times_started_reading")


def _snapshot(progress):
    return tuple(getattr(progress, column) for column in _TRACKED_COLUMNS) + \
        (dict(progress.extra_statistics or {}),)


def apply_submission(progress, submission, now=None):
    """Merge a parsed submission into a progress row.

    Returns the per block results for the UpdateResults entry. The status block goes
    last, so its fixed progress value replaces a bookmark percentage of the same
    submission. last_modified only moves when the row ends up different.
    """
    now = now or utcnow()
    results = {}
    before = _snapshot(progress)

    if submission.bookmark is not None:
        if submission.bookmark.progress is not None:
            progress.progress = submission.bookmark.progress
        for column, value in submission.bookmark.location.items():
            setattr(progress, column, value)
        results["CurrentBookmarkResult"] = RESULT_SUCCESS

    if submission.statistics is not None:
        statistics = submission.statistics
        if statistics.spent_reading_minutes is not None:
            progress.spent_reading_minutes = statistics.spent_reading_minutes
        if statistics.remaining_time_minutes is not None:
            progress.remaining_time_minutes = statistics.remaining_time_minutes
        if statistics.extra:
            extra = dict(progress.extra_statistics or {})
            if any(extra.get(key) != value for key, value in statistics.extra.items()):
                extra.update(statistics.extra)
                progress.extra_statistics = extra
                flag_modified(progress, "extra_statistics")
        results["StatisticsResult"] = RESULT_SUCCESS

    if submission.has_status:
        is_finished, status_progress = get_ub_read_status(submission.status)
        was_finished = bool(progress.is_finished)
        progress.progress = status_progress
        progress.is_finished = is_finished
        # a restart only counts when the completion flag flips
        if submission.status == STATUS_READING and was_finished != is_finished:
            progress.times_started_reading = (progress.times_started_reading or 0) + 1
            progress.last_time_started_reading = now
        results["StatusInfoResult"] = RESULT_SUCCESS

    if _snapshot(progress) != before:
        progress.last_modified = now
    return results


def _progress_query(_session, user_id, book_id):
    return _session.query(ub.ReadingProgress).filter(ub.ReadingProgress.user_id == user_id,
                                                     ub.ReadingProgress.book_id == book_id)


def get_reading_progress(_session, user_id, book_id):
    return _progress_query(_session, user_id, book_id).one_or_none()


def get_or_create_reading_progress(_session, user_id, book_id):
    """Fetch the (user, book) progress row, inserting an empty one if there is none yet.

    Two requests may race to create the row; the loser of the unique constraint
    rolls back and reads the winner's row.
    """
    progress = get_reading_progress(_session, user_id, book_id)
    if progress is not None:
        return progress
    now = utcnow()
    progress = ub.ReadingProgress(user_id=user_id, book_id=book_id, is_finished=False, progress=0.0,
                                  times_started_reading=0, extra_statistics={},
                                  created=now, last_modified=now)
    _session.add(progress)
    try:
        _session.commit()
    except exc.IntegrityError:
        _session.rollback()
        log.debug("Reading progress for user %s book %s created concurrently", user_id, book_id)
        progress = _progress_query(_session, user_id, book_id).one()
    return progress


def get_status_info_response(progress):
    resp = {
        "LastModified": convert_to_kobo_timestamp_string(progress.last_modified),
        "Status": get_read_status_for_kobo(progress),
        "TimesStartedReading": progress.times_started_reading or 0,
    }
    if progress.last_time_started_reading:
        resp["LastTimeStartedReading"] = convert_to_kobo_timestamp_string(progress.last_time_started_reading)
    return resp


def get_statistics_response(progress):
    if not progress.spent_reading_minutes and not progress.remaining_time_minutes:
        return None
    resp = {
        "LastModified": convert_to_kobo_timestamp_string(progress.last_modified),
    }
    if progress.spent_reading_minutes:
        resp["SpentReadingMinutes"] = progress.spent_reading_minutes
    if progress.remaining_time_minutes:
        resp["RemainingTimeMinutes"] = progress.remaining_time_minutes
    return resp


def get_current_bookmark_response(progress):
    if not progress.progress and not progress.location_value:
        return None
    resp = {
        "LastModified": convert_to_kobo_timestamp_string(progress.last_modified),
    }
    if progress.progress:
        resp["ProgressPercent"] = int(round(progress.progress * 100))
        resp["ContentSourceProgressPercent"] = resp["ProgressPercent"]
    if progress.location_value:
        resp["Location"] = {
            "Value": progress.location_value,
            "Type": progress.location_type or "Position",
            "Source": progress.location_source or "User",
        }
    return resp


def get_kobo_reading_state_response(book, progress):
    resp = {
        "EntitlementId": book.uuid,
        "Created": convert_to_kobo_timestamp_string(book.timestamp),
        "LastModified": convert_to_kobo_timestamp_string(progress.last_modified),
        "PriorityTimestamp": convert_to_kobo_timestamp_string(progress.last_modified),
        "StatusInfo": get_status_info_response(progress),
    }
    statistics = get_statistics_response(progress)
    if statistics:
        resp["Statistics"] = statistics
    bookmark = get_current_bookmark_response(progress)
    if bookmark:
        resp["CurrentBookmark"] = bookmark
    return resp


def update_reading_state(_session, user_id, book, request_data):
    """Apply a PUT body to the user's progress on a book and build the reply"""
    submission = parse_submission(request_data)
    progress = get_or_create_reading_progress(_session, user_id, book.id)
    update_results_response = {"EntitlementId": book.uuid}
    if submission.is_empty:
        log.debug("Empty reading state submission for book %s", book.uuid)
    else:
        update_results_response.update(apply_submission(progress, submission))
        ub.session_commit(_session)
    return {
        "RequestResult": "Success",
        "UpdateResults": [update_results_response],
    }
