"""Column names of the ``events`` table the compilers target."""

from __future__ import annotations

from .expressions import Compare, Param, Raw

EVENTS_TABLE = "events"

SITE_ID = "site_id"
SESSION_ID = "session_id"
USER_ID = "user_id"
IDENTIFIED_USER_ID = "identified_user_id"
PATHNAME = "pathname"
EVENT_NAME = "event_name"
EVENT_TYPE = "type"
URL_PARAMETERS = "url_parameters"
# "timestamp" doubles as a type name, so it is always quoted.
TIMESTAMP = '"timestamp"'

SITE_PARAM = "site_id"


def site_condition(site_id: int) -> Compare:
    """``site_id = $site_id``; every query over raw events carries it."""
    return Compare(Raw(SITE_ID), "=", Param(int(site_id), name=SITE_PARAM))
