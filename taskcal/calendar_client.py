from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import AuthorizedSession, Request
from google.oauth2.credentials import Credentials

from taskcal.cache_store import JsonCacheFile
from taskcal.errors import RemoteFailure, RemoteLookupFailure, RemoteWriteFailure
from taskcal.models import TASK_ID_PROPERTY, CalendarConfig, CalendarEvent, EventPatch

logger = logging.getLogger(__name__)

ACCESS_TOKEN_ENV = "TASKCAL_ACCESS_TOKEN"
TOKEN_FILE_ENV = "TASKCAL_TOKEN_FILE"
CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar"]
GONE_STATUS_CODES = {404, 410}


class CalendarService(Protocol):
    def create(self, event: CalendarEvent) -> str:
        ...

    def get(self, event_id: str) -> CalendarEvent | None:
        ...

    def patch(self, event_id: str, patch: EventPatch) -> CalendarEvent:
        ...

    def delete(self, event_id: str) -> None:
        ...

    def find_by_task_id(self, task_id: str) -> CalendarEvent | None:
        ...


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and str(error.get("message", "")).strip():
            return " ".join(str(error["message"]).split())[:200]
        if isinstance(error, str) and error.strip():
            return " ".join(error.split())[:200]
    text = (response.text or "").strip()
    if text:
        return " ".join(text.split())[:200]
    return "request failed without an error payload"


def _decode(response: requests.Response, failure: type[RemoteFailure]) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise failure(f"response body is not JSON: {_error_message(response)}", status_code=response.status_code) from exc
    if not isinstance(payload, dict):
        raise failure("response body is not a JSON object", status_code=response.status_code)
    return payload


def load_credentials(token_file: str | os.PathLike[str]) -> Credentials:
    """Load an authorized-user token file, refreshing and re-saving it when expired."""
    path = Path(token_file).expanduser()
    try:
        credentials = Credentials.from_authorized_user_file(str(path), scopes=CALENDAR_SCOPES)
    except (OSError, ValueError) as exc:
        raise RuntimeError(f"could not read calendar token file {path}: {exc}") from exc
    if credentials.expired and credentials.refresh_token:
        try:
            credentials.refresh(Request())
        except GoogleAuthError as exc:
            raise RuntimeError(f"could not refresh calendar token from {path}: {exc}") from exc
        JsonCacheFile(path).write(json.loads(credentials.to_json()))
        logger.info("Refreshed calendar access token in %s", path)
    return credentials


def authorized_session(config: CalendarConfig) -> requests.Session:
    """Build a session from the token file, else from a static bearer token.

    The token file session renews its access token by itself; a static token is
    used as-is until it expires.
    """
    token_file = os.getenv(TOKEN_FILE_ENV, "").strip() or config.token_file
    if token_file and Path(token_file).expanduser().exists():
        session = AuthorizedSession(load_credentials(token_file))
        session.headers.update({"Accept": "application/json"})
        return session

    token = config.access_token or os.getenv(ACCESS_TOKEN_ENV, "").strip()
    if not token:
        raise RuntimeError(
            f"no calendar credentials configured (set calendar.token_file, calendar.access_token or {ACCESS_TOKEN_ENV})"
        )
    session = requests.Session()
    session.headers.update({"Authorization": f"Bearer {token}", "Accept": "application/json"})
    return session


class GoogleCalendarService:
    def __init__(self, config: CalendarConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self.session = session or authorized_session(config)
        self._calendar_id = config.calendar_id

    @property
    def calendar_id(self) -> str:
        if not self._calendar_id:
            self._calendar_id = self.resolve_calendar_id(self.config.name)
        return self._calendar_id

    def _events_url(self, event_id: str = "") -> str:
        base = f"{self.config.api_base_url}/calendars/{quote(self.calendar_id, safe='')}/events"
        if event_id:
            return f"{base}/{quote(event_id, safe='')}"
        return base

    def _request(
        self,
        method: str,
        url: str,
        *,
        failure: type[RemoteFailure],
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        allow_gone: bool = False,
    ) -> requests.Response | None:
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json_body,
                timeout=self.config.timeout_seconds,
            )
        except (requests.RequestException, GoogleAuthError) as exc:
            raise failure(f"{method} {url}: {exc}") from exc
        if allow_gone and response.status_code in GONE_STATUS_CODES:
            return None
        if response.status_code >= 400:
            raise failure(_error_message(response), status_code=response.status_code)
        return response

    def resolve_calendar_id(self, name: str) -> str:
        page_token = ""
        while True:
            params = {"pageToken": page_token} if page_token else None
            response = self._request(
                "GET",
                f"{self.config.api_base_url}/users/me/calendarList",
                failure=RemoteLookupFailure,
                params=params,
            )
            payload = _decode(response, RemoteLookupFailure) if response is not None else {}
            for item in payload.get("items") or []:
                if item.get("summary") == name:
                    return str(item["id"])
            page_token = str(payload.get("nextPageToken") or "")
            if not page_token:
                break
        raise RemoteLookupFailure(f"calendar {name!r} not found")

    def create(self, event: CalendarEvent) -> str:
        response = self._request("POST", self._events_url(), failure=RemoteWriteFailure, json_body=event.to_api())
        payload = _decode(response, RemoteWriteFailure) if response is not None else {}
        event_id = str(payload.get("id", "") or "")
        if not event_id:
            raise RemoteWriteFailure("create response carried no event id")
        logger.info("Created event %s for task %s", event_id, event.task_id)
        return event_id

    def get(self, event_id: str) -> CalendarEvent | None:
        response = self._request("GET", self._events_url(event_id), failure=RemoteLookupFailure, allow_gone=True)
        if response is None:
            return None
        event = CalendarEvent.from_api(_decode(response, RemoteLookupFailure))
        if event.status == "cancelled":
            return None
        return event

    def patch(self, event_id: str, patch: EventPatch) -> CalendarEvent:
        response = self._request(
            "PATCH",
            self._events_url(event_id),
            failure=RemoteWriteFailure,
            json_body=patch.to_api(),
        )
        logger.info("Patched event %s fields=%s", event_id, ",".join(patch.fields()))
        return CalendarEvent.from_api(_decode(response, RemoteWriteFailure) if response is not None else {"id": event_id})

    def delete(self, event_id: str) -> None:
        response = self._request("DELETE", self._events_url(event_id), failure=RemoteWriteFailure, allow_gone=True)
        if response is None:
            logger.info("Event %s was already gone", event_id)
        else:
            logger.info("Deleted event %s", event_id)

    def find_by_task_id(self, task_id: str) -> CalendarEvent | None:
        response = self._request(
            "GET",
            self._events_url(),
            failure=RemoteLookupFailure,
            params={"privateExtendedProperty": f"{TASK_ID_PROPERTY}={task_id}", "showDeleted": "false"},
        )
        payload = _decode(response, RemoteLookupFailure) if response is not None else {}
        for item in payload.get("items") or []:
            event = CalendarEvent.from_api(item)
            if event.status != "cancelled":
                return event
        return None
