#!/usr/bin/env python3
"""
Strava Activity Type Fixer
Reclassifies runs recorded with an implausible average speed: runs that are too
fast become rides, runs that are too slow become walks. Both are renamed to
"<distance>km <Type>" through the Strava API.
"""

import os
import sys
import math
import time
import logging
import hashlib
from dataclasses import dataclass
from typing import List, Dict, Optional, Any, Mapping

import requests


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

STRAVA_API_BASE_URL = "https://www.strava.com/api/v3"
STRAVA_ACTIVITY_URL_TMPL = "https://www.strava.com/activities/{id}"

# Max allowed by Strava API
ACTIVITIES_PER_PAGE = 200

HTTP_TIMEOUT_SECONDS = 30

# Unit conversions
METERS_PER_SECOND_TO_KMH = 3.6

# Default plausibility window for running speed
DEFAULT_MIN_RUNNING_SPEED_KMH = 6.0
DEFAULT_MAX_RUNNING_SPEED_KMH = 20.0
DEFAULT_LOG_LEVEL = "DEBUG"

RUN_TYPE = "Run"
RIDE_TYPE = "Ride"
WALK_TYPE = "Walk"

UNPARSEABLE_BODY_PLACEHOLDER = "<Failed to parse response body; perhaps there is none>"


class ReclassifyError(Exception):
    """Base class for errors that abort a reclassification run."""


class FetchError(ReclassifyError):
    """Fetching a page of activities failed."""


class UpdateError(ReclassifyError):
    """Updating an activity failed."""


class ConfigError(ValueError):
    """The environment does not hold a usable configuration."""


@dataclass(frozen=True)
class Config:
    api_token: str
    min_running_speed_kmh: float = DEFAULT_MIN_RUNNING_SPEED_KMH
    max_running_speed_kmh: float = DEFAULT_MAX_RUNNING_SPEED_KMH
    log_level: str = DEFAULT_LOG_LEVEL


@dataclass(frozen=True)
class ActivityUpdate:
    """New type and name for a single activity. Sent once, then discarded."""
    id: int
    type: str
    name: str

    def to_payload(self) -> Dict[str, Any]:
        return {"id": self.id, "type": self.type, "name": self.name}


def _now_seconds() -> int:
    return int(time.time())


def _is_success(response: requests.Response) -> bool:
    return 200 <= response.status_code < 300


def _token_fingerprint(token: str) -> str:
    """Return a short, non-reversible fingerprint for a token for debugging."""
    if not token:
        return "none"
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:10]


def _parse_speed(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number of km/h, got {raw!r}")
    if math.isnan(value) or value < 0:
        raise ConfigError(f"{name} must be a non-negative number of km/h, got {raw!r}")
    return value


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """
    Build the configuration from environment variables.

    Required:
      - STRAVA_API_TOKEN
    Optional:
      - MIN_RUNNING_SPEED_KMH (default 6.0)
      - MAX_RUNNING_SPEED_KMH (default 20.0)
      - LOG_LEVEL (default DEBUG)
    """
    if environ is None:
        environ = os.environ

    api_token = (environ.get("STRAVA_API_TOKEN") or "").strip()

    missing = []
    if not api_token:
        missing.append("STRAVA_API_TOKEN")
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    min_speed = _parse_speed(environ, "MIN_RUNNING_SPEED_KMH", DEFAULT_MIN_RUNNING_SPEED_KMH)
    max_speed = _parse_speed(environ, "MAX_RUNNING_SPEED_KMH", DEFAULT_MAX_RUNNING_SPEED_KMH)
    if min_speed > max_speed:
        raise ConfigError(
            f"MIN_RUNNING_SPEED_KMH ({min_speed}) must not exceed "
            f"MAX_RUNNING_SPEED_KMH ({max_speed})"
        )

    log_level = (environ.get("LOG_LEVEL") or DEFAULT_LOG_LEVEL).strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigError(f"LOG_LEVEL must be a logging level name, got {log_level!r}")

    return Config(
        api_token=api_token,
        min_running_speed_kmh=min_speed,
        max_running_speed_kmh=max_speed,
        log_level=log_level,
    )


def log_failed_response(response: requests.Response) -> None:
    """
    Log status, reason and as much of the body of a failed response as we can get.

    Tries JSON first, then raw text, then a fixed placeholder. Never raises.
    """
    try:
        error_details: Any = response.json()
    except (ValueError, requests.exceptions.RequestException):
        try:
            error_details = response.text
        except (ValueError, UnicodeDecodeError, requests.exceptions.RequestException):
            error_details = UNPARSEABLE_BODY_PLACEHOLDER

    logger.error(
        "Request failed (status=%s, status_text=%s, error_details=%s)",
        getattr(response, "status_code", None),
        getattr(response, "reason", None),
        error_details,
    )


class StravaClient:
    """Client for the two Strava endpoints the fixer needs: list and update."""

    def __init__(self, api_token: str, base_url: str = STRAVA_API_BASE_URL):
        self.api_token = api_token
        self.base_url = base_url
        logger.debug(
            "Using Strava API token (fingerprint=%s)", _token_fingerprint(api_token)
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        return requests.request(
            method, url, headers=self._headers(), timeout=HTTP_TIMEOUT_SECONDS, **kwargs
        )

    def get_all_activities(self, before: Optional[int] = None) -> List[Dict]:
        """
        Fetch every activity of the athlete, page by page, until an empty page.

        `before` is captured once so activities created while paging cannot
        shift later pages.
        """
        if before is None:
            before = _now_seconds()
        url = f"{self.base_url}/athlete/activities"

        all_activities: List[Dict] = []
        page = 1

        while True:
            params = {
                "before": before,
                "after": 0,
                "page": page,
                "per_page": ACTIVITIES_PER_PAGE,
            }
            try:
                response = self._request("GET", url, params=params)
            except requests.exceptions.RequestException as e:
                logger.error("Error fetching Strava activities (page=%s): %s", page, e)
                raise FetchError(f"Fetching page {page} of activities failed") from e

            if not _is_success(response):
                log_failed_response(response)
                raise FetchError(
                    f"Fetching page {page} of activities failed with status {response.status_code}"
                )

            activities = response.json()
            logger.debug("Fetched a page of activities (page=%s, count=%s)", page, len(activities))

            if not activities:
                break

            all_activities.extend(activities)
            page += 1

        logger.info("Fetched activities from Strava (count=%s)", len(all_activities))
        return all_activities

    def update_activity(self, update: ActivityUpdate) -> None:
        """Set the new type and name of an activity."""
        url = f"{self.base_url}/activities/{update.id}"
        try:
            response = self._request("PUT", url, json=update.to_payload())
        except requests.exceptions.RequestException as e:
            logger.error("Error updating Strava activity %s: %s", update.id, e)
            raise UpdateError(f"Updating activity {update.id} failed") from e

        if not _is_success(response):
            log_failed_response(response)
            raise UpdateError(
                f"Updating activity {update.id} failed with status {response.status_code}"
            )


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves going up (0.5 -> 1, -0.5 -> 0)."""
    return math.floor(value + 0.5)


def _format_number(value: float) -> str:
    # 10.0 -> "10", 10.25 -> "10.25"
    if value == int(value):
        return str(int(value))
    return str(value)


def get_strava_url(activity: Dict) -> str:
    return STRAVA_ACTIVITY_URL_TMPL.format(id=activity.get("id"))


def get_average_speed_kmph(activity: Dict) -> float:
    """Average speed in km/h rounded to 2 decimals."""
    average_speed = activity.get("average_speed") or 0
    return round_half_up(average_speed * METERS_PER_SECOND_TO_KMH * 100) / 100


def get_distance_km_str(activity: Dict) -> str:
    """Distance as "<km>km", rounded to the nearest 10 meters."""
    distance = activity.get("distance") or 0
    return f"{_format_number(round_half_up(distance / 10) / 100)}km"


def classify_activity(activity: Dict, config: Config) -> Optional[ActivityUpdate]:
    """
    Decide whether a run should become a ride or a walk.

    Returns the update to send, or None when the activity is left alone.
    Speeds exactly on a threshold count as a legit run.
    """
    if activity.get("type") != RUN_TYPE:
        logger.debug(
            "Skipping activity as it is not a run (type=%s, url=%s)",
            activity.get("type"),
            get_strava_url(activity),
        )
        return None

    if activity.get("average_speed") is None:
        logger.debug(
            "Skipping run without average speed (url=%s)", get_strava_url(activity)
        )
        return None

    average_speed_kmph = get_average_speed_kmph(activity)

    if average_speed_kmph > config.max_running_speed_kmh:
        update = ActivityUpdate(
            id=activity["id"],
            type=RIDE_TYPE,
            name=f"{get_distance_km_str(activity)} {RIDE_TYPE}",
        )
        logger.info(
            "Activity is too fast, changing to ride (average_speed_kmph=%s, url=%s, update=%s)",
            average_speed_kmph,
            get_strava_url(activity),
            update.to_payload(),
        )
        return update

    if average_speed_kmph < config.min_running_speed_kmh:
        update = ActivityUpdate(
            id=activity["id"],
            type=WALK_TYPE,
            name=f"{get_distance_km_str(activity)} {WALK_TYPE}",
        )
        logger.info(
            "Activity is too slow, changing to walk (average_speed_kmph=%s, url=%s, update=%s)",
            average_speed_kmph,
            get_strava_url(activity),
            update.to_payload(),
        )
        return update

    logger.debug(
        "Run looks legit (average_speed_kmph=%s, url=%s)",
        average_speed_kmph,
        get_strava_url(activity),
    )
    return None


def fix_activity_types(config: Config, client: Optional[StravaClient] = None) -> Dict[str, int]:
    """
    Fetch all activities and reclassify implausible runs.

    Stops at the first failed request; activities after it are left untouched.
    Returns counts of what happened during the run.
    """
    if client is None:
        client = StravaClient(config.api_token)

    activities = client.get_all_activities()

    run_stats = {
        "fetched": len(activities),
        "runs_checked": 0,
        "changed_to_ride": 0,
        "changed_to_walk": 0,
        "skipped": 0,
    }

    for activity in activities:
        if activity.get("type") == RUN_TYPE:
            run_stats["runs_checked"] += 1
        else:
            run_stats["skipped"] += 1

        update = classify_activity(activity, config)
        if update is None:
            continue

        client.update_activity(update)
        if update.type == RIDE_TYPE:
            run_stats["changed_to_ride"] += 1
        else:
            run_stats["changed_to_walk"] += 1

    logger.info(
        "Finished fixing activity types (fetched=%s, runs_checked=%s, "
        "changed_to_ride=%s, changed_to_walk=%s, skipped=%s)",
        run_stats["fetched"],
        run_stats["runs_checked"],
        run_stats["changed_to_ride"],
        run_stats["changed_to_walk"],
        run_stats["skipped"],
    )
    return run_stats


def main() -> None:
    try:
        config = load_config()
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.setLevel(config.log_level)

    try:
        fix_activity_types(config)
    except FetchError as e:
        logger.error(f"Failed to fetch Strava activities: {e}")
        sys.exit(1)
    except UpdateError as e:
        logger.error(f"Failed to update Strava activity: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
