"""Client for the ArtAdventureHub admin API

Wraps the REST endpoints the admin console uses and applies the same
client-side checks the console applies before sending anything: both prize
winners picked and distinct, a reason for every rejected withdrawal, image
uploads that are real images under the size cap, and the campaign completion
gate.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

import httpx

from config import MAX_UPLOAD_SIZE
from coupon_rules import coupon_display_status

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3033"
GENERIC_ERROR = "Request failed. Please try again."
PRIZE_FLAGS = ("winner", "runner_up")
UPLOAD_MIME_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp"}

T = TypeVar("T")


class AdminClientError(Exception):
    """Base class for everything the client raises."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthError(AdminClientError):
    pass


class ClientValidationError(AdminClientError):
    """A required-field check failed; no request was sent."""


class ApiError(AdminClientError):
    def __init__(self, message: str, status_code: int, payload: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


class CompletionBlocked(AdminClientError):
    """The campaign is not ready to be completed yet."""

    def __init__(self, message: str, reason: str, review_path: Optional[str] = None):
        super().__init__(message)
        self.reason = reason
        self.review_path = review_path


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str


@dataclass(frozen=True)
class Session:
    """An authenticated admin session, passed explicitly to AdminClient."""

    token: str
    username: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


def _payload(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def authenticate(credentials: Credentials, base_url: str = DEFAULT_BASE_URL,
                 http: Optional[httpx.Client] = None) -> Session:
    """Exchange admin credentials for a Session, or raise AuthError."""
    if not credentials.username or not credentials.password:
        raise AuthError("Username and password are required")

    owns_client = http is None
    http = http or httpx.Client(base_url=base_url, timeout=30.0)
    try:
        response = http.post("/api/admin/login", json={
            "username": credentials.username,
            "password": credentials.password,
        })
    except httpx.HTTPError as e:
        logger.error(f"Login request failed: {e}")
        raise AuthError("Could not reach the authentication service")
    finally:
        if owns_client:
            http.close()

    data = _payload(response)
    if response.status_code != 200 or "access_token" not in data:
        raise AuthError(data.get("message") or "Invalid credentials")

    return Session(
        token=data["access_token"],
        username=credentials.username,
        expires_at=datetime.utcnow() + timedelta(seconds=data.get("expires_in", 1800)),
    )


class Query(Generic[T]):
    """
    Explicit loading/success/error state around one loader call.

    A failed run keeps the data from the last successful run, so callers can
    keep showing it next to the error.
    """

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"

    def __init__(self, loader: Callable[[], T]):
        self._loader = loader
        self.status = self.IDLE
        self.data: Optional[T] = None
        self.error: Optional[AdminClientError] = None

    def run(self) -> "Query[T]":
        self.status = self.LOADING
        try:
            self.data = self._loader()
        except AdminClientError as e:
            self.error = e
            self.status = self.ERROR
        except (KeyError, TypeError, ValueError) as e:
            # Response body missing the expected fields
            logger.error(f"Unexpected response shape: {e!r}")
            self.error = ApiError(GENERIC_ERROR, 0)
            self.status = self.ERROR
        else:
            self.error = None
            self.status = self.SUCCESS
        finally:
            # Anything else propagates, but never leaves the query stuck loading
            if self.status == self.LOADING:
                self.status = self.ERROR
        return self

    @property
    def loading(self) -> bool:
        return self.status == self.LOADING

    @property
    def ok(self) -> bool:
        return self.status == self.SUCCESS

    @property
    def failed(self) -> bool:
        return self.status == self.ERROR


def coupon_status(coupon: dict, now: Optional[datetime] = None) -> str:
    """Badge for a coupon as returned by the API."""
    return coupon_display_status(
        is_active=coupon.get("is_active", True),
        expiry_date=coupon.get("expiry_date"),
        usage_limit=coupon.get("usage_limit"),
        used_count=coupon.get("used_count") or 0,
        now=now,
    )


class AdminClient:
    """HTTP client for the admin API"""

    def __init__(self, session: Session, base_url: str = DEFAULT_BASE_URL,
                 http: Optional[httpx.Client] = None, timeout: float = 30.0):
        self.session: Optional[Session] = session
        self._owns_http = http is None
        self.http = http or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)

    @classmethod
    def login(cls, credentials: Credentials, base_url: str = DEFAULT_BASE_URL,
              http: Optional[httpx.Client] = None) -> "AdminClient":
        return cls(authenticate(credentials, base_url, http), base_url, http)

    def logout(self):
        self.session = None
        if self._owns_http:
            self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.logout()

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        if self.session is None:
            raise AuthError("Not logged in")
        if self.session.is_expired():
            raise AuthError("Session expired, please log in again")

        headers = {**kwargs.pop("headers", {}), **self.session.auth_headers()}
        try:
            return self.http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ApiError(GENERIC_ERROR, 0)

    def _request(self, method: str, path: str, **kwargs) -> dict:
        response = self._send(method, path, **kwargs)
        data = _payload(response)
        if response.status_code == 401:
            raise AuthError(data.get("message") or "Session expired, please log in again")
        if response.status_code >= 400 or data.get("success") is False:
            raise ApiError(data.get("message") or GENERIC_ERROR, response.status_code, data)
        return data

    def _download(self, path: str, params: dict) -> bytes:
        response = self._send("GET", path, params=params)
        if response.status_code == 401:
            raise AuthError(_payload(response).get("message") or "Session expired, please log in again")
        if response.status_code >= 400:
            raise ApiError(_payload(response).get("message") or GENERIC_ERROR, response.status_code)
        return response.content

    # Campaigns

    def dashboard_stats(self) -> dict:
        return self._request("GET", "/api/campaigns/admin/stats")["stats"]

    def list_campaigns(self, status: Optional[str] = None) -> List[dict]:
        params = {"status": status} if status and status != "all" else None
        return self._request("GET", "/api/campaigns/admin/all", params=params)["campaigns"]

    def get_campaign(self, campaign_id: int) -> dict:
        """Campaign plus its submissions: {"campaign": ..., "submissions": [...]}."""
        data = self._request("GET", f"/api/campaigns/admin/{campaign_id}")
        return {"campaign": data["campaign"], "submissions": data.get("submissions", [])}

    def create_campaign(self, fields: dict) -> dict:
        if not fields.get("reference_image"):
            raise ClientValidationError("Please select a reference image")
        return self._request("POST", "/api/campaigns/admin/create", json=fields)["campaign"]

    def update_campaign(self, campaign_id: int, fields: dict) -> dict:
        return self._request("PUT", f"/api/campaigns/admin/{campaign_id}", json=fields)["campaign"]

    def delete_campaign(self, campaign_id: int):
        self._request("DELETE", f"/api/campaigns/admin/{campaign_id}")

    def change_status(self, campaign_id: int, status: str) -> dict:
        try:
            return self._request("PATCH", f"/api/campaigns/admin/{campaign_id}/status", json={"status": status})
        except ApiError as e:
            reason = e.payload.get("reason")
            if reason in ("no_submissions", "winners_not_selected"):
                raise CompletionBlocked(e.message, reason, e.payload.get("review_path"))
            raise

    def complete_campaign(self, campaign_id: int) -> dict:
        """
        Complete a campaign once judging is done.

        Raises CompletionBlocked without touching the campaign when it has no
        submissions, or when no submission has been flagged winner/runner-up;
        in the second case review_path points at the submission review.
        """
        submissions = self.get_campaign(campaign_id)["submissions"]
        if not submissions:
            raise CompletionBlocked(
                "Cannot complete campaign with no submissions. "
                "Please wait for participants to submit their artwork.",
                reason="no_submissions",
            )
        if not any(s.get("status") in PRIZE_FLAGS for s in submissions):
            raise CompletionBlocked(
                "This campaign has no winners set yet. Review submissions and select winners first.",
                reason="winners_not_selected",
                review_path=f"/submissions/{campaign_id}",
            )
        return self.change_status(campaign_id, "completed")

    def rate_submission(self, submission_id: int, rating: float, notes: str = "",
                        prize_position: Optional[str] = None) -> dict:
        if not 0 <= rating <= 10:
            raise ClientValidationError("Rating must be between 0 and 10")
        if prize_position not in (None, "first", "second"):
            raise ClientValidationError("Prize position must be first or second")
        return self._request("PUT", f"/api/campaigns/admin/submission/{submission_id}/rate", json={
            "rating": rating,
            "notes": notes,
            "prize_position": prize_position,
        })["submission"]

    def distribute_prizes(self, campaign_id: int, first_winner_id, second_winner_id) -> dict:
        if not first_winner_id or not second_winner_id:
            raise ClientValidationError("Please select both first and second prize winners")
        if str(first_winner_id) == str(second_winner_id):
            raise ClientValidationError("First and second prize winners must be different")
        return self._request("POST", "/api/campaigns/admin/distribute-prizes", json={
            "campaign_id": campaign_id,
            "first_winner_id": first_winner_id,
            "second_winner_id": second_winner_id,
        })["results"]

    def export_submissions(self, campaign_id: int, format: str = "csv") -> bytes:
        return self._download(f"/api/campaigns/admin/{campaign_id}/submissions/export", {"format": format})

    # Users

    def list_users(self, skip: int = 0, limit: int = 100) -> List[dict]:
        return self._request("GET", "/api/users", params={"skip": skip, "limit": limit})["users"]

    def search_users(self, query: str) -> List[dict]:
        if len(query.strip()) < 2:
            return []
        return self._request("GET", "/api/users/search", params={"q": query.strip()})["users"]

    def get_user(self, user_id: int, include_submissions: bool = False) -> dict:
        data = self._request("GET", f"/api/users/{user_id}",
                             params={"include_submissions": str(include_submissions).lower()})
        data.pop("success", None)
        return data

    # Withdrawals

    def list_withdrawals(self, status: Optional[str] = "pending") -> List[dict]:
        params = {"status": status} if status else None
        return self._request("GET", "/api/withdrawals/admin/all", params=params)["withdrawals"]

    def approve_withdrawal(self, withdrawal_id: int, admin_notes: Optional[str] = None) -> dict:
        return self._request("PUT", f"/api/withdrawals/admin/{withdrawal_id}/process", json={
            "status": "completed",
            "admin_notes": admin_notes,
        })["withdrawal"]

    def reject_withdrawal(self, withdrawal_id: int, rejection_reason: str,
                          admin_notes: Optional[str] = None) -> dict:
        if not rejection_reason or not rejection_reason.strip():
            raise ClientValidationError("Please provide a reason for rejecting this withdrawal")
        return self._request("PUT", f"/api/withdrawals/admin/{withdrawal_id}/process", json={
            "status": "rejected",
            "admin_notes": admin_notes,
            "rejection_reason": rejection_reason.strip(),
        })["withdrawal"]

    def export_withdrawals(self, format: str = "csv", status: Optional[str] = None) -> bytes:
        params = {"format": format}
        if status:
            params["status"] = status
        return self._download("/api/withdrawals/admin/export", params)

    # Coupons

    def list_coupons(self) -> List[dict]:
        return self._request("GET", "/api/coupons")["coupons"]

    def create_coupon(self, fields: dict) -> dict:
        return self._request("POST", "/api/coupons", json=fields)["coupon"]

    def update_coupon(self, coupon_id: int, fields: dict) -> dict:
        return self._request("PUT", f"/api/coupons/{coupon_id}", json=fields)["coupon"]

    def delete_coupon(self, coupon_id: int):
        self._request("DELETE", f"/api/coupons/{coupon_id}")

    def toggle_coupon(self, coupon_id: int) -> dict:
        return self._request("PATCH", f"/api/coupons/{coupon_id}/toggle-status")["coupon"]

    # Uploads

    def upload_image(self, filename: str, content: bytes, content_type: str) -> str:
        """Upload a campaign image and return its public URL."""
        if not content_type or not content_type.startswith("image/"):
            raise ClientValidationError("Please select a valid image file")
        if content_type not in UPLOAD_MIME_TYPES:
            raise ClientValidationError("Only JPG, PNG and WEBP images are allowed")
        if len(content) > MAX_UPLOAD_SIZE:
            raise ClientValidationError(f"Image size should be less than {MAX_UPLOAD_SIZE / (1024 * 1024):g}MB")
        data = self._request("POST", "/api/upload", files={"image": (filename, content, content_type)})
        return data["imageUrl"]

    # Push notifications

    def push_stats(self) -> dict:
        data = self._request("GET", "/api/push/stats")
        data.pop("success", None)
        return data

    def send_notification(self, title: str, body: str, audience: str = "broadcast",
                          user_id: Optional[int] = None, campaign_id: Optional[int] = None,
                          icon: str = "/logo_purple.png", url: str = "/") -> Dict[str, Any]:
        if not title or not title.strip() or not body or not body.strip():
            raise ClientValidationError("Title and body are required!")

        payload = {"title": title, "body": body, "icon": icon, "url": url}
        if audience == "broadcast":
            path = "/api/push/broadcast"
        elif audience == "specific_user":
            if not user_id:
                raise ClientValidationError("Please select a user!")
            path = "/api/push/send-to-user"
            payload["user_id"] = user_id
        elif audience == "campaign_participants":
            if not campaign_id:
                raise ClientValidationError("Please select a campaign!")
            path = "/api/push/send-to-campaign-participants"
            payload["campaign_id"] = campaign_id
        else:
            raise ClientValidationError(f"Unknown notification audience: {audience}")

        data = self._request("POST", path, json=payload)
        return {"message": data.get("message"), "sent": data.get("sent", 0), "failed": data.get("failed", 0)}
