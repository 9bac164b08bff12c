import re
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlparse
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from locallift.main.logging import get_logger
from locallift.main.models import InDB, UtcDatetime

logger = get_logger(__name__)


class PostStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PUBLISHED = "published"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


ACTION_TYPE_MAP = {
    "book-a-visit": "BOOK",
    "place-an-order": "ORDER",
    "shop": "SHOP",
    "read-more": "LEARN_MORE",
    "sign-up": "SIGN_UP",
    "call": "CALL",
    "reserve": "RESERVE",
    "get-quote": "GET_QUOTE",
    "appointment": "APPOINTMENT",
}
NO_ACTION = "NO_ACTION"


class InvalidCallToAction(ValueError):
    pass


class ScheduledPost(InDB):
    tenant_id: str
    summary: str
    language_code: str = "en-US"
    topic_type: str = "STANDARD"
    media_format: str = "PHOTO"
    image_url: Optional[str] = None
    action_type: Optional[str] = None
    action_url: Optional[str] = None
    account_id: str
    location_id: str
    scheduled_at: UtcDatetime
    timezone: str = "UTC"
    status: PostStatus = PostStatus.PENDING
    published_at: Optional[UtcDatetime] = None
    published_post_id: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 3
    last_batch_id: Optional[UUID] = None


class PostPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: str
    language_code: str = "en-US"
    topic_type: str = "STANDARD"
    media_format: str = "PHOTO"
    image_url: Optional[str] = None
    action_type: Optional[str] = None
    action_url: Optional[str] = None
    account_id: str
    location_id: str

    @classmethod
    def from_post(cls, post: ScheduledPost) -> "PostPayload":
        return cls.model_validate(post.model_dump(include=set(cls.model_fields)))


class GbpIntegration(InDB):
    tenant_id: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expiry: Optional[UtcDatetime] = None
    account_name: Optional[str] = None
    account_id: Optional[str] = None
    is_active: bool = True


class PublishedPost(BaseModel):
    name: Optional[str] = None
    state: Optional[str] = None
    search_url: Optional[str] = None


def clean_account_id(account: str) -> str:
    return account.removeprefix("accounts/")


def clean_location_id(location: str) -> str:
    return location.removeprefix("locations/")


def map_action_type(action_type: Optional[str]) -> Optional[str]:
    if not action_type or action_type == NO_ACTION:
        return None
    return ACTION_TYPE_MAP.get(action_type, action_type.upper())


def normalize_phone_number(phone: str) -> str:
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 10:
        return f"tel:+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"tel:+{digits}"
    raise InvalidCallToAction(
        "Invalid phone number format. Please provide a 10-digit US phone number."
    )


def normalize_url(url: str) -> str:
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    parsed = urlparse(url)
    if not parsed.netloc or " " in parsed.netloc:
        raise InvalidCallToAction("Invalid URL format")
    return url


def build_call_to_action(
    action_type: Optional[str], action_url: Optional[str]
) -> Optional[dict[str, str]]:
    mapped = map_action_type(action_type)
    if mapped is None or not action_url:
        return None

    if mapped == "CALL":
        url = action_url if action_url.startswith("tel:") else normalize_phone_number(action_url)
    else:
        url = normalize_url(action_url)
    return {"actionType": mapped, "url": url}


def build_local_post_body(payload: PostPayload, item_id: Optional[UUID] = None) -> dict[str, Any]:
    """Request body for a Business Profile local post.

    An invalid call-to-action is dropped rather than failing the post.
    """
    body: dict[str, Any] = {
        "languageCode": payload.language_code or "en-US",
        "topicType": payload.topic_type or "STANDARD",
        "summary": payload.summary,
        "media": [{"mediaFormat": payload.media_format or "PHOTO", "sourceUrl": payload.image_url}],
    }

    try:
        call_to_action = build_call_to_action(payload.action_type, payload.action_url)
    except InvalidCallToAction as exc:
        logger.warning(
            f"Dropping invalid call to action: {exc}",
            extra={"post_id": str(item_id) if item_id else None, "action_type": payload.action_type},
        )
        call_to_action = None

    if call_to_action is not None:
        body["callToAction"] = call_to_action
    return body
