"""
What unauthenticated callers may see.

Public views only ever receive documents through the projections below.
Contact details and payment references stay on the admin side.
"""

from datetime import datetime
from typing import Iterable, List

from models import COUNTED_DONATION, CampaignStatus, counts_towards_campaign
from store import serialize

# Filter for the public recent-donations feed.
PUBLIC_DONATION_FILTER = dict(COUNTED_DONATION, isAnonymous=False)
PUBLIC_DONATION_FIELDS = ("donorName", "amount", "campaign", "message")

PUBLIC_CAMPAIGN_FILTER = {"status": CampaignStatus.ACTIVE.value}


def is_publicly_visible(donation: dict) -> bool:
    return counts_towards_campaign(donation) and donation.get("isAnonymous") is False


def to_public_donation(donation: dict) -> dict:
    public = {"id": str(donation["_id"])}
    for key in PUBLIC_DONATION_FIELDS:
        public[key] = donation.get(key)
    public["message"] = public["message"] or ""
    public["date"] = donation.get("createdAt") or datetime.utcnow()
    return public


def public_recent_donations(donations: Iterable[dict]) -> List[dict]:
    """Project donations for the public feed, dropping anything not visible.

    The store query already applies ``PUBLIC_DONATION_FILTER``; checking again
    here keeps the boundary safe if a caller passes an unfiltered list.
    """
    return [to_public_donation(d) for d in donations if is_publicly_visible(d)]


def to_admin_donation(donation: dict) -> dict:
    return serialize(donation)


def to_public_campaign(campaign: dict, raised: float, donors: int, default_target: float) -> dict:
    return {
        "id": str(campaign["_id"]),
        "title": campaign["title"],
        "description": campaign.get("description"),
        "target": campaign.get("target") or default_target,
        "raised": raised,
        "donors": donors,
        "image": campaign.get("image"),
        "category": campaign.get("category") or "General",
        "startDate": campaign.get("startDate"),
        "endDate": campaign.get("endDate"),
        "status": campaign.get("status"),
    }


def to_admin_campaign(campaign: dict, raised: float, donors: int, default_target: float) -> dict:
    view = to_public_campaign(campaign, raised, donors, default_target)
    view["createdAt"] = campaign.get("createdAt")
    view["updatedAt"] = campaign.get("updatedAt")
    return view
