"""
Campaign fundraising totals.

``raised`` and ``donors`` are never stored. Each read rescans the donations
that count (completed and approved) for the campaign title, so there is no
counter to drift after a partial failure.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List

import config
from exceptions import NotFoundError, ValidationError
from models import COUNTED_DONATION, CampaignStatus
from schemas import CampaignCreate, CampaignUpdate
from store import NEWEST_FIRST, CampaignStore, DonationStore
from visibility import PUBLIC_CAMPAIGN_FILTER, to_admin_campaign, to_public_campaign

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CampaignStats:
    raised: float = 0
    donors: int = 0


def counted_donations_filter(title: str) -> dict:
    return dict(COUNTED_DONATION, campaign=title)


def stats_for(donations: DonationStore, title: str) -> CampaignStats:
    """Sum and count the completed, approved donations made to ``title``."""
    matching = donations.find_many(counted_donations_filter(title))
    raised = sum(d.get("amount", 0) for d in matching)
    return CampaignStats(raised=raised, donors=len(matching))


def list_public_campaigns(campaigns: CampaignStore, donations: DonationStore) -> List[dict]:
    result = []
    for campaign in campaigns.find_many(PUBLIC_CAMPAIGN_FILTER, sort=NEWEST_FIRST):
        stats = stats_for(donations, campaign["title"])
        result.append(to_public_campaign(campaign, stats.raised, stats.donors, config.DEFAULT_CAMPAIGN_TARGET))
    return result


def list_admin_campaigns(campaigns: CampaignStore, donations: DonationStore) -> List[dict]:
    result = []
    for campaign in campaigns.find_many(sort=NEWEST_FIRST):
        stats = stats_for(donations, campaign["title"])
        result.append(to_admin_campaign(campaign, stats.raised, stats.donors, config.DEFAULT_CAMPAIGN_TARGET))
    return result


def create_campaign(campaigns: CampaignStore, data: CampaignCreate) -> dict:
    if campaigns.find_by_title(data.title):
        raise ValidationError(f"A campaign titled '{data.title}' already exists")

    now = datetime.utcnow()
    document = {
        "title": data.title,
        "description": data.description,
        "target": data.target,
        "image": data.image,
        "category": data.category or "General",
        "startDate": data.start_date or now.isoformat(),
        "endDate": data.end_date,
        "status": CampaignStatus.ACTIVE.value,
        "createdAt": now,
        "updatedAt": now,
    }
    document["_id"] = campaigns.insert(document)
    logger.info(f"Campaign '{data.title}' created")
    return to_admin_campaign(document, 0, 0, config.DEFAULT_CAMPAIGN_TARGET)


def update_campaign(campaigns: CampaignStore, donations: DonationStore, campaign_id: str, data: CampaignUpdate) -> dict:
    """Update campaign metadata. The title is the donation join key and cannot change here."""
    changes = data.model_dump(mode="json", by_alias=True, exclude_unset=True)
    if changes and not campaigns.update_one(campaign_id, changes):
        raise NotFoundError("Campaign not found")

    campaign = campaigns.find_by_id(campaign_id)
    if not campaign:
        raise NotFoundError("Campaign not found")
    stats = stats_for(donations, campaign["title"])
    return to_admin_campaign(campaign, stats.raised, stats.donors, config.DEFAULT_CAMPAIGN_TARGET)
