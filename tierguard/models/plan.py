"""
tierguard/models/plan.py

Plan models for the monetization core.

Plans represent capability tiers (free, creator, pro) and their quota limits.
"""

from enum import Enum
from typing import Dict, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field

UNLIMITED = -1


class PlanId(str, Enum):
    """Closed, ordered set of subscription tiers (see PLAN_HIERARCHY)."""
    FREE = "free"
    CREATOR = "creator"
    PRO = "pro"


class Resource(str, Enum):
    """Metered resource backed by one (used, limit) column pair."""
    VIDEOS_GENERATED = "videos_generated"
    SOURCE_VIDEOS = "source_videos"
    VOICE_CLONES = "voice_clones"
    ACCOUNT_ANALYSIS = "account_analysis"
    SCRIPT_CONVERSATIONS = "script_conversations"


# Resource -> (used column, limit column) in user_usage
RESOURCE_COLUMNS: Dict[Resource, Tuple[str, str]] = {
    Resource.VIDEOS_GENERATED: ("videos_generated", "videos_generated_limit"),
    Resource.SOURCE_VIDEOS: ("source_videos_used", "source_videos_limit"),
    Resource.VOICE_CLONES: ("voice_clones_used", "voice_clones_limit"),
    Resource.ACCOUNT_ANALYSIS: ("account_analysis_used", "account_analysis_limit"),
    Resource.SCRIPT_CONVERSATIONS: ("script_conversations_used", "script_conversations_limit"),
}


def used_column(resource: Resource) -> str:
    return RESOURCE_COLUMNS[resource][0]


def limit_column(resource: Resource) -> str:
    return RESOURCE_COLUMNS[resource][1]


class SubscriptionPlan(BaseModel):
    """
    Catalog entry for a plan.

    Limits use -1 for unlimited. Plans do NOT include pricing or billing
    cycles; payment processing lives outside this package.
    """
    model_config = ConfigDict(frozen=True)

    id: PlanId
    name: str
    description: Optional[str] = None
    limits: Dict[Resource, int] = Field(default_factory=dict)
    is_active: bool = True

    def limit_for(self, resource: Resource) -> int:
        return self.limits.get(resource, 0)
