"""
tierguard/models/feature_flag.py

FeatureFlag model: which plan a gated feature requires.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict

from tierguard.models.plan import PlanId


class FeatureFlag(BaseModel):
    """
    A gated capability.

    required_plan of None means the feature is open to every plan.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: Optional[str] = None
    required_plan: Optional[PlanId] = None
    is_active: bool = True
