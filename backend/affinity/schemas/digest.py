from pydantic import BaseModel
from typing import Optional, List, Dict, Any
from datetime import datetime


class MatchedTagOut(BaseModel):
    id: str
    name: str


class ConnectionUpdateItem(BaseModel):
    content_id: str
    type: str  # display label, e.g. "tourism Activity"
    title: str
    description: Optional[str] = None
    author: Optional[str] = None
    created_at: Optional[datetime] = None
    link: str
    match_percentage: int


class PersonRecommendationItem(BaseModel):
    user_id: str
    name: Optional[str] = None
    categories: List[str] = []
    subcategories: List[str] = []
    goals: List[str] = []
    location: str = ""
    link: str
    match_percentage: int


class JobOpportunityItem(BaseModel):
    job_id: str
    title: str
    company: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    created_at: Optional[datetime] = None
    link: str
    match_percentage: int


class SimilarityBreakdown(BaseModel):
    score: float
    max_score: float
    percentage: int
    matched_factor_count: int
    matches: Dict[str, List[MatchedTagOut]]


class RankedApplication(BaseModel):
    """A user's own job application or event registration, ranked by profile fit."""
    record_id: str
    content_id: str
    content_type: str
    title: str
    created_at: Optional[datetime] = None
    similarity: SimilarityBreakdown


class DigestPreview(BaseModel):
    user_id: str
    cadence: str
    since: datetime
    # category name -> ranked items (empty categories are omitted)
    categories: Dict[str, List[Dict[str, Any]]]


class DigestRunResponse(BaseModel):
    cadence: str
    since: datetime
    users: int
    digests_sent: int
    failures: int
