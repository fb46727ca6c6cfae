"""Wire models for the parts of the Freelancer API the fetcher reads."""

from pydantic import BaseModel, Field


class FreelancerReputationDetails(BaseModel):
    complete: int = 0
    overall: float = 0.0
    reviews: int = 0


class FreelancerReputation(BaseModel):
    entire_history: FreelancerReputationDetails = Field(default_factory=FreelancerReputationDetails)


class FreelancerQualification(BaseModel):
    id: int
    name: str
    description: str | None = None
    icon_url: str | None = None
    score_percentage: float = 0.0


class FreelancerBadge(BaseModel):
    id: int
    name: str
    description: str | None = None
    icon_url: str | None = None
    time_awarded: int | None = None


class FreelancerUserInfo(BaseModel):
    id: int
    registration_date: int
    reputation: FreelancerReputation = Field(default_factory=FreelancerReputation)
    qualifications: list[FreelancerQualification] | None = None
    badges: list[FreelancerBadge] | None = None


class FreelancerReviewContext(BaseModel):
    context_id: int
    review_type: str | None = None
    context_name: str | None = None


class FreelancerReview(BaseModel):
    from_user_id: int
    to_user_id: int | None = None
    time_submitted: int
    rating: float
    description: str | None = None
    review_context: FreelancerReviewContext


class FreelancerReviewUser(BaseModel):
    display_name: str | None = None
    avatar_cdn: str | None = None


class FreelancerReviewResult(BaseModel):
    reviews: list[FreelancerReview] = Field(default_factory=list)
    # Keyed by the Freelancer user id as a string
    users: dict[str, FreelancerReviewUser] = Field(default_factory=dict)


class FreelancerUserInfoResponse(BaseModel):
    status: str | None = None
    result: FreelancerUserInfo
    request_id: str | None = None


class FreelancerReviewResponse(BaseModel):
    status: str | None = None
    result: FreelancerReviewResult
    request_id: str | None = None
