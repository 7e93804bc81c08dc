"""Status tokens for keywords, articles and approvals."""

from __future__ import annotations


DECISION_APPROVED = "approved"
DECISION_REJECTED = "rejected"
DECISIONS = {DECISION_APPROVED, DECISION_REJECTED}

APPROVAL_TYPE_SEED_KEYWORDS = "seed_keywords"
APPROVAL_TYPE_SUBTOPICS = "subtopic_approval"
APPROVAL_TYPE_HUMAN = "human_approval"

KEYWORD_TYPE_SEED = "seed"
KEYWORD_TYPE_LONGTAIL = "longtail"

SUBTOPICS_NOT_STARTED = "not_started"
SUBTOPICS_IN_PROGRESS = "in_progress"
SUBTOPICS_COMPLETE = "complete"
SUBTOPICS_FAILED = "failed"

KEYWORD_ARTICLE_NOT_STARTED = "not_started"
KEYWORD_ARTICLE_READY = "ready"

ARTICLE_QUEUED = "queued"
ARTICLE_GENERATING = "generating"
ARTICLE_COMPLETED = "completed"
ARTICLE_PUBLISHED = "published"
ARTICLE_FAILED = "failed"
ARTICLE_PLANNER_FAILED = "planner_failed"
ARTICLE_STATUSES = (
    ARTICLE_QUEUED,
    ARTICLE_GENERATING,
    ARTICLE_COMPLETED,
    ARTICLE_PUBLISHED,
    ARTICLE_FAILED,
    ARTICLE_PLANNER_FAILED,
)

LINKABLE_ARTICLE_STATUSES = (ARTICLE_COMPLETED, ARTICLE_PUBLISHED)
GENERATION_RESULT_STATUSES = {ARTICLE_GENERATING, ARTICLE_COMPLETED, ARTICLE_PUBLISHED, ARTICLE_FAILED}

LINK_NOT_LINKED = "not_linked"
LINK_LINKING = "linking"
LINK_LINKED = "linked"
LINK_FAILED = "failed"

LINKING_COMPLETED = "completed"
LINKING_COMPLETED_WITH_FAILURES = "completed_with_failures"

ADMIN_ROLES = ("owner", "admin")
MEMBER_ROLES = ("owner", "admin", "member")
