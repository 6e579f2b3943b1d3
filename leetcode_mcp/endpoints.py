"""The fixed set of platform endpoints the client talks to."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Tuple


@dataclass(frozen=True, slots=True)
class EndpointSpec:
    name: str
    method: str
    path: str
    # "json" bodies are sent as JSON, "form" bodies form-encoded
    body: str = "json"

    def resolve(self, **params: Any) -> str:
        return self.path.format(**params)


LOGIN_PAGE = EndpointSpec("login_page", "GET", "accounts/login/")
LOGIN = EndpointSpec("login", "POST", "accounts/login/", body="form")
GRAPHQL = EndpointSpec("graphql", "POST", "graphql/")
SUBMIT = EndpointSpec("submit", "POST", "problems/{slug}/submit/")
CHECK = EndpointSpec("check", "GET", "submissions/detail/{submission_id}/check/")

QUESTION_QUERY = """
query questionData($titleSlug: String!) {
  question(titleSlug: $titleSlug) {
    questionId
    questionFrontendId
    title
    titleSlug
    content
    difficulty
    isPaidOnly
    topicTags { name slug }
    codeSnippets { lang langSlug code }
    sampleTestCase
  }
}
"""

DAILY_QUERY = """
query questionOfToday {
  activeDailyCodingChallengeQuestion {
    date
    link
    question { titleSlug }
  }
}
"""


def question_request(slug: str) -> Tuple[EndpointSpec, Dict[str, Any]]:
    return GRAPHQL, {
        "operationName": "questionData",
        "query": QUESTION_QUERY,
        "variables": {"titleSlug": slug},
    }


def daily_request() -> Tuple[EndpointSpec, Dict[str, Any]]:
    return GRAPHQL, {
        "operationName": "questionOfToday",
        "query": DAILY_QUERY,
        "variables": {},
    }
