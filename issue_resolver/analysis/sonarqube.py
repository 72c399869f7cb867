"""
SonarQube client.

Retrieves the code smells of a project and the description of their rules
through the SonarQube web API.
"""

import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, ValidationError

from ..core.errors import AnalysisError
from ..core.models import Issue, Project, Rule, RuleIdentifier, TextRange

logger = logging.getLogger(__name__)

ISSUES_PATH = "api/issues/search"
RULES_PATH = "api/rules/search"
PAGE_SIZE = 100


class _TextRange(BaseModel):
    startLine: int
    endLine: int


class _Issue(BaseModel):
    key: str
    rule: str
    component: str
    line: Optional[int] = None
    textRange: Optional[_TextRange] = None


class _Component(BaseModel):
    key: str
    path: Optional[str] = None


class _Paging(BaseModel):
    pageIndex: int = 1
    pageSize: int = PAGE_SIZE
    total: int = 0


class IssueSearchResponse(BaseModel):
    total: Optional[int] = None
    paging: Optional[_Paging] = None
    issues: List[_Issue] = []
    components: List[_Component] = []

    @property
    def total_issues(self) -> int:
        if self.paging is not None:
            return self.paging.total
        return self.total or 0


class _Rule(BaseModel):
    key: str
    name: str
    htmlDesc: Optional[str] = None
    mdDesc: Optional[str] = None


class RuleSearchResponse(BaseModel):
    rules: List[_Rule] = []


def create_sonarqube_client(
    server_url: str,
    token: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> httpx.AsyncClient:
    headers = {"Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(base_url=server_url, headers=headers, timeout=60.0, transport=transport)


class SonarqubeConnector:
    """Read-only access to issues and rules of a SonarQube server."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def _get(self, path: str, params: dict, model):
        try:
            response = await self.client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise AnalysisError(f"Request to SonarQube failed: {exc}") from exc
        if response.is_error:
            raise AnalysisError(
                f"SonarQube returned HTTP {response.status_code} for {path}: {response.text[:500]}"
            )
        try:
            return model.model_validate_json(response.content)
        except ValidationError as exc:
            raise AnalysisError(f"Unexpected SonarQube response for {path}") from exc

    async def get_issues(self, project: Project) -> List[Issue]:
        """Get all issues of a project, reading every result page.

        Raises:
            AnalysisError: If SonarQube cannot be reached or rejects a request
        """
        issues: List[Issue] = []
        page = 1
        while True:
            result = await self._get(ISSUES_PATH, {
                "componentKeys": project.project_key,
                "languages": project.language,
                "ps": PAGE_SIZE,
                "p": page,
            }, IssueSearchResponse)

            paths = {component.key: component.path for component in result.components}
            for item in result.issues:
                path = paths.get(item.component)
                if not path:
                    logger.warning("Skipping issue %s, component %s has no file path", item.key, item.component)
                    continue
                if item.textRange is not None:
                    text_range = TextRange(item.textRange.startLine, item.textRange.endLine)
                else:
                    text_range = TextRange(item.line or 0, item.line or 0)
                issues.append(Issue(RuleIdentifier(item.rule), path, text_range))

            if not result.issues or page * PAGE_SIZE >= result.total_issues:
                break
            page += 1

        logger.info("Retrieved %d issue(s) for project %s", len(issues), project.project_key)
        return issues

    async def get_rule(self, identifier: RuleIdentifier) -> Rule:
        """Get title and description of a rule.

        Raises:
            AnalysisError: If the request fails or the rule is unknown
        """
        result = await self._get(RULES_PATH, {"rule_key": identifier.rule_id}, RuleSearchResponse)
        for rule in result.rules:
            if rule.key == identifier.rule_id:
                return Rule(rule.key, rule.name, rule.htmlDesc or rule.mdDesc or "")
        raise AnalysisError(f"Rule {identifier.rule_id} not found in SonarQube")

    async def aclose(self) -> None:
        await self.client.aclose()
