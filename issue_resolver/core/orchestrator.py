"""
Fix orchestration.

Drives one run end to end: validates the configuration, prepares the run
identity and branch, retrieves the issues and fixes them one after another,
then pushes all commits at once. A failure while fixing a single issue is
logged and never aborts the run.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import List, Optional, Tuple, Union

from ..config.loader import AppConfig
from .errors import ConfigurationError, ExitCode, UnsupportedModelError
from .models import AIModel, Issue, Project, Prompt, Replacement, Rule, RunMetadata
from .prompts import RESPONSE_SCHEMA, SYSTEM_PROMPT, build_issue_prompt_text

logger = logging.getLogger(__name__)

SUPPORTED_ANALYSIS_TYPES = ("sonarqube",)


class IssueOutcome(Enum):
    FIXED = "fixed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class RunSummary:
    """Outcome counts of the issues processed in a run."""
    fixed: int = 0
    failed: int = 0
    skipped: int = 0

    def record(self, outcome: IssueOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    @property
    def total(self) -> int:
        return self.fixed + self.failed + self.skipped


@dataclass
class OperationResult:
    """Result of a run step, telling whether the run may continue."""
    success: bool
    can_continue: bool
    exit_code: ExitCode = ExitCode.SUCCESS
    exception: Optional[BaseException] = None
    summary: RunSummary = field(default_factory=RunSummary)

    @classmethod
    def successful(cls, summary: Optional[RunSummary] = None) -> "OperationResult":
        return cls(success=True, can_continue=True, summary=summary or RunSummary())

    @classmethod
    def fatal(
        cls,
        exception: Optional[BaseException],
        exit_code: ExitCode,
        summary: Optional[RunSummary] = None
    ) -> "OperationResult":
        return cls(
            success=False,
            can_continue=False,
            exit_code=exit_code,
            exception=exception,
            summary=summary or RunSummary(),
        )


@dataclass(frozen=True)
class Found:
    path: str


@dataclass(frozen=True)
class NotFound:
    reason: str


PathResolution = Union[Found, NotFound]


def validate_config(config: AppConfig) -> AIModel:
    """Check that the configuration is complete enough for a run.

    Returns:
        The configured AI model

    Raises:
        ConfigurationError: If a required setting is missing or invalid
    """
    if not config.ai_agent.model:
        raise ConfigurationError("AI configuration is invalid: model must be set")
    model = AIModel.from_name(config.ai_agent.model)

    analysis = config.code_analysis
    if not analysis.project_key or not analysis.type:
        raise ConfigurationError("Code analysis configuration is invalid: project_key and type must be set")
    if analysis.type.lower() not in SUPPORTED_ANALYSIS_TYPES:
        raise ConfigurationError(f"Unsupported code analysis type '{analysis.type}'")
    if not analysis.server_url:
        raise ConfigurationError("Code analysis configuration is invalid: server_url must be set")

    source = config.source_code
    if not source.repository or not source.branch or not source.commit_message_template:
        raise ConfigurationError(
            "Source code configuration is invalid: repository, branch and commit_message_template must be set"
        )
    if source.credentials.username and not source.credentials.password:
        raise ConfigurationError("Invalid git credentials: username is set, but password is missing")
    return model


def build_branch_name(model: AIModel, correlation_id: str) -> str:
    model_name = model.model_name.replace(":", "-")
    return f"auto-fix/{model.vendor.slug}/{model_name}/{correlation_id}-auto-fix"


def build_commit_message(template: str, issue: Issue, rule: Rule) -> str:
    return (
        template
        .replace("{{ID}}", rule.rule_id)
        .replace("{{TITLE}}", rule.title)
        .replace("{{FILE_NAME}}", issue.file_path)
    )


def build_prompt(issue: Issue, rule: Rule, language: str) -> Prompt:
    return Prompt(
        text=build_issue_prompt_text(issue, rule, language),
        rule_id=issue.rule.short_identifier,
        system_prompt=SYSTEM_PROMPT,
        response_schema=RESPONSE_SCHEMA,
    )


class AutoFixOrchestrator:
    """Runs the auto-fix process against one branch.

    Collaborators are passed in fully constructed: the connector pipeline for
    the configured model, the analysis client, the source control client and
    the usage ledger of the run.
    """

    def __init__(self, config: AppConfig, connector, analysis, source, ledger, metadata: RunMetadata):
        self.config = config
        self.connector = connector
        self.analysis = analysis
        self.source = source
        self.ledger = ledger
        self.metadata = metadata

    async def run(self) -> OperationResult:
        """Execute the run.

        Returns:
            Result carrying the exit code and the issue summary
        """
        try:
            model = validate_config(self.config)
        except ConfigurationError as exc:
            logger.error("Invalid configuration: %s", exc)
            return OperationResult.fatal(exc, ExitCode.CONFIGURATION_ERROR)
        logger.debug("Configuration validated")

        self._prepare_run_identity(model)
        self.ledger.initialize_run()
        logger.info("Application run initialized: %s", self.metadata.correlation_id)

        summary = RunSummary()
        try:
            if not self.connector.can_handle(model):
                exc = UnsupportedModelError(f"No AI connector found for model {model.model_name}")
                logger.error("%s", exc)
                return OperationResult.fatal(exc, ExitCode.AI_CONNECTOR_ERROR)

            result = await self._setup_source_code()
            if not result.can_continue:
                logger.error("Source code setup failed, stopping")
                return result

            await self.connector.setup_caching()

            issues, result = await self._get_issues()
            if not result.can_continue:
                logger.error("Failed to retrieve issues, stopping")
                return result

            for issue in issues:
                logger.debug("Processing issue %s in %s", issue.rule.rule_id, issue.file_path)
                summary.record(await self._fix_issue(issue))

            logger.debug("All issues have been worked on, pushing changes")
            await self.source.push_changes()
            logger.info(
                "Run finished: %d fixed, %d failed, %d skipped",
                summary.fixed, summary.failed, summary.skipped
            )
            return OperationResult.successful(summary)
        except Exception as exc:
            logger.exception("Unhandled exception in orchestrator")
            return OperationResult.fatal(exc, ExitCode.UNKNOWN_ERROR, summary)
        finally:
            logger.info("Ending application run: %s", self.metadata.correlation_id)
            self.ledger.end_run()

    def _prepare_run_identity(self, model: AIModel) -> None:
        self.metadata.branch_name = build_branch_name(model, self.metadata.correlation_id)
        self.metadata.model_name = model.model_name
        logger.debug("Prepared metadata with branch name: %s", self.metadata.branch_name)

    async def _setup_source_code(self) -> OperationResult:
        try:
            await self.source.clone_repository()
            await self.source.create_branch(self.metadata.branch_name)
        except Exception as exc:
            logger.error("Failed to set up source code: %s", exc)
            return OperationResult.fatal(exc, ExitCode.SOURCE_CODE_CONNECTION_ERROR)
        return OperationResult.successful()

    async def _get_issues(self) -> Tuple[List[Issue], OperationResult]:
        project = Project(self.config.code_analysis.project_key, self.config.code_analysis.language)
        try:
            issues = await self.analysis.get_issues(project)
        except Exception as exc:
            logger.error("Error retrieving issues from code analysis: %s", exc)
            return [], OperationResult.fatal(exc, ExitCode.CODE_ANALYSIS_ERROR)
        logger.info("Retrieved %d issue(s) from code analysis", len(issues))
        return issues, OperationResult.successful()

    async def _fix_issue(self, issue: Issue) -> IssueOutcome:
        try:
            rule = await self.analysis.get_rule(issue.rule)
            prompt = build_prompt(issue, rule, self.config.code_analysis.language)
            response = await self.connector.get_response(prompt)

            applied = await self._apply_replacements(response.replacements, issue)
            if not applied:
                logger.warning("No replacement could be applied for %s in %s, skipping commit",
                               issue.rule.rule_id, issue.file_path)
                return IssueOutcome.SKIPPED

            message = build_commit_message(self.config.source_code.commit_message_template, issue, rule)
            await self.source.commit_changes(message)
            logger.info("Issue %s fixed and committed", issue.rule.rule_id)
            return IssueOutcome.FIXED
        except Exception:
            logger.warning("Failed to fix issue %s in %s", issue.rule.rule_id, issue.file_path, exc_info=True)
            return IssueOutcome.FAILED

    async def _apply_replacements(self, replacements: List[Replacement], issue: Issue) -> int:
        applied = 0
        for replacement in replacements:
            try:
                resolution = await self.resolve_path(replacement.file_path, issue)
                if isinstance(resolution, NotFound):
                    logger.warning("Cannot update %s: %s", replacement.file_path, resolution.reason)
                    continue
                await self.source.update_file_content(resolution.path, replacement.new_code)
                applied += 1
            except Exception:
                logger.warning("Failed to update file %s", replacement.file_path, exc_info=True)
        return applied

    async def resolve_path(self, file_path: str, issue: Issue) -> PathResolution:
        """Find the repository file a replacement refers to.

        Models sometimes cite a wrong directory. If the cited path does not
        exist, a file with the same name among the files of the issue's rule
        is used, provided there is exactly one.
        """
        if await self.source.file_exists(file_path):
            return Found(file_path)

        file_name = PurePosixPath(file_path.replace("\\", "/")).name.lower()
        logger.debug("Path %s does not exist, searching for %s", file_path, file_name)
        files = await self.source.get_all_files(
            self.config.source_code.file_extension, issue.rule.short_identifier
        )
        matches = [
            source_file.file_path for source_file in files
            if PurePosixPath(source_file.file_path).name.lower() == file_name
        ]
        if not matches:
            return NotFound(f"no file named {file_name} in the repository")
        if len(matches) > 1:
            return NotFound(f"{len(matches)} files named {file_name}, cannot decide which to update")
        return Found(matches[0])
