"""
Unit tests for the fix orchestrator.

The analysis, source control and AI connector collaborators are replaced
with in-memory fakes; the ledger is a mock.
"""

import asyncio
from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from issue_resolver.config.loader import (
    AiAgentConfig,
    AppConfig,
    CodeAnalysisConfig,
    Credentials,
    SourceCodeConfig,
)
from issue_resolver.core.errors import (
    AnalysisError,
    ConfigurationError,
    ExitCode,
    MalformedResponse,
    SourceControlError,
)
from issue_resolver.core.models import (
    AIModel,
    Issue,
    Replacement,
    ReplacementResponse,
    Rule,
    RuleIdentifier,
    RunMetadata,
    SourceFile,
    TextRange,
)
from issue_resolver.core.orchestrator import (
    AutoFixOrchestrator,
    Found,
    NotFound,
    OperationResult,
    RunSummary,
    build_branch_name,
    build_commit_message,
    validate_config,
)


def make_config(**source_overrides) -> AppConfig:
    return AppConfig(
        ai_agent=AiAgentConfig(model="gemini-2.0-flash-lite", token="secret"),
        code_analysis=CodeAnalysisConfig(project_key="demo", server_url="http://sonar.local", language="cs"),
        source_code=replace(
            SourceCodeConfig(
                repository="https://git.local/demo.git",
                branch="main",
                commit_message_template="fix: {{ID}} {{TITLE}} in {{FILE_NAME}}",
            ),
            **source_overrides
        ),
    )


def make_issue(rule_id="csharpsquid:S1234", file_path="src/A.cs") -> Issue:
    return Issue(RuleIdentifier(rule_id), file_path, TextRange(3, 4))


def fix(*paths) -> ReplacementResponse:
    return ReplacementResponse(replacements=[Replacement(new_code=f"// fixed {p}", file_path=p) for p in paths])


class FakeAnalysis:
    def __init__(self, issues=(), error=None):
        self.issues = list(issues)
        self.error = error
        self.projects = []

    async def get_issues(self, project):
        self.projects.append(project)
        if self.error:
            raise self.error
        return list(self.issues)

    async def get_rule(self, identifier):
        return Rule(identifier.rule_id, "Unused private field", "Remove it.")


class FakeSource:
    def __init__(self, files=(), clone_error=None, push_error=None):
        self.files = {source_file.file_path: source_file.content for source_file in files}
        self.clone_error = clone_error
        self.push_error = push_error
        self.branches = []
        self.commits = []
        self.updates = []
        self.pushes = 0

    async def clone_repository(self):
        if self.clone_error:
            raise self.clone_error

    async def create_branch(self, name):
        self.branches.append(name)

    async def file_exists(self, file_path):
        return file_path in self.files

    async def update_file_content(self, file_path, content):
        self.files[file_path] = content
        self.updates.append(file_path)

    async def get_all_files(self, extension_filter="*.cs", folder_filter=None):
        return [
            SourceFile(path, content) for path, content in sorted(self.files.items())
            if folder_filter is None or folder_filter in path
        ]

    async def commit_changes(self, message):
        self.commits.append(message)

    async def push_changes(self):
        self.pushes += 1
        if self.push_error:
            raise self.push_error


class FakeConnector:
    def __init__(self, *responses, supported=True):
        self.responses = list(responses)
        self.supported = supported
        self.prompts = []
        self.caching_calls = 0

    def can_handle(self, model):
        return self.supported

    async def setup_caching(self):
        self.caching_calls += 1

    async def get_response(self, prompt):
        self.prompts.append(prompt)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def run_orchestrator(config=None, connector=None, analysis=None, source=None):
    ledger = MagicMock()
    metadata = RunMetadata(correlation_id="run-1")
    orchestrator = AutoFixOrchestrator(
        config or make_config(),
        connector or FakeConnector(),
        analysis or FakeAnalysis(),
        source or FakeSource(),
        ledger,
        metadata,
    )
    result = asyncio.run(orchestrator.run())
    return result, ledger, metadata


class TestValidateConfig:

    def test_valid_config_returns_model(self):
        assert validate_config(make_config()) is AIModel.GEMINI_FLASH_LITE

    def test_missing_model(self):
        config = replace(make_config(), ai_agent=AiAgentConfig())

        with pytest.raises(ConfigurationError, match="model"):
            validate_config(config)

    def test_unknown_model(self):
        config = replace(make_config(), ai_agent=AiAgentConfig(model="gpt-2"))

        with pytest.raises(ConfigurationError, match="Unsupported AI model"):
            validate_config(config)

    def test_unsupported_analysis_type(self):
        config = replace(make_config(), code_analysis=CodeAnalysisConfig(type="codeql", project_key="demo",
                                                                         server_url="http://x"))

        with pytest.raises(ConfigurationError, match="codeql"):
            validate_config(config)

    def test_missing_repository(self):
        with pytest.raises(ConfigurationError, match="repository"):
            validate_config(make_config(repository=None))

    def test_username_without_password(self):
        with pytest.raises(ConfigurationError, match="password"):
            validate_config(make_config(credentials=Credentials(username="bot")))


class TestNaming:

    def test_branch_name(self):
        assert build_branch_name(AIModel.GEMINI_FLASH_LITE, "abc") == "auto-fix/Google/gemini-2.0-flash-lite/abc-auto-fix"

    def test_branch_name_sanitizes_vendor(self):
        assert build_branch_name(AIModel.PHI4_LOCAL, "abc") == "auto-fix/Ollama-_Local_/phi4/abc-auto-fix"

    def test_commit_message_placeholders(self):
        message = build_commit_message(
            "{{ID}}: {{TITLE}} ({{FILE_NAME}})",
            make_issue(),
            Rule("csharpsquid:S1234", "Title", ""),
        )

        assert message == "csharpsquid:S1234: Title (src/A.cs)"


class TestRunSummary:

    def test_operation_result_factories(self):
        summary = RunSummary(fixed=2)

        assert OperationResult.successful(summary).exit_code == ExitCode.SUCCESS
        fatal = OperationResult.fatal(ValueError("x"), ExitCode.CODE_ANALYSIS_ERROR, summary)
        assert not fatal.success and not fatal.can_continue
        assert fatal.summary.total == 2


class TestRun:
    """Test complete runs."""

    def test_fixes_issue_and_pushes_once(self):
        source = FakeSource([SourceFile("src/A.cs", "class A { int unused; }")])
        connector = FakeConnector(fix("src/A.cs"))
        analysis = FakeAnalysis([make_issue()])

        result, ledger, metadata = run_orchestrator(connector=connector, analysis=analysis, source=source)

        assert result.success
        assert result.exit_code == ExitCode.SUCCESS
        assert result.summary == RunSummary(fixed=1)
        assert source.files["src/A.cs"] == "// fixed src/A.cs"
        assert source.commits == ["fix: csharpsquid:S1234 Unused private field in src/A.cs"]
        assert source.pushes == 1
        assert source.branches == ["auto-fix/Google/gemini-2.0-flash-lite/run-1-auto-fix"]
        assert connector.caching_calls == 1
        assert connector.prompts[0].rule_id == "S1234"
        assert "src/A.cs" in connector.prompts[0].text
        assert analysis.projects[0].project_key == "demo"
        assert metadata.model_name == "gemini-2.0-flash-lite"
        ledger.initialize_run.assert_called_once()
        ledger.end_run.assert_called_once()

    def test_no_issues_still_pushes(self):
        source = FakeSource()

        result, _, _ = run_orchestrator(source=source)

        assert result.success
        assert result.summary.total == 0
        assert source.pushes == 1

    def test_failed_issue_does_not_stop_run(self):
        source = FakeSource([SourceFile("src/A.cs", ""), SourceFile("src/B.cs", "")])
        connector = FakeConnector(MalformedResponse("garbage"), fix("src/B.cs"))
        analysis = FakeAnalysis([make_issue(file_path="src/A.cs"), make_issue("csharpsquid:S1481", "src/B.cs")])

        result, _, _ = run_orchestrator(connector=connector, analysis=analysis, source=source)

        assert result.success
        assert result.summary == RunSummary(fixed=1, failed=1)
        assert source.updates == ["src/B.cs"]
        assert len(source.commits) == 1
        assert source.pushes == 1

    def test_unresolvable_replacement_skips_commit(self):
        source = FakeSource([SourceFile("src/A.cs", "")])
        connector = FakeConnector(fix("src/Missing.cs"))

        result, _, _ = run_orchestrator(connector=connector, analysis=FakeAnalysis([make_issue()]), source=source)

        assert result.summary == RunSummary(skipped=1)
        assert source.commits == []

    def test_invalid_config_exits_before_run_is_recorded(self):
        config = replace(make_config(), ai_agent=AiAgentConfig())

        result, ledger, _ = run_orchestrator(config=config)

        assert result.exit_code == ExitCode.CONFIGURATION_ERROR
        ledger.initialize_run.assert_not_called()
        ledger.end_run.assert_not_called()

    def test_clone_failure(self):
        source = FakeSource(clone_error=SourceControlError("authentication failed"))

        result, ledger, _ = run_orchestrator(source=source)

        assert result.exit_code == ExitCode.SOURCE_CODE_CONNECTION_ERROR
        assert not result.can_continue
        assert source.branches == []
        ledger.end_run.assert_called_once()

    def test_analysis_failure(self):
        source = FakeSource()
        analysis = FakeAnalysis(error=AnalysisError("401 Unauthorized"))

        result, ledger, _ = run_orchestrator(analysis=analysis, source=source)

        assert result.exit_code == ExitCode.CODE_ANALYSIS_ERROR
        assert source.pushes == 0
        ledger.end_run.assert_called_once()

    def test_unsupported_model(self):
        source = FakeSource()

        result, ledger, _ = run_orchestrator(connector=FakeConnector(supported=False), source=source)

        assert result.exit_code == ExitCode.AI_CONNECTOR_ERROR
        assert source.branches == []
        ledger.end_run.assert_called_once()

    def test_push_failure_is_unknown_error(self):
        source = FakeSource([SourceFile("src/A.cs", "")], push_error=SourceControlError("rejected"))
        connector = FakeConnector(fix("src/A.cs"))

        result, ledger, _ = run_orchestrator(connector=connector, analysis=FakeAnalysis([make_issue()]), source=source)

        assert result.exit_code == ExitCode.UNKNOWN_ERROR
        assert result.summary.fixed == 1
        ledger.end_run.assert_called_once()


class TestResolvePath:
    """Test matching replacement paths to repository files."""

    def resolve(self, source, file_path, issue=None):
        orchestrator = AutoFixOrchestrator(
            make_config(), FakeConnector(), FakeAnalysis(), source, MagicMock(), RunMetadata()
        )
        return asyncio.run(orchestrator.resolve_path(file_path, issue or make_issue()))

    def test_existing_path(self):
        source = FakeSource([SourceFile("src/A.cs", "")])

        assert self.resolve(source, "src/A.cs") == Found("src/A.cs")

    def test_single_file_with_same_name(self):
        source = FakeSource([SourceFile("S1234/Services/Account.cs", "")])

        assert self.resolve(source, "Services/account.cs") == Found("S1234/Services/Account.cs")

    def test_windows_separators(self):
        source = FakeSource([SourceFile("S1234/Account.cs", "")])

        assert self.resolve(source, "Wrong\\Account.cs") == Found("S1234/Account.cs")

    def test_ambiguous_file_name(self):
        source = FakeSource([SourceFile("S1234/a/Account.cs", ""), SourceFile("S1234/b/Account.cs", "")])

        resolution = self.resolve(source, "Account.cs")

        assert isinstance(resolution, NotFound)
        assert "2 files" in resolution.reason

    def test_search_is_limited_to_rule_folder(self):
        source = FakeSource([SourceFile("S9999/Account.cs", "")])

        assert isinstance(self.resolve(source, "Account.cs"), NotFound)
