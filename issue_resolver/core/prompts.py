"""
Prompt texts and the structured response schema.

All vendors receive the same system prompt and the same response schema;
only the rendering of the schema differs per vendor.
"""

from typing import Iterable

from .models import Issue, ResponseSchema, Rule, SourceFile


RESPONSE_SCHEMA_TEMPLATE = """{
  "title": "Replacements",
  "description": "Contains a list of replacements that should be done in the code to fix the issue.",
  "type": "object",
  {{ADDITIONAL_PROPERTIES}}
  "required": ["replacements"],
  "properties": {
    "replacements": {
      "type": "array",
      "description": "A list of code replacements that should be applied to fix the issue.",
      {{ADDITIONAL_PROPERTIES}}
      "items": {
        "type": "object",
        "description": "Replacement for a specific file, that should be applied to fix an issue.",
        "properties": {
          "newCode": {
            "type": "string",
            "description": "The updated code that should replace the old code to fix the issue. Should contain the complete code for the file that should be changed"
          },
          "filePath": {
            "type": "string",
            "description": "The path of the file that should be changed (relative to the repository root). This should be the same path as provided in the source code files."
          }
        },
        {{ADDITIONAL_PROPERTIES}}
        "required": ["newCode", "filePath"]
      }
    }
  }
}"""

RESPONSE_SCHEMA = ResponseSchema(RESPONSE_SCHEMA_TEMPLATE)

SYSTEM_PROMPT = (
    "You are a Software Developer tasked with fixing Code Smells. You will receive a description "
    "for a code smell that should be fixed in a specific class, as well as the content of other "
    "possibly relevant classes. Here are some rules that must be followed when fixing the code smell:\n"
    "1. Respond only in the provided JSON format\n"
    "2. Do not change anything else in the code, just fix the issue that is described in the request. "
    "Do not add any comments, explanations or unnecessary whitespace to the code. "
    "Do not change the formatting of the code.\n"
    "3. Use the provided file paths in the responses to identify the files.\n"
    "4. The response should contain the *complete* code for the files that should be changed.\n"
    "5. Ensure that the code is still valid after your changes and compiles without errors. "
    "Do not change the code in a way that would break the compilation or introduce new issues."
)

LANGUAGE_NAMES = {
    "cs": "C#",
    "java": "Java",
    "py": "Python",
    "js": "JavaScript",
    "ts": "TypeScript",
    "go": "Go",
    "kotlin": "Kotlin",
    "php": "PHP",
}


def build_issue_prompt_text(issue: Issue, rule: Rule, language: str) -> str:
    """Create the user prompt describing a single code smell."""
    language_name = LANGUAGE_NAMES.get(language, language)
    return (
        "# Approach\n"
        "To fix the code smell, please follow these steps:\n"
        "1. **Understand the Code Smell**: Read the description of the code smell to understand "
        "what it is and why it is considered a problem.\n"
        "2. **Analyze the Code**: Look at the provided code to identify where the code smell occurs.\n"
        "3. **Propose a Fix**: Suggest a code change that addresses the code smell while maintaining "
        "the original functionality of the code.\n"
        "\n"
        "# Code Smell Details\n"
        "\n"
        f"**Programming Language**: {language_name}\n"
        f"**Analysis Rule Key**: {rule.rule_id}\n"
        f"**Rule Title**: {rule.title}\n"
        f"**File Path**: {issue.file_path}\n"
        f"**Affected Lines**: {issue.range.start_line}-{issue.range.end_line}\n"
        f"**Code Smell Description**: {rule.description}"
    )


def render_files(files: Iterable[SourceFile]) -> str:
    """Render source files as a markdown section the models can cite paths from."""
    lines = ["# Files"]
    for source_file in files:
        lines.append(f"## File Path: {source_file.file_path}")
        lines.append("Content:")
        lines.append("```")
        lines.append(source_file.content)
        lines.append("```")
    return "\n".join(lines)


def append_files(prompt_text: str, files: Iterable[SourceFile]) -> str:
    return f"{prompt_text}\n\n\n{render_files(files)}"


def schema_as_system_message(schema_text: str) -> str:
    """Describe the output format for vendors without native structured output."""
    return (
        "# Output format\n"
        "Respond in json format with the following schema:\n"
        "```json\n"
        f"{schema_text}\n"
        "```\n"
    )
