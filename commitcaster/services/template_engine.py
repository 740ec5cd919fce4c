"""Template engine — parsing, validation and variable substitution for post templates.

A stored template is a JSON envelope ``{"template": ..., "prompt": ...}``.
``template`` is the literal post text with ``{{VARIABLE}}`` placeholders and
may hold the ``{{AI_TEXT}}`` slot; ``prompt`` instructs the AI how to fill
that slot. Older rows hold a bare prompt string.

This module never calls the AI. :meth:`TemplateService.process` returns a
:class:`PlanResult` that the pipeline hands to the transformer, and
:func:`finalize` stitches the AI output back in.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.dao.prompt_template_dao import PromptTemplateDAO
from commitcaster.models.prompt_template import PromptTemplate
from commitcaster.services import NotFoundError, ValidationError

AI_TEXT_VARIABLE = "{{AI_TEXT}}"
DIFF_ANALYSIS_VARIABLE = "{{DIFF_ANALYSIS}}"

TEMPLATE_VARIABLES: dict[str, str] = {
    "{{AI_TEXT}}": "AI-generated changelog text (if used, AI will generate content for this spot)",
    "{{COMMIT_MESSAGE}}": "Original commit message from Git",
    "{{COMMIT_TYPE}}": "Type of commit (feat, fix, refactor, etc.)",
    "{{COMMIT_SHA}}": "Short commit SHA (7 characters)",
    "{{REPOSITORY}}": "Repository name (e.g., repo-name)",
    "{{REPOSITORY_FULL}}": "Full repository name (e.g., owner/repo-name)",
    "{{REPOSITORY_URL}}": "URL of the repository on the code host",
    "{{FILES_CHANGED}}": "Number of files changed",
    "{{ADDED_FILES}}": "List of added files (if any)",
    "{{MODIFIED_FILES}}": "List of modified files (if any)",
    "{{REMOVED_FILES}}": "List of removed files (if any)",
    "{{AUTHOR}}": "Commit author username",
    "{{BRANCH}}": "Branch name where commit was pushed",
    "{{PROJECT_CONTEXT}}": "Project context including tech stack and description",
    "{{DIFF_ANALYSIS}}": "Summary of the actual code changes taken from the diff",
}

VARIABLE_NAMES = list(TEMPLATE_VARIABLES)

DEFAULT_PROMPT_TEMPLATE = """You are a developer writing a log entry about your work. Write in a concise, technical style with bullet points.
{{PROJECT_CONTEXT}}
Commit Information:
- Repository: {{REPOSITORY}}
- Commit Type: {{COMMIT_TYPE}}
- Commit Message: {{COMMIT_MESSAGE}}
- Files Changed: {{FILES_CHANGED}}
{{ADDED_FILES}}
{{MODIFIED_FILES}}
{{REMOVED_FILES}}

Verified Changes (from the diff):
{{DIFF_ANALYSIS}}

CRITICAL RULES - MUST FOLLOW:
1. ABSOLUTELY NO EMOJIS - Do not use any emojis, symbols, or special characters. Only use plain text letters, numbers, commas, periods, colons, dashes, and spaces.
2. NO HASHTAGS - Do not include any hashtags in your output.
3. Starts with "update:" (lowercase, with colon)
4. Uses bullet points (dash format: "- ") to list what was changed
5. All sentences must be lowercase
6. Only punctuation allowed is comma "," and period "."
7. Abbreviate most things (e.g., "implementation" -> "impl", "configuration" -> "config", "authentication" -> "auth")
8. ONLY describe changes that are DIRECTLY evident from the commit message, the file names and the verified changes provided above. DO NOT invent, assume, or hallucinate features or changes that are not explicitly mentioned.
9. If the commit message is vague (like "update", "fix", "changes"), describe ONLY what can be inferred from the file names. Example: if files are "OpenGraph.tsx" and "share/[id].tsx", say "updated opengraph and share page components".
10. Keep it concise but informative (aim for 2-3 bullet points, maximum 150 characters total)
11. CRITICAL: The entire output must be 150 characters or less (including "update:" and all bullet points). This is for a tweet, so brevity is essential.
12. Use the PROJECT CONTEXT above to understand what this project is about, but DO NOT invent changes not in this specific commit.

Example Output:
update:
- migrated from firebase auth to custom github oauth.
- updated client & server for new auth service.

WRONG Example (DO NOT DO THIS):
update:
- ✨ refactored auth flow
- 🚀 added new features
- #coding #github (NO HASHTAGS!)
- added cli debug flag (WRONG - not mentioned in commit!)

Format: Write only the log entry text, starting with "update:" followed by bullet points. No additional explanations, formatting, hashtags, or emojis. Keep it under 150 characters total. ABSOLUTELY NO EMOJIS OR HASHTAGS. ONLY describe what is in the commit data above."""

TEMPLATE_PRESETS: dict[str, dict[str, str]] = {
    "default": {
        "id": "default",
        "name": "Classic DevLog",
        "description": "Concise, technical bullet points. No emojis. Under 150 chars.",
        "template": DEFAULT_PROMPT_TEMPLATE,
    },
    "casual": {
        "id": "casual",
        "name": "Casual Update",
        "description": "Friendly, conversational tone with some personality.",
        "template": """You are a developer sharing what you worked on today. Be friendly and conversational.
{{PROJECT_CONTEXT}}
Commit Info:
- Repo: {{REPOSITORY}}
- Message: {{COMMIT_MESSAGE}}
- Files Changed: {{FILES_CHANGED}}

Write a brief, casual update about this commit. Be human and relatable.
- Keep it under 200 characters total
- Start with a casual opener like "just shipped", "working on", "pushed"
- NO emojis or hashtags
- Use lowercase, be informal but clear
- Focus on the "what" and "why" in simple terms

Example: just pushed some auth improvements. migrated to github oauth, much cleaner now.""",
    },
    "minimal": {
        "id": "minimal",
        "name": "Minimal",
        "description": "Ultra-short, single line updates.",
        "template": """Summarize this commit in one short sentence (max 100 characters).
{{PROJECT_CONTEXT}}
Repo: {{REPOSITORY}}
Message: {{COMMIT_MESSAGE}}
Files: {{FILES_CHANGED}}

Rules:
- One sentence only, no bullet points
- Under 100 characters
- No emojis, no hashtags
- Start with a verb (added, fixed, updated, refactored)
- Be specific but brief

Example: updated auth flow to use github oauth instead of firebase""",
    },
    "detailed": {
        "id": "detailed",
        "name": "Detailed Changelog",
        "description": "More comprehensive update with context.",
        "template": """Write a changelog entry for this commit. Be informative but concise.
{{PROJECT_CONTEXT}}
Commit Details:
- Repository: {{REPOSITORY}}
- Type: {{COMMIT_TYPE}}
- Message: {{COMMIT_MESSAGE}}
- Files Changed: {{FILES_CHANGED}}
{{ADDED_FILES}}
{{MODIFIED_FILES}}
{{REMOVED_FILES}}

Format:
- Start with a summary line
- Use 2-4 bullet points for key changes
- Keep total under 250 characters
- NO emojis or hashtags
- Use technical but readable language
- Explain the impact or benefit briefly

Example:
auth system overhaul
- migrated from firebase to direct github oauth
- added refresh token support for persistent sessions
- simplified client-side auth flow""",
    },
}

_PLACEHOLDER_RE = re.compile(r"\{\{([A-Z_]+)\}\}")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@dataclass
class ParsedTemplate:
    template: str
    prompt: str
    is_new_format: bool


def parse_template_content(template_content: str | None) -> ParsedTemplate:
    """Decode the storage envelope; a bare string is a legacy prompt."""
    if not template_content:
        return ParsedTemplate(template="", prompt="", is_new_format=False)
    try:
        parsed = json.loads(template_content)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict) and "template" in parsed and "prompt" in parsed:
        return ParsedTemplate(
            template=parsed["template"] or "",
            prompt=parsed["prompt"] or "",
            is_new_format=True,
        )
    return ParsedTemplate(template="", prompt=template_content, is_new_format=False)


def combine_template_content(template: str | None, prompt: str | None) -> str:
    return json.dumps({"template": template or "", "prompt": prompt or ""})


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def template_uses_ai(template: str | None) -> bool:
    return bool(template) and AI_TEXT_VARIABLE in template  # type: ignore[operator]


@dataclass
class TemplateValidation:
    valid: bool = True
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def validate_template(template: str | None, prompt: str | None) -> TemplateValidation:
    result = TemplateValidation()
    has_template = bool(template and template.strip())
    has_prompt = bool(prompt and prompt.strip())
    uses_ai = template_uses_ai(template)

    if not has_template and not has_prompt:
        result.errors.append("Template or AI prompt is required")
        result.valid = False

    if has_prompt and has_template and not uses_ai:
        result.warnings.append(
            "You have an AI prompt defined but your template doesn't use {{AI_TEXT}}. "
            "The AI prompt will be ignored. Either add {{AI_TEXT}} to your template "
            "or remove the AI prompt."
        )

    if uses_ai and not has_prompt:
        result.warnings.append(
            "Your template uses {{AI_TEXT}} but no AI prompt is defined. "
            "The AI will use default instructions. Add a custom prompt for better control."
        )

    unknown = sorted(
        {f"{{{{{name}}}}}" for name in _PLACEHOLDER_RE.findall(f"{template or ''}{prompt or ''}")}
        - set(TEMPLATE_VARIABLES)
    )
    if unknown:
        result.warnings.append(f"Unknown variables will be left as-is: {', '.join(unknown)}")

    return result


# ---------------------------------------------------------------------------
# Substitution
# ---------------------------------------------------------------------------


def build_variable_context(
    commit: dict[str, Any], repository: dict[str, Any], project_context: str = ""
) -> dict[str, str]:
    """Values for every variable except ``AI_TEXT``.

    *commit* is the dict produced by ``commit_formatter.format_commit``
    (optionally carrying ``diff_analysis``); *repository* is the webhook
    ``repository`` object.
    """
    added = commit.get("added") or []
    modified = commit.get("modified") or []
    removed = commit.get("removed") or []

    repo_url = repository.get("html_url") or (
        f"https://github.com/{repository['full_name']}" if repository.get("full_name") else ""
    )

    return {
        "COMMIT_MESSAGE": commit.get("message") or "",
        "COMMIT_TYPE": commit.get("type") or "change",
        "COMMIT_SHA": commit.get("sha") or "",
        "REPOSITORY": repository.get("name") or "",
        "REPOSITORY_FULL": repository.get("full_name") or "",
        "REPOSITORY_URL": repo_url,
        "FILES_CHANGED": str(commit.get("files_changed") or 0),
        "ADDED_FILES": f"Added: {', '.join(added)}" if added else "",
        "MODIFIED_FILES": f"Modified: {', '.join(modified)}" if modified else "",
        "REMOVED_FILES": f"Removed: {', '.join(removed)}" if removed else "",
        "AUTHOR": commit.get("author") or "",
        "BRANCH": commit.get("branch") or "main",
        "PROJECT_CONTEXT": project_context or "",
        "DIFF_ANALYSIS": commit.get("diff_analysis") or "",
    }


def apply_variables(template: str | None, context: dict[str, str]) -> str:
    """Replace every ``{{KEY}}`` in *template* with ``context[KEY]``."""
    if not template:
        return ""
    result = template
    for key, value in context.items():
        result = result.replace(f"{{{{{key}}}}}", value or "")
    return result


def insert_ai_text(template: str | None, ai_text: str | None) -> str:
    if not template:
        return ai_text or ""
    return template.replace(AI_TEXT_VARIABLE, ai_text or "")


# ---------------------------------------------------------------------------
# Plan / finalize
# ---------------------------------------------------------------------------


@dataclass
class PlanResult:
    needs_ai: bool
    template: str | None
    prompt: str
    context: dict[str, str]
    is_default: bool
    uses_diff_analysis: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "needs_ai": self.needs_ai,
            "template": self.template,
            "prompt": self.prompt,
            "is_default": self.is_default,
            "uses_diff_analysis": self.uses_diff_analysis,
        }


def plan_from_content(
    template_content: str | None,
    commit: dict[str, Any],
    repository: dict[str, Any],
    project_context: str = "",
) -> PlanResult:
    """Build the plan for a stored envelope, or the default plan when None."""
    context = build_variable_context(commit, repository, project_context)

    if template_content is None:
        return PlanResult(
            needs_ai=True,
            template=None,
            prompt=apply_variables(DEFAULT_PROMPT_TEMPLATE, context),
            context=context,
            is_default=True,
            uses_diff_analysis=True,
        )

    parsed = parse_template_content(template_content)
    prompt = apply_variables(parsed.prompt, context) or apply_variables(
        DEFAULT_PROMPT_TEMPLATE, context
    )
    needs_ai = template_uses_ai(parsed.template)
    # the prompt only matters when the template calls the model
    uses_diff_analysis = DIFF_ANALYSIS_VARIABLE in parsed.template or (
        needs_ai and DIFF_ANALYSIS_VARIABLE in (parsed.prompt or DEFAULT_PROMPT_TEMPLATE)
    )
    return PlanResult(
        needs_ai=needs_ai,
        template=apply_variables(parsed.template, context),
        prompt=prompt,
        context=context,
        is_default=False,
        uses_diff_analysis=uses_diff_analysis,
    )


def finalize(plan: PlanResult, ai_text: str | None = None) -> str:
    """Produce the post body from *plan* and the optional AI output."""
    if plan.is_default:
        return ai_text or ""
    if plan.needs_ai and plan.template:
        return insert_ai_text(plan.template, ai_text or "")
    return plan.template or ""


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TemplateService:
    """Per-tenant template storage on top of :func:`plan_from_content`."""

    def __init__(self, prompt_template_dao: PromptTemplateDAO) -> None:
        self._dao = prompt_template_dao

    async def process(
        self,
        session: AsyncSession,
        tenant_id: str,
        commit: dict[str, Any],
        repository: dict[str, Any],
        project_context: str = "",
    ) -> PlanResult:
        active = await self._dao.get_active(session, tenant_id)
        content = active.template_content if active is not None else None
        return plan_from_content(content, commit, repository, project_context)

    async def get_active(self, session: AsyncSession, tenant_id: str) -> PromptTemplate | None:
        return await self._dao.get_active(session, tenant_id)

    async def list_templates(self, session: AsyncSession, tenant_id: str) -> list[dict[str, Any]]:
        rows = await self._dao.list_for_user(session, tenant_id)
        return [self.serialize(row) for row in rows]

    async def save_template(
        self,
        session: AsyncSession,
        tenant_id: str,
        template_id: str,
        template_name: str,
        template: str | None,
        prompt: str | None,
        *,
        activate: bool = False,
    ) -> tuple[PromptTemplate, TemplateValidation]:
        """Validate and upsert; raises :class:`ValidationError` when invalid."""
        if not template_id or not template_id.strip():
            raise ValidationError("template_id is required")
        if template_id in TEMPLATE_PRESETS:
            raise ValidationError(f"template_id {template_id!r} is reserved for a preset")
        validation = validate_template(template, prompt)
        if not validation.valid:
            raise ValidationError("; ".join(validation.errors))

        row = await self._dao.upsert(
            session,
            tenant_id,
            template_id.strip(),
            template_name or template_id,
            combine_template_content(template, prompt),
        )
        if activate:
            await self._dao.activate(session, tenant_id, row.template_id)
            await session.refresh(row)
        return row, validation

    async def activate(self, session: AsyncSession, tenant_id: str, template_id: str | None) -> None:
        """Mark *template_id* active; ``None`` or ``"default"`` resets to the built-in prompt."""
        if template_id is None or template_id == "default":
            await self._dao.deactivate_all(session, tenant_id)
            return
        if not await self._dao.activate(session, tenant_id, template_id):
            raise NotFoundError(f"template not found: {template_id}")

    async def delete_template(self, session: AsyncSession, tenant_id: str, template_id: str) -> None:
        if await self._dao.remove(session, tenant_id, template_id) == 0:
            raise NotFoundError(f"template not found: {template_id}")

    @staticmethod
    def serialize(row: PromptTemplate) -> dict[str, Any]:
        parsed = parse_template_content(row.template_content)
        return {
            "template_id": row.template_id,
            "template_name": row.template_name,
            "template": parsed.template,
            "prompt": parsed.prompt,
            "is_active": row.is_active,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }
