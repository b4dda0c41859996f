"""
In-process callers of the proxy.

Issue-prompt generation, task prioritization and next-issue recommendation.
Each builds a normalized request, sends it through LLMProxyService and
reports proxy failures in an ``error`` field instead of raising.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from daygent.errors import ProxyError
from daygent.proxy import LLMProxyService
from daygent.schemas import ChatMessage, LLMRequest, Provider, ProxyRequest, Role

logger = logging.getLogger(__name__)

PROMPT_ENDPOINT = "/api/generate-prompt"
PRIORITIZE_ENDPOINT = "/actions/prioritize-tasks"
RECOMMEND_ENDPOINT = "/actions/recommend-issue"

PROMPT_MODELS = {
    Provider.OPENAI: "gpt-3.5-turbo",
    Provider.ANTHROPIC: "claude-3-5-haiku-20241022",
}
PRIORITIZE_MODELS = {
    Provider.OPENAI: "gpt-4-turbo-preview",
    Provider.ANTHROPIC: "claude-3-sonnet-20240229",
}

PROMPT_SYSTEM = """Convert this to a prompt for an LLM-based software development agent.

Format the response as follows:
- What to do: [one line summary]
- How: [2-5 key technical points]

Keep the prompt concise and actionable."""

PRIORITIZE_SYSTEM = (
    "You are an expert product manager helping prioritize software development tasks. "
    "Follow the output format exactly as specified."
)

TASK_LIST_PLACEHOLDER = "{task_list}"

PRIORITIZE_TEMPLATE = """You are an expert product manager helping a development team prioritize their work. Your goal is to identify the TOP 3 tasks that will deliver the most value and maintain development momentum.

Available Tasks
{task_list}

Your Analysis Framework
Evaluate each task using these weighted criteria:

Primary Factors (High Weight):
- Priority Level - The assigned priority (Critical > High > Medium > Low)
- Dependency Impact - Does this task block other important features, unlock new capabilities or remove bottlenecks?
- Business Value - Potential impact on user satisfaction, revenue, competitiveness and risk

Secondary Factors (Medium Weight):
- Technical Debt - Does this address system stability, performance, or maintainability?
- Quick Wins - Can this be completed quickly with high impact?

Context Factors (Lower Weight):
- Task Age - How long has this been waiting?

Required Output Format
TOP 3 RECOMMENDED TASKS:
1. [Task UUID] - [Task Title]
   - Why Now: [2-3 sentences explaining urgency and timing]
   - Expected Impact: [Specific benefits this will deliver]
   - Dependencies: [What this blocks/unblocks, if applicable]

2. [Task UUID] - [Task Title]
   - Why Now: ...
   - Expected Impact: ...
   - Dependencies: ...

3. [Task UUID] - [Task Title]
   - Why Now: ...
   - Expected Impact: ...
   - Dependencies: ...

REASONING SUMMARY:
[Brief paragraph explaining the overall prioritization strategy and any important trade-offs made]

NOTABLE MENTIONS:
- [Any high-priority tasks that barely missed the top 3 and why]
- [Any dependency chains or sequences to be aware of]

Remember: Focus on maximizing value delivery while maintaining development flow. When in doubt, prioritize tasks that unblock the most future work."""

_TASK_PATTERN = re.compile(
    r"(\d+)\.\s+\[([^\]]+)\]\s*-\s*\[([^\]]+)\]\s*\n"
    r"\s*-?\s*Why Now:\s*([^\n]+)\s*\n"
    r"\s*-?\s*Expected Impact:\s*([^\n]+)\s*\n"
    r"\s*-?\s*Dependencies:\s*([^\n]+)",
    re.IGNORECASE,
)
_REASONING_PATTERN = re.compile(
    r"REASONING SUMMARY:\s*\n([^\n]+(?:\n(?!NOTABLE MENTIONS)[^\n]+)*)",
    re.IGNORECASE,
)
_MENTIONS_PATTERN = re.compile(
    r"NOTABLE MENTIONS:\s*\n([\s\S]+?)(?=\n\n|\s*$)",
    re.IGNORECASE,
)


@dataclass
class Issue:
    """Issue as seen by the assistants."""
    id: str
    title: str
    description: Optional[str] = None
    type: str = "task"
    priority: str = "medium"
    status: str = "todo"
    created_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "priority": self.priority,
            "status": self.status,
            "created_at": self.created_at,
        }


@dataclass
class GeneratedPrompt:
    prompt: str
    error: Optional[str] = None


@dataclass
class PrioritizedIssue:
    issue: Issue
    why_now: str
    expected_impact: str
    dependencies: str


@dataclass
class PrioritizationResult:
    recommended_issues: list[PrioritizedIssue] = field(default_factory=list)
    reasoning_summary: str = ""
    notable_mentions: list[str] = field(default_factory=list)
    prompt: Optional[str] = None
    error: Optional[str] = None


@dataclass
class Recommendation:
    recommended_issue: Optional[Issue]
    justification: str = ""
    prompt: Optional[str] = None
    error: Optional[str] = None


def _user_message(content: str, agents_content: Optional[str]) -> str:
    if agents_content:
        return f"{content}\n\nAdditional context from Agents.md:\n{agents_content}"
    return content


async def generate_issue_prompt(
    proxy: LLMProxyService,
    workspace_id: str,
    user_id: str,
    title: str,
    description: str,
    agents_content: Optional[str] = None,
    provider: Provider = Provider.OPENAI,
) -> GeneratedPrompt:
    """Turn an issue into a prompt for a coding agent."""
    provider = Provider(provider)
    user_prompt = _user_message(
        "Convert this to a prompt for an LLM-based software development agent.\n\n"
        f"Issue Title: {title}\n"
        f"Issue Description: {description}",
        agents_content,
    )
    request = LLMRequest(
        model=PROMPT_MODELS[provider],
        messages=[
            ChatMessage(Role.SYSTEM, PROMPT_SYSTEM),
            ChatMessage(Role.USER, user_prompt),
        ],
        temperature=0.7,
        max_tokens=500,
    )

    try:
        response = await proxy.process_request(
            ProxyRequest(provider, workspace_id, request, PROMPT_ENDPOINT),
            user_id,
        )
    except ProxyError as e:
        logger.warning(f"Prompt generation failed for workspace {workspace_id}: {e.message}")
        return GeneratedPrompt(prompt="", error=e.message)

    generated = response.data.text.strip()
    if not generated:
        return GeneratedPrompt(prompt="", error="No prompt generated")
    return GeneratedPrompt(prompt=generated)


def format_task_list(issues: list[Issue]) -> str:
    """One ``UUID | Title | Description | Type | Priority | Status | Created`` line per issue."""
    return "\n".join(
        f"{i.id} | {i.title} | {i.description or 'No description'} | "
        f"{i.type} | {i.priority} | {i.status} | {i.created_at[:10]}"
        for i in issues
    )


def parse_prioritization_response(content: str, issues: list[Issue]) -> PrioritizationResult:
    """Parse the TOP 3 / REASONING SUMMARY / NOTABLE MENTIONS format."""
    by_id = {issue.id: issue for issue in issues}

    recommended = []
    for match in _TASK_PATTERN.finditer(content):
        issue = by_id.get(match.group(2).strip())
        if issue is None:
            continue
        recommended.append(
            PrioritizedIssue(
                issue=issue,
                why_now=match.group(4).strip(),
                expected_impact=match.group(5).strip(),
                dependencies=match.group(6).strip(),
            )
        )

    reasoning = _REASONING_PATTERN.search(content)
    mentions_match = _MENTIONS_PATTERN.search(content)
    mentions = []
    if mentions_match:
        mentions = [
            re.sub(r"^-\s*", "", line.strip()).strip()
            for line in mentions_match.group(1).split("\n")
            if line.strip().startswith("-")
        ]

    return PrioritizationResult(
        recommended_issues=recommended,
        reasoning_summary=reasoning.group(1).strip() if reasoning else "",
        notable_mentions=mentions,
    )


async def prioritize_tasks(
    proxy: LLMProxyService,
    workspace_id: str,
    user_id: str,
    issues: list[Issue],
    agents_content: Optional[str] = None,
    provider: Provider = Provider.OPENAI,
    endpoint: str = PRIORITIZE_ENDPOINT,
) -> PrioritizationResult:
    """
    Pick the top three todo issues.

    With three or fewer todo issues every one of them is returned without
    calling the proxy.
    """
    provider = Provider(provider)
    todo = [issue for issue in issues if issue.status == "todo"]

    if not todo:
        return PrioritizationResult(
            reasoning_summary="No todo issues available.",
            error="No todo issues to prioritize",
        )

    if len(todo) <= 3:
        return PrioritizationResult(
            recommended_issues=[
                PrioritizedIssue(
                    issue=issue,
                    why_now="One of the only available tasks.",
                    expected_impact="Completing available work.",
                    dependencies="None identified.",
                )
                for issue in todo
            ],
            reasoning_summary=f"Only {len(todo)} todo issues available, returning all.",
        )

    user_prompt = _user_message(
        PRIORITIZE_TEMPLATE.replace(TASK_LIST_PLACEHOLDER, format_task_list(todo)),
        agents_content,
    )
    request = LLMRequest(
        model=PRIORITIZE_MODELS[provider],
        messages=[
            ChatMessage(Role.SYSTEM, PRIORITIZE_SYSTEM),
            ChatMessage(Role.USER, user_prompt),
        ],
        temperature=0.3,
        max_tokens=1500,
    )

    try:
        response = await proxy.process_request(
            ProxyRequest(provider, workspace_id, request, endpoint),
            user_id,
        )
    except ProxyError as e:
        logger.warning(f"Task prioritization failed for workspace {workspace_id}: {e.message}")
        return PrioritizationResult(error=e.message, prompt=user_prompt)

    content = response.data.text
    if not content:
        return PrioritizationResult(error="No content in LLM response", prompt=user_prompt)

    result = parse_prioritization_response(content, todo)
    result.prompt = user_prompt
    return result


async def recommend_next_issue(
    proxy: LLMProxyService,
    workspace_id: str,
    user_id: str,
    issues: list[Issue],
    agents_content: Optional[str] = None,
    provider: Provider = Provider.OPENAI,
) -> Recommendation:
    """Recommend the single next issue to work on."""
    result = await prioritize_tasks(
        proxy,
        workspace_id,
        user_id,
        issues,
        agents_content=agents_content,
        provider=provider,
        endpoint=RECOMMEND_ENDPOINT,
    )

    if result.error:
        return Recommendation(recommended_issue=None, error=result.error)

    if not result.recommended_issues:
        return Recommendation(
            recommended_issue=None,
            justification="No issues to recommend",
            error="No recommendations available",
        )

    first = result.recommended_issues[0]
    return Recommendation(
        recommended_issue=first.issue,
        justification=f"{first.why_now} {first.expected_impact}",
        prompt=result.prompt,
    )
