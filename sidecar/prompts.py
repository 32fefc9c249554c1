"""Prompt templates and quick actions."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

INIT_PROTOCOL_ID = "init-protocol"
CODE_REVIEW_ID = "code-review"

INIT_PROTOCOL = """You are working with a local Sidecar that can inspect and act on my project.
You cannot run tools yourself. Instead, write tool calls as plain text and I
will execute them and paste the results back to you.

Command syntax:

    mcp:<server>:<tool>(<arguments>)

- <server> is `internal` for the built-in tools, or the id of a connected MCP server.
- <arguments> is a JSON-like object, e.g. `{path: "src/app.ts"}`. Bare keys,
  single quotes and trailing commas are accepted. Omit the parentheses when a
  tool takes no arguments.
- Paths are relative to the project root.
- You may write several commands in one reply. They run in order and stop at
  the first failure.

Examples:

    mcp:internal:read_file({path: "package.json"})
    mcp:internal:get_tree({root: "src", depth: 2})
    mcp:internal:git_diff

Rules:
1. Ask for the files you need before proposing changes; do not guess their contents.
2. Keep each reply focused: request what you need, then wait for the results.
3. When you propose edits, show the complete changed code for each file."""

CODE_REVIEW = """Please review the following changes. For each file:

1. Summarize what changed and why it likely changed.
2. Point out bugs, regressions and unhandled edge cases.
3. Flag security or performance concerns.
4. Suggest concrete improvements, quoting the relevant code.

Finish with an overall verdict: ready to merge, or what must change first."""

SYSTEM_PROMPTS: Dict[str, Dict[str, str]] = {
    INIT_PROTOCOL_ID: {"title": "⚡️ Initialize Sidecar Protocol", "content": INIT_PROTOCOL},
    CODE_REVIEW_ID: {"title": "Code Review", "content": CODE_REVIEW},
}


def get_prompt(prompt_id: str, overrides: Optional[Dict[str, str]] = None) -> Optional[str]:
    """Return the template text for ``prompt_id``, preferring configured overrides."""
    if overrides and overrides.get(prompt_id):
        return overrides[prompt_id]
    prompt = SYSTEM_PROMPTS.get(prompt_id)
    return prompt["content"] if prompt else None


@dataclass
class QuickAction:
    id: str
    label: str
    description: str
    server: str = "internal"
    tool: str = "macro"
    args: Dict[str, Any] = field(default_factory=dict)
    prompt_prefix: str = ""


CONTEXT_ACTION = "initialize-context"
REVIEW_ACTION = "review-changes"

QUICK_ACTIONS: Dict[str, QuickAction] = {
    CONTEXT_ACTION: QuickAction(
        id=CONTEXT_ACTION,
        label="Init Context",
        description="Protocol + Tools + Tree (One Click)",
    ),
    REVIEW_ACTION: QuickAction(
        id=REVIEW_ACTION,
        label="Review Changes",
        description="Diff Context + Code Review Prompt",
    ),
    "project-tree": QuickAction(
        id="project-tree",
        label="Copy Tree",
        description="Copy project structure",
        tool="get_tree",
        args={"root": ".", "depth": 3},
    ),
    "git-diff": QuickAction(
        id="git-diff",
        label="Git Diff",
        description="View uncommitted changes",
        tool="git_diff",
        prompt_prefix="Please analyze the following code changes and check for potential bugs:\n\n",
    ),
}
