"""Prompt templates for dispatching work to worker models.

Each template encodes a task contract, role framing and an expected
output format. Placeholders use ``{{name}}``; anything left unfilled is
rendered as ``[TODO: name]`` so a half-filled prompt is obvious.
"""
from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Dict, Mapping, Optional

from orchestrator.core.errors import ValidationError

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


@dataclass(frozen=True)
class DispatchTemplate:
    name: str
    target: str             # codex | gemini | both
    description: str
    body: str


_CODEX_REVIEW = """## Task Contract
**Goal**: {{goal}}
**Scope**: {{scope}}
**Constraints**: {{constraints}}
**Done Criteria**: Report findings with file:line references. Do NOT implement fixes unless explicitly told to.

## Context
{{context}}

## Instructions
Review the specified scope for: bugs, security issues, error handling gaps, and correctness.
For each finding, provide:
- Severity (P1=blocker, P2=significant, P3=minor)
- File path and line number
- What's wrong and why it matters
- Suggested fix (code snippet)

## Expected Output Format
```
## Summary (2-4 lines)
## Findings (ordered by severity, each with file:line, impact, evidence)
## Risks / Open Questions
## Next Actions (numbered)
```"""

_CODEX_IMPLEMENT = """## Task Contract
**Goal**: {{goal}}
**Scope**: {{scope}}
**Constraints**: {{constraints}}
**Done Criteria**: Implementation complete. All specified tests pass. No regressions.
**Verify Command**: {{verify_command}}

## Context
{{context}}

## Instructions
Implement the specified changes. After implementation:
1. Run the verify command
2. Fix any failures
3. Report what was changed and test results

## Expected Output Format
```
## Summary (2-4 lines)
## Changes Made (file path + what changed)
## Validation (commands run + pass/fail)
## Risks / Open Questions
```"""

_GEMINI_ARCHITECTURE = """## Task Contract
**Goal**: {{goal}}
**Analysis Lens**: {{lens}}
**Scope**: {{scope}} (but consider how neighboring modules consume it)
**Done Criteria**: Architectural assessment with cross-module impact map and alternatives.

## Context
{{context}}

## Instructions
Analyze through the specified lens. Trace data flow and dependencies across files.
Focus on:
- Cross-module side effects
- Alignment with or drift from existing patterns
- Long-term maintenance implications
- Alternative approaches with tradeoffs

Use [path/to/file:L123] anchors so an implementer can act on your findings.

## Expected Output Format
```
## Executive Summary
## Architectural Mapping (dependency graph)
## File-Specific Details (with path:line anchors)
## Risk / Gap Analysis
## Alternatives & Tradeoffs
```"""

_GEMINI_RESEARCH = """## Task Contract
**Goal**: {{goal}}
**Research Questions**: {{questions}}
**Scope**: {{scope}}
**Done Criteria**: Comparative analysis with recommendations ranked by fit.

## Context
{{context}}

## Instructions
Research the specified questions and look for current practice.
For each approach found:
- How it works
- Pros/cons for this specific use case
- Adoption/maturity level
- Integration complexity

## Expected Output Format
```
## Executive Summary
## Findings (per research question)
## Comparison Matrix
## Recommendation (ranked, with rationale)
## Sources (URLs)
```"""

_PARALLEL_REVIEW = """### Codex Prompt (Specialist)
## Task Contract
**Goal**: Code-level review of {{scope}}
**Done Criteria**: Concrete defects with file:line. Implement fixes for P1/P2. Run {{verify_command}}. Report residual risks.
**Role**: Focus on line-level correctness, bugs, security and test coverage.

{{context}}

---

### Gemini Prompt (Architect)
## Task Contract
**Goal**: Architectural impact analysis of {{scope}}
**Done Criteria**: System-wide impact map, pattern assessment, alternatives with tradeoffs.
**Role**: Focus on cross-module impact, design patterns and long-term implications.

{{context}}

Use [file:line] anchors so the specialist knows where to apply your recommendations."""

_PIPELINE = """## Pipeline Workflow (4 stages)

### Stage 1: Gemini (Research + Spec)
Dispatch to Gemini: research {{goal}} and produce an IMPLEMENTATION_SPEC.md
with approach comparison and file:line anchors.

### Stage 2: Review Spec
Check the spec for completeness, feasibility and missed risks. Revise or approve.

### Stage 3: Codex (Build)
Dispatch to Codex with the approved spec, explicit done criteria and verify commands.

### Stage 4: Gemini (Audit)
Dispatch to Gemini with the spec and the implementation. Flag deviations and missed requirements.

## Variables
**Goal**: {{goal}}
**Scope**: {{scope}}
**Context**: {{context}}"""

_FEEDBACK = """You just completed work on: {{goal}}

Based on this task:

1. What patterns did you notice that could be reused in similar tasks?
2. What was unclear or slowed you down in the dispatch prompt?
3. What would you do differently if given the same task again?
4. Were there any gotchas or edge cases worth recording for future reference?
5. If another model ({{other_model}}) did a parallel review, what should it focus on?

Be specific. Reference file paths and concrete examples from the task."""


TEMPLATES: Dict[str, DispatchTemplate] = {
    t.name: t
    for t in (
        DispatchTemplate("codex-review", "codex", "Code review: concrete bugs with file:line precision", _CODEX_REVIEW),
        DispatchTemplate("codex-implement", "codex", "Implementation task: build and verify", _CODEX_IMPLEMENT),
        DispatchTemplate("gemini-architecture", "gemini", "Architecture review: systemic impact across the codebase", _GEMINI_ARCHITECTURE),
        DispatchTemplate("gemini-research", "gemini", "Research task: compare approaches and practices", _GEMINI_RESEARCH),
        DispatchTemplate("parallel-review", "both", "Same artifact reviewed by both, split by abstraction layer", _PARALLEL_REVIEW),
        DispatchTemplate("pipeline", "both", "Sequential handoff: research, review, build, audit", _PIPELINE),
        DispatchTemplate("feedback", "both", "Post-project feedback request", _FEEDBACK),
    )
}


def fill_template(body: str, variables: Optional[Mapping[str, str]] = None) -> str:
    result = body
    for key, value in (variables or {}).items():
        result = result.replace("{{" + key + "}}", str(value))
    return _PLACEHOLDER.sub(lambda m: f"[TODO: {m.group(1)}]", result)


def get_template(name: str) -> DispatchTemplate:
    template = TEMPLATES.get(name)
    if template is None:
        raise ValidationError(
            f'Unknown template "{name}". Available: {", ".join(TEMPLATES)}',
            available=list(TEMPLATES),
        )
    return template


def render_template(name: str, variables: Optional[Mapping[str, str]] = None) -> str:
    template = get_template(name)
    header = f"## Template: {template.name} [{template.target}]\n_{template.description}_\n\n"
    return header + fill_template(template.body, variables)


def list_templates() -> str:
    lines = [f"- **{t.name}** [{t.target}] {t.description}" for t in TEMPLATES.values()]
    return (
        "## Dispatch Templates\n\n"
        + "\n".join(lines)
        + '\n\nUse `get_dispatch_template(template="name", vars={...})` to fill one in.'
    )
