"""
Prompt templates for the inference tier and the consolidator.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping

from curator.memory.models import ConversationMessage

EXTRACTION_SYSTEM_PROMPT = """You are a memory extraction agent for a software developer's CLI workflow.

Given a conversation transcript, extract:
1. **Project decisions** - architecture choices, design tokens, API patterns,
   naming conventions, theme/style definitions, tech stack decisions
2. **Global preferences** - technology preferences (languages, frameworks,
   deployment, tooling, style), coding style, and workflow patterns that
   apply across projects. Use the "preferences" category with pref-* keys.
3. **Corrections** - if the user corrected a previous approach, note the
   preferred way

Output JSON only, no other text:
{
  "project_memories": [
    { "category": "design|architecture|api|conventions|config|tooling|gotchas|preferences|data",
      "key": "short identifier",
      "value": "concise description",
      "confidence": 0.0-1.0 }
  ],
  "global_memories": [
    { "category": "design|architecture|api|conventions|config|tooling|gotchas|preferences|data",
      "key": "short identifier",
      "value": "concise description",
      "confidence": 0.0-1.0 }
  ],
  "supersedes": ["keys that this new info replaces"]
}

Rules:
- Only extract HIGH-SIGNAL information. Skip chitchat, debugging, and exploration.
- Confidence threshold: only include items where you're 0.7+ confident this is a deliberate decision.
- Max 10 memories per extraction.
- Keep values concise (under 100 chars each).
- Categories: architecture (tech stack, patterns), design (colors, fonts, layout), api (routes, auth),
  conventions (naming, style), config (env, build), tooling (dev tools, CI), gotchas (pitfalls, warnings),
  preferences (cross-project technology preferences), data (canonical data files, database schemas, data pipelines, ORM configs).
- For global_memories, use the "preferences" category for technology preferences:
  - Language: key "pref-lang-{name}", e.g. "pref-lang-python": "Prefers for backend and ML"
  - Framework: key "pref-framework-{name}", e.g. "pref-framework-nextjs": "Prefers for React frontends"
  - Deployment: key "pref-deploy-{name}", e.g. "pref-deploy-cloudflare": "Deploys via wrangler CLI"
  - Tooling: key "pref-tool-{name}", e.g. "pref-tool-vitest": "Prefers over Jest for testing"
  - Style: key "pref-style-{name}", e.g. "pref-style-tailwind": "Prefers for CSS in most projects"
- Preferences are suggestions, not rules. Phrase values as "Prefers..." or "Uses..." not "Always uses..."
- Infer preferences from repeated usage patterns or explicit statements like "I prefer", "my go-to", "I usually use".
- For the "data" category, extract canonical data files (JSONL, CSV, Parquet, etc.), their schemas,
  database schemas from ORMs, and data pipeline relationships. If a file is designated as the
  "single source of truth" or "canonical source", extract with high confidence.
  Key format: "data-<type>-<name>", e.g. "data-file-bars.jsonl": "data/bars.jsonl - JSONL with fields name, origin, rating"."""


CONSOLIDATION_PROMPT = """You are a memory consolidation agent. Given a set of project memories:

1. Merge duplicates (same concept under different keys) - keep the more descriptive one
2. Resolve contradictions - prefer newer entries (lower age_days)
3. Remove obsolete entries - things that are clearly outdated or superseded
4. Improve clarity - make values more concise where possible

Return JSON only:
{{
  "keep": [
    {{ "key": "...", "category": "...", "value": "...", "confidence": 0.0-1.0 }}
  ],
  "removed_keys": ["keys that were merged or removed"],
  "reason": "brief summary of changes"
}}

Memories to consolidate:
{memories_json}"""


def build_extraction_prompt(
    messages: Iterable[ConversationMessage],
    existing: Mapping[str, str],
) -> str:
    """
    User content for an extraction call.

    Args:
        messages: High-signal conversation turns
        existing: key -> value digest of facts already stored
    """
    existing_str = "\n".join(f"- {key}: {value}" for key, value in existing.items())
    conversation_str = "\n\n".join(f"{m.role}: {m.content}" for m in messages)

    parts = []
    if existing_str:
        parts.append(f"Existing memories (do not duplicate):\n{existing_str}\n")
    parts.append(f"Conversation transcript:\n{conversation_str}")
    return "\n".join(parts)


def build_consolidation_prompt(memories: list[dict[str, Any]]) -> str:
    return CONSOLIDATION_PROMPT.format(memories_json=json.dumps(memories))
