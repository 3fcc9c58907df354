"""Assemble the report prompt from compacted domain summaries."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping

from .compactor import compact

CHARS_PER_TOKEN = 4

SECTION_TITLES: dict[str, tuple[str, str]] = {
    "dex": ("DEX Protocols", "top pools, whales, large swaps, directional flow"),
    "lending": ("Lending Protocols", "market health, utilization, risk signals, large events"),
    "nft": ("NFT Protocols", "most traded tokens, recent transfers and mints, featured projects"),
    "derivatives": ("Perpetuals", "open interest split, asset breakdown, liquidations, whales"),
    "cross": ("Cross-Protocol Links", "swap flow compared with lending borrow velocity"),
}

FORBIDDEN_TOPICS: tuple[str, ...] = (
    "how many records, rows or entities were fetched or provided",
    "the data pipeline, indexers or query limits behind this dataset",
    "price floors or listing prices for NFTs (not present in the data)",
    "investment advice or price predictions",
)

ANALYSIS_GUIDANCE: tuple[str, ...] = (
    "Treat this like a quant research note: inspect every section, surface the most "
    "material signals and back each statement with numbers (USD, %, ratios, timestamps, addresses).",
    "Derive useful metrics (volume/TVL, borrow/deposit deltas, whale share, liquidation "
    "buffer, implied leverage) and say how each derived metric was computed.",
    "Prioritize statistically meaningful items such as six-figure flows or shifts above 5%; ignore trivial noise.",
    "Relate DEX flows to lending markets where the data hints at leverage loops, hedges or "
    "liquidity migration. Leverage-loop entries are heuristic matches; present them as possibilities.",
    "Highlight at least 5 non-obvious insights, label each \"Insight\" or \"Heads-up\" and quantify it.",
    "Include a dedicated \"Top 10 Active Whale Wallets\" section with addresses, activity and volumes.",
    "Cross-check questionable numbers against market totals before interpreting them.",
    "Tone: analytical and data-first.",
)

OUTPUT_FORMAT: tuple[str, ...] = (
    "Markdown with a single H1 title.",
    "Sections of your choice, each leading with quantified evidence before interpretation.",
    "Finish with a single-sentence takeaway.",
)


@dataclass(slots=True)
class ReportPrompt:
    text: str
    section_chars: dict[str, int] = field(default_factory=dict)

    @property
    def char_count(self) -> int:
        return len(self.text)

    @property
    def estimated_tokens(self) -> int:
        return estimate_tokens(self.text)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _bullets(lines: tuple[str, ...]) -> str:
    return "\n".join(f"- {line}" for line in lines)


def build_report_prompt(
    summaries: Mapping[str, Any],
    budgets: Mapping[str, int],
    *,
    window_hours: int,
    fetched_at: str,
    protocols: Mapping[str, list[str]] | None = None,
) -> ReportPrompt:
    """Render every summary section within its character budget.

    ``summaries`` is keyed by section name (``dex``, ``lending``, ``nft``,
    ``derivatives``, ``cross``); missing sections render as empty objects.
    """

    protocols = protocols or {}
    parts = [
        "You are an on-chain research lead. Below are statistical digests of DEX, lending, "
        f"NFT and perpetuals activity over the past {window_hours} hours.",
        "",
        "## DATASET",
        "",
        f"**Analysis Window:** Last {window_hours} hours  ",
        f"**Data Pulled At:** {fetched_at}",
    ]
    section_chars: dict[str, int] = {}
    for key, (title, description) in SECTION_TITLES.items():
        body = compact(summaries.get(key) or {}, budgets[key])
        section_chars[key] = len(body)
        parts.extend(["", f"### {title}"])
        names = protocols.get(key)
        if names:
            parts.append(f"Protocols: {', '.join(names)}  ")
        parts.extend([f"Synthesis ({description}):", body])

    parts.extend(
        [
            "",
            "---",
            "",
            "## ANALYSIS GUIDANCE",
            "",
            _bullets(ANALYSIS_GUIDANCE),
            "",
            "## NEVER MENTION",
            "",
            _bullets(FORBIDDEN_TOPICS),
            "",
            "## OUTPUT FORMAT",
            "",
            _bullets(OUTPUT_FORMAT),
        ]
    )
    return ReportPrompt(text="\n".join(parts), section_chars=section_chars)


__all__ = [
    "FORBIDDEN_TOPICS",
    "ReportPrompt",
    "SECTION_TITLES",
    "build_report_prompt",
    "estimate_tokens",
]
