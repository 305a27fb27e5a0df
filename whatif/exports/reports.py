from __future__ import annotations
from typing import Dict, Any, List

from whatif.forecasting.assumptions import parameters_to_dict
from whatif.forecasting.trend import summarize_trend
from whatif.scenarios.store import Scenario


def _fmt(v: Any) -> str:
    if isinstance(v, float):
        return f"{v:,.2f}"
    return str(v)


def _flatten(d: Dict[str, Any], prefix: str = "") -> List[str]:
    lines: List[str] = []
    for k, v in d.items():
        key = f"{prefix}{k}"
        if isinstance(v, dict):
            lines.extend(_flatten(v, prefix=f"{key}."))
        else:
            lines.append(f"- {key}: {_fmt(v)}")
    return lines


def scenario_md(scenario: Scenario, warnings: List[str] | None = None) -> str:
    s = scenario
    flags = [f for f, on in (("primary", s.is_primary), ("favorite", s.is_favorite)) if on]
    lines = [f"# Scenario: {s.name}", ""]
    if s.description:
        lines += [s.description, ""]
    lines.append(f"- mode: {s.mode}")
    if flags:
        lines.append(f"- flags: {', '.join(flags)}")
    lines.append(f"- created_by: {s.created_by or '-'}")
    lines.append(f"- updated_at: {s.updated_at.isoformat()}")

    lines += ["", "## Results", ""]
    lines += _flatten(s.result.to_dict())

    lines += ["", "## Parameters", ""]
    lines += _flatten(parameters_to_dict(s.parameters))

    if s.monthly_trend:
        summary = summarize_trend(s.monthly_trend)
        lines += ["", "## Monthly trend", ""]
        lines.append(f"- months: {len(s.monthly_trend)}")
        lines += _flatten(summary.to_dict())

    if warnings:
        lines.append("\n## Warnings")
        for w in warnings:
            lines.append(f"- {w}")
    return "\n".join(lines) + "\n"
