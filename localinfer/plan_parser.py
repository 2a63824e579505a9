import re
from typing import Iterable, List, Optional

from .schemas import ActionPlan


MAX_STEPS = 5

_PLAN_RE = re.compile(r"<plan>([\s\S]*?)</plan>")
_GOAL_RE = re.compile(r"<goal>([\s\S]*?)</goal>")
_STEP_RE = re.compile(r"<step>([\s\S]*?)</step>")
_NUMBERED_RE = re.compile(r"^\d+[\.\)]\s*(.+)$")
_BULLET_RE = re.compile(r"^[-\*•]\s*(.+)$")
_GOAL_LINE_RE = re.compile(r"^Goal:\s*(.+)$", re.IGNORECASE)


def _build_plan(goal: str, descriptions: Iterable[str]) -> Optional[ActionPlan]:
    plan = ActionPlan(goal=goal)
    for description in descriptions:
        if len(plan.steps) >= MAX_STEPS:
            break
        text = description.strip()
        if not text:
            continue
        plan.add_step(text)
    return plan if plan.steps else None


def _lines(raw: str) -> List[str]:
    return [line.strip() for line in raw.split("\n") if line.strip()]


def _list_items(lines: Iterable[str]) -> List[str]:
    items: List[str] = []
    for line in lines:
        match = _NUMBERED_RE.match(line) or _BULLET_RE.match(line)
        if match:
            items.append(match.group(1))
    return items


def parse(raw: Optional[str]) -> Optional[ActionPlan]:
    """Extract a plan from a <plan><goal/><step/>...</plan> block.

    Returns None when the text holds no usable plan. At most MAX_STEPS non-blank
    steps are kept, numbered from 1 in source order.
    """
    if not raw or not raw.strip():
        return None
    plan_match = _PLAN_RE.search(raw)
    if not plan_match:
        return None
    block = plan_match.group(1)
    goal_match = _GOAL_RE.search(block)
    if not goal_match:
        return None
    goal = goal_match.group(1).strip()
    if not goal:
        return None
    steps = _STEP_RE.findall(block)
    if not steps:
        return None
    return _build_plan(goal, steps)


def parse_numbered_list(raw: Optional[str]) -> Optional[ActionPlan]:
    """Parse "Goal: ..." followed by a numbered or bulleted list. The goal may be empty."""
    if not raw or not raw.strip():
        return None
    lines = _lines(raw)
    goal = ""
    for line in lines:
        match = _GOAL_LINE_RE.match(line)
        if match:
            goal = match.group(1).strip()
            break
    return _build_plan(goal, _list_items(lines))


def parse_fallback(raw: Optional[str], goal: str) -> Optional[ActionPlan]:
    if not raw or not raw.strip():
        return None
    return _build_plan(goal, _list_items(_lines(raw)))


def extract_plan(raw: Optional[str]) -> Optional[ActionPlan]:
    """Tagged plan first, then the looser numbered-list form."""
    return parse(raw) or parse_numbered_list(raw)
