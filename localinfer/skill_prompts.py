from typing import Iterable, List

from .schemas import Skill


SKILLS_HEADER = "--- Active Skills ---"


def build_system_prompt(base_prompt: str, active_skills: Iterable[Skill]) -> str:
    """Compose the session system prompt from a base prompt plus active skills, in caller order."""
    lines: List[str] = []
    if base_prompt and base_prompt.strip():
        lines.append(base_prompt)
    skills = list(active_skills or [])
    if not skills:
        return "\n".join(lines).rstrip()
    lines.append("")
    lines.append(SKILLS_HEADER)
    for skill in skills:
        template = skill.system_prompt_template or ""
        if not template.strip():
            continue
        lines.append("")
        lines.append(f"[Skill: {skill.name} v{skill.version}]")
        lines.append(template)
    return "\n".join(lines).rstrip()
