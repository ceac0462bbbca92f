"""Turns free-text requests into task records.

Keyword heuristics only; anything smarter belongs to whatever executes the
task, not to routing.
"""

import uuid
from typing import Iterable, List, Optional, Sequence, Tuple

from workforce.models import Priority, Task, TaskAttachment

MAX_TITLE_LENGTH = 100
TRUNCATED_TITLE_LENGTH = 47

# (task type, keywords), first match wins.
TASK_TYPE_KEYWORDS: Sequence[Tuple[str, Sequence[str]]] = (
    ("bug_fix", ("bug", "fix")),
    ("feature_development", ("feature", "implement")),
    ("testing", ("test", "qa")),
    ("deployment", ("deploy", "release")),
    ("security", ("security", "vulnerability")),
)

PRIORITY_KEYWORDS: Sequence[Tuple[Priority, Sequence[str]]] = (
    (Priority.CRITICAL, ("urgent", "critical", "asap")),
    (Priority.HIGH, ("high", "important")),
    (Priority.LOW, ("low", "minor")),
)

SKILL_KEYWORDS: Sequence[Tuple[str, Sequence[str]]] = (
    ("go", ("golang", "go ")),
    ("javascript", ("javascript", "js ", "node")),
    ("python", ("python", "py ")),
    ("docker", ("docker", "container")),
    ("kubernetes", ("kubernetes", "k8s")),
    ("security", ("security", "vulnerability", "penetration")),
    ("testing", ("test", "testing", "qa")),
)


def extract_task_title(prompt: str) -> str:
    first_line = prompt.split("\n", 1)[0]
    if len(first_line) < MAX_TITLE_LENGTH:
        return first_line.strip()
    if len(prompt) > 50:
        return prompt[:TRUNCATED_TITLE_LENGTH] + "..."
    return prompt


def determine_task_type(text: str) -> str:
    text = text.lower()
    for task_type, keywords in TASK_TYPE_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return task_type
    return "general"


def determine_task_priority(text: str) -> Priority:
    text = text.lower()
    for priority, keywords in PRIORITY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return priority
    return Priority.MEDIUM


def extract_required_skills(text: str) -> List[str]:
    text = text.lower()
    return [
        skill
        for skill, keywords in SKILL_KEYWORDS
        if any(keyword in text for keyword in keywords)
    ]


def make_attachment(name: str, content: str = "", content_type: str = "", url: str = "") -> TaskAttachment:
    return TaskAttachment(
        id=f"attachment-{uuid.uuid4().hex[:12]}",
        name=name,
        type=content_type,
        size=len(content.encode("utf-8")),
        url=url,
        content=content,
    )


def build_task(
    prompt: str,
    requested_by: str = "user",
    attachments: Iterable[TaskAttachment] = (),
    priority: Optional[Priority] = None,
) -> Task:
    """Task for a free-text request; type, priority and skills come from keywords."""
    return Task(
        title=extract_task_title(prompt),
        description=prompt,
        type=determine_task_type(prompt),
        priority=priority or determine_task_priority(prompt),
        requested_by=requested_by,
        required_skills=extract_required_skills(prompt),
        attachments=list(attachments),
        metadata={"source": "request"},
    )
