from __future__ import annotations

import json

EXAMPLE_TASKS = [
    {"id": "task-1", "description": "Review requirements", "priority": "high", "dependencies": []},
    {
        "id": "task-2",
        "description": "Design architecture",
        "priority": "high",
        "dependencies": ["task-1"],
    },
    {
        "id": "task-3",
        "description": "Implement API",
        "priority": "medium",
        "dependencies": ["task-2"],
    },
]


def task_extraction_prompt(transcript: str) -> str:
    example_json = json.dumps(EXAMPLE_TASKS, ensure_ascii=False, indent=2)
    return (
        "You are an expert project manager. Analyze the meeting transcript below and extract "
        "a structured list of actionable tasks.\n"
        "Return ONLY a JSON array (no prose, no markdown). Each element must have exactly:\n"
        '- id: unique string identifier, e.g. "task-1"\n'
        "- description: clear task description\n"
        '- priority: one of "low", "medium", "high"\n'
        "- dependencies: array of task ids that must be completed first\n"
        f"Example:\n{example_json}\n"
        "Rules:\n"
        "1) Only include actionable tasks mentioned in the transcript.\n"
        "2) Do not invent tasks that were not discussed.\n"
        "3) Do not create circular dependencies.\n"
        "4) dependencies must reference ids that appear in this array.\n"
        "\n"
        f"Transcript:\n{transcript}\n"
    )
