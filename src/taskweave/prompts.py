"""Prompt builders for the AI-backed task operations."""

from __future__ import annotations

import json

from taskweave.tasks.model import Subtask, Task


def parse_prd_system(num_tasks: int, next_id: int, research: bool = False) -> str:
    research_note = (
        "\nResearch current best practices and libraries before breaking the work down; "
        "put concrete findings into each task's details."
        if research
        else ""
    )
    return f"""You are an AI assistant that breaks a Product Requirements Document (PRD) into development tasks.
Analyze the PRD and generate approximately {num_tasks} top-level tasks, numbered sequentially from {next_id}.{research_note}

Each task must have: id, title, description, details, testStrategy, priority (high, medium or low) and dependencies.
Guidelines:
1. Order tasks logically; earlier tasks set up foundations.
2. A task may only depend on tasks with a lower id.
3. Keep each task atomic and focused on a single responsibility.
4. Do not invent requirements that are not in the PRD.

Respond ONLY with a JSON object of the form {{"tasks": [...]}}."""


def parse_prd_user(prd_text: str, num_tasks: int, next_id: int) -> str:
    return f"""Break down this PRD into approximately {num_tasks} tasks, starting IDs from {next_id}:

{prd_text}"""


UPDATE_TASK_SYSTEM = """You are an AI assistant helping to update a software development task based on new context.
You will receive a task as JSON and a prompt describing changes.

Guidelines:
1. Return the complete, updated task as a single JSON object.
2. Keep the same id and title.
3. Do not change the status unless the prompt explicitly asks for it.
4. Subtasks with status "done" or "completed" must be returned unchanged.
5. New subtasks must use ids higher than every existing subtask id.

Return only the JSON object, no explanations."""


def update_task_user(task: Task, instruction: str) -> str:
    return f"""Here is the task to update:
{json.dumps(task.to_dict(), indent=2)}

Please update this task based on the following new context:
{instruction}

Return only the updated task as a valid JSON object."""


UPDATE_TASKS_SYSTEM = """You are an AI assistant helping to update software development tasks based on new context.
You will receive a JSON array of tasks and a prompt describing changes that apply from a point onward.

Guidelines:
1. Return every task you were given, updated, as a JSON object of the form {"tasks": [...]}.
2. Keep each task's id and title.
3. Do not change the status unless the prompt explicitly asks for it.
4. Subtasks with status "done" or "completed" must be returned unchanged.
5. Only change what the new context actually affects.

Return only the JSON object, no explanations."""


def update_tasks_user(tasks: list[Task], instruction: str) -> str:
    return f"""Here are the tasks to update:
{json.dumps([t.to_dict() for t in tasks], indent=2)}

Please update these tasks based on the following new context:
{instruction}

Return only {{"tasks": [...]}} with the updated tasks as valid JSON."""


UPDATE_SUBTASK_SYSTEM = """You are an AI assistant helping to record implementation notes on a subtask.
Given the subtask and the user's request, write concise, factual notes to append to the subtask details.
Respond with plain text only. Do not repeat the existing details."""


def update_subtask_user(parent: Task, subtask: Subtask, instruction: str) -> str:
    return f"""Parent task {parent.id}: {parent.title}
Subtask {parent.id}.{subtask.id}: {subtask.title}
Current details:
{subtask.details or "(none)"}

User request: {instruction}"""


ADD_TASK_SYSTEM = """You are a helpful assistant that creates well-structured tasks for a software development project.
Generate a single new task from the user's description.
Respond with a JSON object with: title, description, details, testStrategy."""


def add_task_user(instruction: str, new_id: int, context_tasks: list[Task]) -> str:
    context = "\n".join(f"- Task {t.id}: {t.title}" for t in context_tasks) or "(no existing tasks)"
    return f"""Create a comprehensive new task (Task #{new_id}) for this request:
{instruction}

Existing tasks for context:
{context}

Return the task as JSON with id {new_id}."""


def expand_task_system(num_subtasks: int, next_subtask_id: int) -> str:
    return f"""You are an AI assistant helping with task breakdown for software development.
Break the given task into {num_subtasks} specific subtasks, numbered sequentially from {next_subtask_id}.

Each subtask must have: id, title, description, details, dependencies (ids of earlier subtasks only) and testStrategy.
Respond ONLY with a JSON object of the form {{"subtasks": [...]}}."""


def expand_task_user(task: Task, num_subtasks: int, extra_context: str = "") -> str:
    extra = f"\nAdditional context: {extra_context}" if extra_context else ""
    return f"""Break down this task into {num_subtasks} subtasks:

Task {task.id}: {task.title}
Description: {task.description}
Details: {task.details or "(none)"}{extra}"""
