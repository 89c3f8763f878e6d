# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""Message bodies for announcements, prompts, reminders and digests, plus the answer modal."""
from typing import Any, Dict

from app.models.domain import CANCELLED, DigestSummary, StandupInstance

RESPONSE_CALLBACK_PREFIX = "standup_response_"
SUBMIT_ACTION = "submit_standup_response"


def announcement(instance: StandupInstance, team_name: str) -> Dict[str, Any]:
    snap = instance.snapshot
    return {
        "text": (
            f":wave: *{snap.config_name}* for {team_name or 'the team'} "
            f"({instance.target_date.isoformat()}) is open. "
            f"Check your DMs for your personal link; responses close in "
            f"{snap.response_window_hours}h."
        )
    }


def member_prompt(instance: StandupInstance, submission_url: str) -> Dict[str, Any]:
    questions = "\n".join(f"{i + 1}. {q}" for i, q in enumerate(instance.snapshot.questions))
    text = (
        f"Time for *{instance.snapshot.config_name}* ({instance.target_date.isoformat()}).\n"
        f"{questions}\n\n<{submission_url}|Submit your answers>"
    )
    return {
        "text": text,
        "blocks": [
            {"type": "section", "text": {"type": "mrkdwn", "text": text}},
            {
                "type": "context",
                "elements": [{
                    "type": "mrkdwn",
                    "text": "Or reply to this DM with numbered answers, one per question.",
                }],
            },
            {
                "type": "actions",
                "elements": [{
                    "type": "button",
                    "action_id": SUBMIT_ACTION,
                    "text": {"type": "plain_text", "text": "Answer here"},
                    "style": "primary",
                    "value": instance.id,
                }],
            },
        ],
    }


def response_modal(instance: StandupInstance) -> Dict[str, Any]:
    """Modal with one multiline input per question; ``block_id`` carries the index."""
    blocks = [
        {
            "type": "input",
            "block_id": f"question_{i}",
            "optional": True,
            "label": {"type": "plain_text", "text": question[:2000]},
            "element": {
                "type": "plain_text_input",
                "action_id": f"answer_{i}",
                "multiline": True,
                "max_length": 3000,
            },
        }
        for i, question in enumerate(instance.snapshot.questions)
    ]
    return {
        "type": "modal",
        "callback_id": f"{RESPONSE_CALLBACK_PREFIX}{instance.id}",
        "title": {"type": "plain_text", "text": (instance.snapshot.config_name or "Standup")[:24]},
        "submit": {"type": "plain_text", "text": "Submit"},
        "close": {"type": "plain_text", "text": "Cancel"},
        "blocks": blocks,
    }


def reminder(instance: StandupInstance, submission_url: str) -> Dict[str, Any]:
    return {
        "text": (
            f":alarm_clock: Reminder: *{instance.snapshot.config_name}* closes in "
            f"{instance.snapshot.reminder_minutes_before} minutes. "
            f"<{submission_url}|Submit your answers>"
        )
    }


def digest(summary: DigestSummary, config_name: str, outcome: str) -> Dict[str, Any]:
    header = (
        f"*{config_name}* digest for {summary.target_date.isoformat()}: "
        f"{summary.responded}/{summary.total_members} members ({summary.response_rate:g}%)"
    )
    if outcome == CANCELLED:
        return {"text": f"{header}\nNo responses were submitted; this standup was cancelled."}

    lines = [header]
    for m in summary.members:
        if not m.answers:
            lines.append(f"\n:x: <@{m.platform_user_id}> did not respond")
            continue
        lines.append(f"\n:white_check_mark: <@{m.platform_user_id}>")
        for a in m.answers:
            question = summary.questions[a.question_index]
            lines.append(f">*{question}*\n>{a.text}")
    return {"text": "\n".join(lines)}
