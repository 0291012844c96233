#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import yaml

sys.path.append(str(Path(__file__).resolve().parents[1]))

from queueflow.core.schema import WorkflowDefinition  # noqa: E402
from queueflow.core.validation import validate_workflow  # noqa: E402


def build_workflow(profile_id: str, name: str) -> dict:
    return {
        "profileId": profile_id,
        "profileName": name,
        "businessType": "three-column",
        "serviceGroups": [
            {
                "code": "Q-ER",
                "name": "Emergency",
                "priority": "High",
                "businessType": "flow-steps",
                "initialState": "WAIT",
                "states": {
                    "WAIT": {
                        "label": "Waiting",
                        "type": "INITIAL",
                        "color": "#3B82F6",
                        "transitions": [{"action": "Call Next", "to": "CALL"}],
                    },
                    "CALL": {
                        "label": "Calling",
                        "type": "NORMAL",
                        "color": "#F59E0B",
                        "estDuration": 10,
                        "transitions": [
                            {"action": "Finish", "to": "DONE"},
                            {"action": "Back to Queue", "to": "WAIT", "requiredRole": ["ADMIN"]},
                        ],
                    },
                    "DONE": {"label": "Done", "type": "FINAL", "color": "#10B981"},
                },
            },
            {
                "code": "DEPOSIT",
                "name": "Deposit",
                "initialState": "WAIT",
                "states": {
                    "WAIT": {
                        "label": "Waiting",
                        "type": "INITIAL",
                        "transitions": [
                            {"action": "Call", "to": "SERVING"},
                            {"action": "Cancel", "to": "CANCELLED"},
                        ],
                    },
                    "SERVING": {
                        "label": "Serving",
                        "type": "NORMAL",
                        "estDuration": 7,
                        "transitions": [
                            {"action": "Skip", "to": "WAIT"},
                            {"action": "Finish", "to": "DONE"},
                        ],
                    },
                    "DONE": {"label": "Done", "type": "FINAL"},
                    "CANCELLED": {"label": "Cancelled", "type": "FINAL"},
                },
            },
        ],
        "servicePoints": [
            {"code": "ER-1", "name": "ER Room 1", "focusStates": ["CALL"], "serviceGroups": ["Q-ER"]},
            {"code": "COUNTER-1", "name": "Counter 1", "focusStates": ["SERVING"], "serviceGroups": []},
        ],
        "kiosks": [
            {"code": "K-LOBBY", "name": "Lobby Kiosk", "visibleServiceGroups": ["Q-ER", "DEPOSIT"]},
        ],
        "displayBoards": [
            {"code": "TV-ER", "name": "ER Board", "title": "Emergency", "visibleServiceGroups": ["Q-ER"]},
            {"code": "TV-HALL", "name": "Hall Board", "visibleServiceGroups": ["Q-ER", "DEPOSIT"]},
        ],
    }


def build_tickets(profile_id: str, count: int) -> list[dict]:
    start = datetime.now(timezone.utc) - timedelta(minutes=count)
    groups = ["Q-ER", "DEPOSIT"]
    tickets = []
    for index in range(count):
        group = groups[index % len(groups)]
        tickets.append(
            {
                "docNo": f"{profile_id}-{index + 1:06d}",
                "ticketNo": f"{group}-{index // len(groups) + 1:03d}",
                "queueType": group,
                "status": "WAIT",
                "checkInTime": (start + timedelta(minutes=index)).isoformat(),
                "profileId": profile_id,
            }
        )
    return tickets


def main() -> None:
    parser = argparse.ArgumentParser(description="Write a sample workflow seed document")
    parser.add_argument("--output", required=True, help="output path (.json, .yaml or .yml)")
    parser.add_argument("--profile", default="PF-DEMO", help="profile code")
    parser.add_argument("--name", default="Demo Branch", help="profile display name")
    parser.add_argument("--tickets", type=int, default=0, help="number of waiting tickets to include")
    args = parser.parse_args()

    document = build_workflow(args.profile, args.name)
    validate_workflow(WorkflowDefinition.model_validate(document))

    payload: dict = document
    if args.tickets > 0:
        payload = {"workflows": [document], "tickets": build_tickets(args.profile, args.tickets)}

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8") as fp:
        if output.suffix.lower() in (".yaml", ".yml"):
            yaml.safe_dump(payload, fp, allow_unicode=True, sort_keys=False)
        else:
            json.dump(payload, fp, indent=2, ensure_ascii=False)

    print(f"Sample workflow written: {output}")


if __name__ == "__main__":
    main()
