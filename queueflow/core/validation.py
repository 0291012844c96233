from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Literal

from queueflow.core.schema import ServiceGroup, WorkflowDefinition

Severity = Literal["error", "warning"]


@dataclass(slots=True, frozen=True)
class WorkflowIssue:
    severity: Severity
    code: str
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


class WorkflowValidationError(Exception):
    """Raised when a workflow definition violates its structural invariants."""

    def __init__(self, issues: Iterable[WorkflowIssue]) -> None:
        self.issues = [issue for issue in issues if issue.severity == "error"]
        summary = "; ".join(str(issue) for issue in self.issues) or "invalid workflow"
        super().__init__(summary)


def _duplicates(codes: Iterable[str]) -> list[str]:
    return sorted(code for code, count in Counter(codes).items() if count > 1)


def group_issues(group: ServiceGroup, path: str) -> list[WorkflowIssue]:
    issues: list[WorkflowIssue] = []
    if not group.states:
        issues.append(WorkflowIssue("error", "EMPTY_GROUP", path, "service group has no states"))
        return issues

    initial = [state.code for state in group.states.values() if state.type == "INITIAL"]
    if len(initial) != 1:
        issues.append(
            WorkflowIssue(
                "error",
                "INITIAL_COUNT",
                path,
                f"expected exactly one INITIAL state, found {len(initial)}",
            )
        )
    if group.initial_state not in group.states:
        issues.append(
            WorkflowIssue(
                "error",
                "INITIAL_UNRESOLVED",
                f"{path}.initialState",
                f"initial state {group.initial_state!r} is not defined",
            )
        )
    elif initial and group.initial_state not in initial:
        issues.append(
            WorkflowIssue(
                "error",
                "INITIAL_MISMATCH",
                f"{path}.initialState",
                f"initial state {group.initial_state!r} is not typed INITIAL",
            )
        )

    for key, state in group.states.items():
        state_path = f"{path}.states.{key}"
        if state.code != key:
            issues.append(
                WorkflowIssue("error", "STATE_KEY_MISMATCH", state_path, f"state code {state.code!r} differs from key")
            )
        for index, transition in enumerate(state.transitions):
            if transition.to not in group.states:
                issues.append(
                    WorkflowIssue(
                        "error",
                        "DANGLING_TRANSITION",
                        f"{state_path}.transitions[{index}]",
                        f"transition {transition.action!r} targets unknown state {transition.to!r}",
                    )
                )
        if state.type == "FINAL" and state.transitions:
            issues.append(
                WorkflowIssue("warning", "FINAL_HAS_TRANSITIONS", state_path, "FINAL state declares outgoing transitions")
            )
    return issues


def collect_issues(definition: WorkflowDefinition) -> list[WorkflowIssue]:
    """Return every structural problem found in ``definition``."""

    issues: list[WorkflowIssue] = []
    if not definition.profile_id:
        issues.append(WorkflowIssue("error", "MISSING_PROFILE", "profileId", "workflow has no profile id"))

    collections = {
        "serviceGroups": [group.code for group in definition.service_groups],
        "servicePoints": [point.code for point in definition.service_points],
        "kiosks": [kiosk.code for kiosk in definition.kiosks],
        "displayBoards": [board.code for board in definition.display_boards],
    }
    for name, codes in collections.items():
        for code in _duplicates(codes):
            issues.append(WorkflowIssue("error", "DUPLICATE_CODE", name, f"code {code!r} is used more than once"))

    for group in definition.service_groups:
        issues.extend(group_issues(group, f"serviceGroups.{group.code}"))

    group_codes = set(collections["serviceGroups"])
    known_states = {code for group in definition.service_groups for code in group.states}
    for point in definition.service_points:
        path = f"servicePoints.{point.code}"
        for code in point.service_groups:
            if code not in group_codes:
                issues.append(WorkflowIssue("warning", "UNKNOWN_GROUP", path, f"unknown service group {code!r}"))
        for code in point.focus_states:
            if code not in known_states:
                issues.append(WorkflowIssue("warning", "UNKNOWN_STATE", path, f"unknown focus state {code!r}"))
    for name, touchpoints in (("kiosks", definition.kiosks), ("displayBoards", definition.display_boards)):
        for touchpoint in touchpoints:
            for code in touchpoint.visible_service_groups:
                if code not in group_codes:
                    issues.append(
                        WorkflowIssue("warning", "UNKNOWN_GROUP", f"{name}.{touchpoint.code}", f"unknown service group {code!r}")
                    )
    return issues


def errors_only(issues: Iterable[WorkflowIssue]) -> list[WorkflowIssue]:
    return [issue for issue in issues if issue.severity == "error"]


def validate_workflow(definition: WorkflowDefinition) -> None:
    issues = collect_issues(definition)
    if errors_only(issues):
        raise WorkflowValidationError(issues)
