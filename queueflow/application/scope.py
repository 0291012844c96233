"""Scope Resolver: which groups, states and tickets a touchpoint may see."""
from __future__ import annotations

from typing import Iterable

from queueflow.core.schema import (
    FLOW_STEPS,
    DisplayBoard,
    Kiosk,
    ServiceGroup,
    ServicePoint,
    StateDefinition,
    Ticket,
    WorkflowDefinition,
)
from queueflow.domain import (
    BoardLayout,
    ColumnKind,
    Failure,
    FailureReason,
    RenderColumn,
    RenderItem,
    RenderPlan,
    Result,
    SessionContext,
    Success,
    TouchpointKind,
)

ALL_GROUPS = "ALL"

IN_PROGRESS_BASELINE = frozenset({"CALLING", "SERVING", "IN_PROGRESS", "IN_ROOM"})


def fifo(tickets: Iterable[Ticket]) -> list[Ticket]:
    """Oldest check-in first; ties keep their incoming order."""

    return sorted(tickets, key=lambda ticket: ticket.check_in_time)


def counter_label(ticket: Ticket, group: ServiceGroup | None) -> str:
    return ticket.ref_id or ticket.counter or ticket.ref_type or (group.name if group else "") or ticket.service_group


class ScopeResolver:
    """Stateless; every call takes the workflow and tickets it works on."""

    # ------------------------------------------------------------------
    # kiosk
    # ------------------------------------------------------------------
    @staticmethod
    def resolve_for_kiosk(kiosk: Kiosk, workflow: WorkflowDefinition) -> list[ServiceGroup]:
        visible = set(kiosk.visible_service_groups)
        return [group for group in workflow.service_groups if group.code in visible]

    # ------------------------------------------------------------------
    # service point
    # ------------------------------------------------------------------
    @staticmethod
    def service_point_groups(
        point: ServicePoint, workflow: WorkflowDefinition, group_filter: str = ALL_GROUPS
    ) -> list[str]:
        codes = point.service_groups or [group.code for group in workflow.service_groups]
        if group_filter and group_filter != ALL_GROUPS:
            codes = [code for code in codes if code == group_filter]
        return codes

    @classmethod
    def resolve_for_service_point(
        cls,
        point: ServicePoint,
        workflow: WorkflowDefinition,
        tickets: Iterable[Ticket],
        group_filter: str = ALL_GROUPS,
    ) -> list[Ticket]:
        """Tickets in the point's groups whose state it focuses on or that still wait.

        Each group's initial state is always included so a station can pick up
        new arrivals even when its focus list only names later stages.
        """

        groups = set(cls.service_point_groups(point, workflow, group_filter))
        focus = set(point.focus_states)
        selected: list[Ticket] = []
        for ticket in tickets:
            if ticket.service_group not in groups:
                continue
            group = workflow.group(ticket.service_group)
            if ticket.status in focus or (group is not None and ticket.status == group.initial_state):
                selected.append(ticket)
        return fifo(selected)

    # ------------------------------------------------------------------
    # display board
    # ------------------------------------------------------------------
    @classmethod
    def resolve_for_display_board(
        cls, board: DisplayBoard, workflow: WorkflowDefinition, tickets: Iterable[Ticket]
    ) -> RenderPlan:
        visible = list(dict.fromkeys(board.visible_service_groups))
        groups = [group for group in workflow.service_groups if group.code in set(visible)]
        scoped = fifo(ticket for ticket in tickets if ticket.service_group in set(visible))

        if len(visible) == 1 and len(groups) == 1 and workflow.effective_business_type(groups[0]) == FLOW_STEPS:
            return cls._flow_steps_plan(board, groups[0], scoped)
        return cls._three_column_plan(board, groups, scoped)

    @staticmethod
    def _flow_steps_plan(board: DisplayBoard, group: ServiceGroup, tickets: list[Ticket]) -> RenderPlan:
        states = [state for state in group.ordered_states() if state.type != "FINAL"]
        buckets: dict[str, list[Ticket]] = {state.code: [] for state in states}
        for ticket in tickets:
            column = _match_column(ticket.status, states)
            if column is not None:
                buckets[column.code].append(ticket)

        columns = [
            RenderColumn(
                key=state.code,
                title=state.label or state.code,
                kind=ColumnKind.STATE,
                tickets=buckets[state.code],
                items=[_item(ticket, ticket.display_label) for ticket in buckets[state.code]],
            )
            for state in states
        ]
        return RenderPlan(board_code=board.code, layout=BoardLayout.FLOW_STEPS, columns=columns)

    @staticmethod
    def _three_column_plan(board: DisplayBoard, groups: list[ServiceGroup], tickets: list[Ticket]) -> RenderPlan:
        initial_states = {group.initial_state for group in groups}
        in_progress_states = set(IN_PROGRESS_BASELINE)
        for group in groups:
            in_progress_states.update(state.code for state in group.states_of_type("NORMAL"))
        in_progress_states -= initial_states

        by_code = {group.code: group for group in groups}
        waiting = [ticket for ticket in tickets if ticket.status in initial_states]
        in_progress = [ticket for ticket in tickets if ticket.status in in_progress_states]

        columns = [
            RenderColumn(
                key="waiting",
                title="Waiting",
                kind=ColumnKind.WAITING,
                tickets=waiting,
                items=[_item(ticket, ticket.display_label) for ticket in waiting],
            ),
            RenderColumn(
                key="in_progress",
                title="In Progress",
                kind=ColumnKind.IN_PROGRESS,
                tickets=list(in_progress),
                items=[_item(ticket, ticket.display_label) for ticket in in_progress],
            ),
            RenderColumn(
                key="service_counter",
                title="Service Counter",
                kind=ColumnKind.SERVICE_COUNTER,
                tickets=list(in_progress),
                items=[
                    _item(ticket, counter_label(ticket, by_code.get(ticket.service_group)))
                    for ticket in in_progress
                ],
            ),
        ]
        return RenderPlan(board_code=board.code, layout=BoardLayout.THREE_COLUMN, columns=columns)

    # ------------------------------------------------------------------
    # session entry point
    # ------------------------------------------------------------------
    @classmethod
    def resolve(
        cls, context: SessionContext, workflow: WorkflowDefinition, tickets: Iterable[Ticket]
    ) -> Result[list[ServiceGroup] | list[Ticket] | RenderPlan]:
        """Dispatch on the kind of touchpoint held by ``context``."""

        if context.kind is TouchpointKind.KIOSK:
            kiosk = workflow.kiosk(context.touchpoint_code)
            if kiosk is None:
                return _missing("kiosk", context.touchpoint_code)
            return Success(cls.resolve_for_kiosk(kiosk, workflow))
        if context.kind is TouchpointKind.SERVICE_POINT:
            point = workflow.service_point(context.touchpoint_code)
            if point is None:
                return _missing("service point", context.touchpoint_code)
            return Success(cls.resolve_for_service_point(point, workflow, tickets, context.group_filter))
        board = workflow.display_board(context.touchpoint_code)
        if board is None:
            return _missing("display board", context.touchpoint_code)
        return Success(cls.resolve_for_display_board(board, workflow, tickets))


def _match_column(status: str, states: list[StateDefinition]) -> StateDefinition | None:
    """Exact (case-insensitive) match first, else the first state code prefixing the status."""

    folded = status.casefold()
    for state in states:
        if state.code.casefold() == folded:
            return state
    for state in states:
        if folded.startswith(state.code.casefold()):
            return state
    return None


def _item(ticket: Ticket, label: str) -> RenderItem:
    return RenderItem(doc_no=ticket.doc_no, label=label, status=ticket.status, service_group=ticket.service_group)


def _missing(kind: str, code: str) -> Failure:
    return Failure(FailureReason.NOT_FOUND, f"{kind} {code} not found")


__all__ = ["ALL_GROUPS", "IN_PROGRESS_BASELINE", "ScopeResolver", "counter_label", "fifo"]
