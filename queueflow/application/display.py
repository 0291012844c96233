"""Display Router: turns the live feed into a board's render plan."""
from __future__ import annotations

import logging
from typing import Callable

from queueflow.core.schema import DisplayBoard, WorkflowDefinition
from queueflow.domain import FeedSnapshot, RenderPlan

from .feed import LiveTicketFeed
from .scope import ScopeResolver

logger = logging.getLogger(__name__)

PlanListener = Callable[[RenderPlan], None]


class DisplayRouter:
    """Renders one display board and re-renders whenever its feed changes."""

    def __init__(self, feed: LiveTicketFeed, board: DisplayBoard, workflow: WorkflowDefinition) -> None:
        self._feed = feed
        self.board = board
        self.workflow = workflow
        self.last_plan: RenderPlan | None = None
        self._listeners: list[PlanListener] = []
        self._detach: Callable[[], None] | None = None

    def render(self, snapshot: FeedSnapshot | None = None) -> RenderPlan:
        snapshot = snapshot or self._feed.snapshot()
        plan = ScopeResolver.resolve_for_display_board(self.board, self.workflow, snapshot.tickets)
        plan.title = self.board.title or self.board.name or self.board.code
        plan.stale = snapshot.stale
        plan.loaded = snapshot.ever_loaded
        self.last_plan = plan
        return plan

    def use_workflow(self, workflow: WorkflowDefinition) -> RenderPlan:
        """Swap in a reloaded workflow; the board keeps its code."""

        board = workflow.display_board(self.board.code)
        if board is not None:
            self.board = board
        else:
            logger.warning("Display board %s no longer exists in the workflow", self.board.code)
        self.workflow = workflow
        return self._rerender(self._feed.snapshot())

    def subscribe(self, listener: PlanListener) -> Callable[[], None]:
        """Call ``listener`` with a fresh plan after every feed change."""

        self._listeners.append(listener)
        if self._detach is None:
            self._detach = self._feed.add_listener(self._rerender)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
            if not self._listeners and self._detach is not None:
                self._detach()
                self._detach = None

        return remove

    def _rerender(self, snapshot: FeedSnapshot) -> RenderPlan:
        plan = self.render(snapshot)
        for listener in list(self._listeners):
            listener(plan)
        return plan


__all__ = ["DisplayRouter", "PlanListener"]
