"""Progress narration for lifecycle operations.

The driver reports what it is about to do, and what it did, through an
``ActionHandler``. The default handler writes narration records to the
vradriver logger; callers that render progress elsewhere subclass it.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from vradriver.logging import narrator


class ActionHandler:
    """Receives progress messages and wraps remote actions."""

    def report_progress(self, message: str) -> None:
        narrator.info(message)

    @contextmanager
    def perform_action(self, description: str) -> Iterator[None]:
        """Wrap a remote action, narrating its start and completion.

        Exceptions raised inside the block propagate unchanged after being
        logged.
        """
        narrator.info(f"{description}...")
        try:
            yield
        except Exception as e:
            narrator.error(f"{description} failed: {type(e).__name__} - {e}")
            raise
        narrator.info(f"{description} done")
