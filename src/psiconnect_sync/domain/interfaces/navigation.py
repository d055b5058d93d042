"""
Navigation Interface - Port for hard page navigation
====================================================
"""

from abc import ABC, abstractmethod


class Navigator(ABC):
    """
    Performs a hard navigation: the UI drops every rendered view and loads
    ``path`` from scratch, so no stale protected view survives.
    """

    @abstractmethod
    async def hard_navigate(self, path: str, reason: str = "") -> None:
        pass

    @property
    def current_path(self) -> str:
        """Path of the view currently shown; used to build return-to links."""
        return "/"
