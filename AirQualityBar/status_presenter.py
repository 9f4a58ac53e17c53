"""Presenter abstraction for the status indicator - allows swapping the menu bar with test backends."""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple


class StatusPresenterBase(ABC):
    """Abstract surface showing a short label plus an optional tooltip."""

    @abstractmethod
    def set_text(self, text: str) -> None:
        """Replace the indicator label."""
        pass

    @abstractmethod
    def set_tooltip(self, text: str) -> None:
        """Replace the tooltip; an empty string clears it."""
        pass

    @abstractmethod
    def show_alert(self, title: str, message: str) -> None:
        """Show an explanatory prompt to the user."""
        pass


class LogStatusPresenter(StatusPresenterBase):
    """Headless presenter that writes indicator changes to the log."""

    def __init__(self):
        self.text = ""
        self.tooltip = ""

    def set_text(self, text: str) -> None:
        if text != self.text:
            logging.info(f"AQI indicator: {text}")
        self.text = text

    def set_tooltip(self, text: str) -> None:
        if text and text != self.tooltip:
            logging.info(f"AQI details: {text}")
        self.tooltip = text

    def show_alert(self, title: str, message: str) -> None:
        logging.warning(f"{title}: {message}")


class FakeStatusPresenter(StatusPresenterBase):
    """In-memory presenter for testing; records everything it was asked to show."""

    def __init__(self):
        self.texts: List[str] = []
        self.tooltips: List[str] = []
        self.alerts: List[Tuple[str, str]] = []

    @property
    def text(self) -> Optional[str]:
        return self.texts[-1] if self.texts else None

    @property
    def tooltip(self) -> Optional[str]:
        return self.tooltips[-1] if self.tooltips else None

    def set_text(self, text: str) -> None:
        self.texts.append(text)

    def set_tooltip(self, text: str) -> None:
        self.tooltips.append(text)

    def show_alert(self, title: str, message: str) -> None:
        self.alerts.append((title, message))
