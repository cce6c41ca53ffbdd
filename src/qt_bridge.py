from __future__ import annotations

from typing import Optional

from PySide6.QtCore import QObject, QThread, Signal

from controller import BrewController


class ControllerSignals(QObject):
    """Re-emit controller changes as Qt signals.

    The controller notifies from whatever thread made the change (the auto
    update loop, a refresh worker, ...). Widgets connect to these signals and
    Qt queues delivery into the GUI thread.
    """

    state_changed = Signal(str)
    log_appended = Signal(str)
    error_raised = Signal(str)

    def __init__(self, controller: BrewController, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._controller = controller
        controller.subscribe(self._on_state_changed)
        controller.subscribe_log(self.log_appended.emit)

    def _on_state_changed(self, field: str):
        self.state_changed.emit(field)
        if field == "error" and self._controller.error:
            self.error_raised.emit(self._controller.error)


class RefreshThread(QThread):
    """Reload the package lists in the background to keep the UI responsive."""

    finished_with = Signal(list)   # List[Package]

    def __init__(self, controller: BrewController, parent=None):
        super().__init__(parent)
        self._controller = controller

    def run(self):
        self._controller.refresh()
        self.finished_with.emit(list(self._controller.installed_packages))
