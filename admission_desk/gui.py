"""
Graphical user interface for the admissions desktop application.

This module defines a PyQt-based GUI over the local store. The window
shows the consolidated results of a research line, lets the operator
pull the remote snapshot on demand or toggle auto-sync, runs the seat
allocation with a seat configuration loaded from a JSON file and
writes the PDF selection report.

The GUI is implemented using the QtWidgets module from either
``PyQt5`` or ``PyQt6``. If neither library is available, the
application will raise an ImportError at import time.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

try:
    # Try PyQt5 first
    from PyQt5.QtWidgets import (
        QApplication,
        QMainWindow,
        QWidget,
        QVBoxLayout,
        QHBoxLayout,
        QPushButton,
        QTableView,
        QComboBox,
        QFileDialog,
        QLabel,
        QMessageBox,
        QPlainTextEdit,
    )
    from PyQt5.QtGui import QStandardItemModel, QStandardItem
    from PyQt5.QtCore import Qt, QTimer
except ImportError:
    try:
        # Fall back to PyQt6
        from PyQt6.QtWidgets import (
            QApplication,
            QMainWindow,
            QWidget,
            QVBoxLayout,
            QHBoxLayout,
            QPushButton,
            QTableView,
            QComboBox,
            QFileDialog,
            QLabel,
            QMessageBox,
            QPlainTextEdit,
        )
        from PyQt6.QtGui import QStandardItemModel, QStandardItem
        from PyQt6.QtCore import Qt, QTimer
    except ImportError as exc:
        raise ImportError(
            "Neither PyQt5 nor PyQt6 could be imported. Please install one of them to use the GUI."
        ) from exc

import pandas as pd

from admission_desk.allocation import AllocationEngine
from admission_desk.database import DatabaseManager
from admission_desk.errors import AllocationConfigError
from admission_desk.report import ReportGenerator
from admission_desk.sync import SyncService

ALL_LINES = "All lines"
STATUS_REFRESH_MS = 2000


def _model_from_frame(df: pd.DataFrame) -> QStandardItemModel:
    model = QStandardItemModel(df.shape[0], df.shape[1])
    model.setHorizontalHeaderLabels([str(c) for c in df.columns])
    for row_idx in range(df.shape[0]):
        for col_idx in range(df.shape[1]):
            value = df.iat[row_idx, col_idx]
            text = "" if value is None or (isinstance(value, float) and pd.isna(value)) else str(value)
            item = QStandardItem(text)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                item.setTextAlignment(Qt.AlignmentFlag.AlignVCenter | Qt.AlignmentFlag.AlignRight)
            model.setItem(row_idx, col_idx, item)
    return model


class MainWindow(QMainWindow):
    """Top-level window of the admissions desk."""

    def __init__(self, db: DatabaseManager, sync: SyncService) -> None:
        super().__init__()
        self.setWindowTitle(db.get_settings().get("app.name") or "Admission Desk")
        self.db = db
        self.sync = sync
        self.reporter = ReportGenerator(db)
        self.seat_config: Optional[Dict[str, Any]] = None

        central = QWidget()
        self.setCentralWidget(central)
        layout = QVBoxLayout()
        central.setLayout(layout)

        # Controls: research line selector and actions
        ctrl_layout = QHBoxLayout()
        layout.addLayout(ctrl_layout)

        ctrl_layout.addWidget(QLabel("Research line:"))
        self.line_combo = QComboBox()
        self._populate_lines()
        self.line_combo.currentIndexChanged.connect(self.refresh_table)
        ctrl_layout.addWidget(self.line_combo)

        self.sync_button = QPushButton("Sync now")
        self.sync_button.clicked.connect(self.sync_now)
        ctrl_layout.addWidget(self.sync_button)

        self.auto_button = QPushButton()
        self.auto_button.clicked.connect(self.toggle_auto_sync)
        ctrl_layout.addWidget(self.auto_button)

        self.seats_button = QPushButton("Load seats…")
        self.seats_button.clicked.connect(self.load_seat_config)
        ctrl_layout.addWidget(self.seats_button)

        self.allocate_button = QPushButton("Allocate seats")
        self.allocate_button.clicked.connect(self.allocate)
        ctrl_layout.addWidget(self.allocate_button)

        self.report_button = QPushButton("Generate Report…")
        self.report_button.clicked.connect(self.generate_report)
        ctrl_layout.addWidget(self.report_button)

        self.table_view = QTableView()
        layout.addWidget(self.table_view)

        self.status_label = QLabel()
        layout.addWidget(self.status_label)
        self.log_view = QPlainTextEdit()
        self.log_view.setReadOnly(True)
        self.log_view.setMaximumHeight(120)
        layout.addWidget(self.log_view)

        self.model: Optional[QStandardItemModel] = None
        self.refresh_table()
        self.refresh_status()

        # Auto-sync runs on a scheduler thread; poll its status
        self.timer = QTimer(self)
        self.timer.timeout.connect(self.refresh_status)
        self.timer.start(STATUS_REFRESH_MS)

    def _populate_lines(self) -> None:
        current = self.line_combo.currentText()
        self.line_combo.blockSignals(True)
        self.line_combo.clear()
        self.line_combo.addItem(ALL_LINES)
        for line in self.db.get_research_lines():
            self.line_combo.addItem(line)
        index = self.line_combo.findText(current)
        self.line_combo.setCurrentIndex(max(index, 0))
        self.line_combo.blockSignals(False)

    def refresh_table(self) -> None:
        """Refresh the results table for the selected line."""
        line = self.line_combo.currentText()
        df = self.db.get_results(None if line in ("", ALL_LINES) else line)
        self.model = _model_from_frame(df)
        self.table_view.setModel(self.model)
        self.table_view.resizeColumnsToContents()

    def refresh_status(self) -> None:
        status = self.sync.get_status()
        state = "syncing…" if status["syncing"] else "idle"
        self.status_label.setText(f"Sync: {state}. Last sync: {status['lastSync'] or 'never'}")
        self.auto_button.setText("Stop auto-sync" if status["autoSyncActive"] else "Start auto-sync")
        self.log_view.setPlainText("\n".join(f"[{e['type']}] {e['msg']}" for e in status["log"]))

    # ------------------------------------------------------------------
    # Button handlers
    # ------------------------------------------------------------------
    def sync_now(self) -> None:
        result = self.sync.pull_all()
        self._populate_lines()
        self.refresh_table()
        self.refresh_status()
        if result.already_running:
            QMessageBox.information(self, "Sync", result.error)
        elif not result.success:
            QMessageBox.critical(self, "Sync failed", result.error or "Unknown error")
        else:
            message = f"{result.total} records updated."
            if result.errors:
                message += f"\n{len(result.errors)} records skipped."
            QMessageBox.information(self, "Sync finished", message)

    def toggle_auto_sync(self) -> None:
        if self.sync.auto_sync_active:
            self.sync.stop_auto_sync()
        else:
            self.sync.start_auto_sync()
        self.refresh_status()

    def load_seat_config(self) -> None:
        """Prompt for a JSON seat configuration file."""
        path, _ = QFileDialog.getOpenFileName(self, "Select seat configuration", str(Path.home()), "JSON files (*.json)")
        if not path:
            return
        try:
            with open(path, encoding="utf-8") as fh:
                self.seat_config = json.load(fh)
        except (OSError, ValueError) as exc:
            QMessageBox.critical(self, "Error", f"Failed to read seat configuration:\n{exc}")
            return
        QMessageBox.information(self, "Seats", "Seat configuration loaded.")

    def allocate(self) -> None:
        try:
            result = AllocationEngine(self.db).allocate(self.seat_config)
        except AllocationConfigError as exc:
            QMessageBox.critical(self, "Invalid seat configuration", str(exc))
            return
        df = result.to_frame()
        self.model = _model_from_frame(df)
        self.table_view.setModel(self.model)
        self.table_view.resizeColumnsToContents()

    def generate_report(self) -> None:
        path, _ = QFileDialog.getSaveFileName(self, "Save report as…", "selection_report.pdf", "PDF files (*.pdf)")
        if not path:
            return
        try:
            self.reporter.generate(path, self.seat_config)
        except (AllocationConfigError, OSError, RuntimeError) as exc:
            QMessageBox.critical(self, "Error", f"Failed to generate report:\n{exc}")
            return
        QMessageBox.information(self, "Report generated", f"Report saved to {path}")

    def closeEvent(self, event) -> None:  # noqa: N802
        self.timer.stop()
        self.sync.close()
        super().closeEvent(event)


def run_gui(db: DatabaseManager, sync: SyncService) -> None:
    """Convenience function to run the GUI over an open store."""
    app = QApplication(sys.argv)
    window = MainWindow(db, sync)
    window.resize(1000, 700)
    window.show()
    sys.exit(app.exec())
