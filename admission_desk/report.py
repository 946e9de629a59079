"""
PDF report generation for the admissions desktop application.

This module defines the ``ReportGenerator`` class which produces a
PDF summary of the selection: the weights in force, the allocation of
seats per research line and a chart of final scores. Allocation is
recomputed from the local store every time a report is generated.

The ``fpdf2`` library is used to construct the PDF document and
``matplotlib`` to plot the score distribution which is embedded as an
image in the report.
"""

from __future__ import annotations

import datetime
import os
import tempfile
from typing import Any, Mapping, Optional

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
from fpdf import FPDF  # noqa: E402

from admission_desk.allocation import AllocationEngine, AllocationResult  # noqa: E402
from admission_desk.database import DatabaseManager  # noqa: E402

_NEXT = {"new_x": "LMARGIN", "new_y": "NEXT"}


def _latin1(text: Any) -> str:
    """Core PDF fonts only cover latin-1."""
    return str(text).encode("latin-1", errors="replace").decode("latin-1")


def _fmt(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.2f}"


class ReportGenerator:
    """Generate PDF reports summarising the selection results."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    def _create_scores_plot(self, output_path: str, min_score: float = 0.0) -> None:
        """Create a bar chart of final scores per research line.

        The plot is saved to ``output_path`` as a PNG file.
        """
        df = self.db.get_results()
        fig, ax = plt.subplots(figsize=(8, 4))
        if df.empty:
            ax.set_title("No submissions available")
        else:
            for line, group in df.groupby("Line", sort=True):
                ax.bar(group["Protocol"], group["Final"], label=line or "-")
            if min_score:
                ax.axhline(min_score, color="red", linestyle="--", linewidth=1, label="Minimum")
            ax.set_xlabel("Submission")
            ax.set_ylabel("Final score")
            ax.set_title("Final scores")
            ax.tick_params(axis="x", labelrotation=90, labelsize=6)
            ax.legend(fontsize=7)
        fig.tight_layout()
        fig.savefig(output_path)
        plt.close(fig)

    def generate(self, output_path: str, seat_config: Optional[Mapping[str, Any]] = None) -> AllocationResult:
        """
        Generate the selection report.

        Parameters
        ----------
        output_path : str
            Path to the PDF file to write.
        seat_config : Optional[mapping]
            Per-line seat configuration passed to the allocation engine.

        Returns
        -------
        AllocationResult
            The allocation printed in the report.
        """
        result = AllocationEngine(self.db).allocate(seat_config)
        settings = self.db.get_settings()

        fd, plot_path = tempfile.mkstemp(suffix=".png")
        os.close(fd)
        try:
            self._create_scores_plot(plot_path, result.weights.min_score)

            pdf = FPDF()
            pdf.set_auto_page_break(auto=True, margin=15)
            pdf.add_page()
            pdf.set_font("Helvetica", "B", 16)
            title = settings.get("app.name") or "Admission Desk"
            pdf.cell(0, 10, _latin1(f"{title} - selection report"), align="C", **_NEXT)
            pdf.ln(4)
            pdf.set_font("Helvetica", "", 11)
            now_str = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
            pdf.cell(0, 7, f"Report generated: {now_str}", **_NEXT)
            weights = result.weights
            pdf.cell(
                0, 7,
                f"Weights: project {weights.project:g}, interview {weights.interview:g}, "
                f"language {weights.language:g}. Minimum per category: {weights.min_score:g}",
                **_NEXT,
            )
            pdf.ln(2)
            page_width = pdf.w - 2 * pdf.l_margin
            pdf.image(plot_path, x=pdf.l_margin, w=page_width)

            headers = ["Rank", "Protocol", "Name", "Project", "Interview", "Language", "Final", "Seat"]
            widths = [12, 30, 52, 18, 18, 18, 14, 28]
            for line in sorted(result.allocation):
                pdf.add_page()
                pdf.set_font("Helvetica", "B", 14)
                pdf.cell(0, 10, _latin1(f"Line: {line}"), **_NEXT)
                pdf.set_font("Helvetica", "B", 9)
                for header, width in zip(headers, widths):
                    pdf.cell(width, 6, header, border=1, align="C")
                pdf.ln()
                pdf.set_font("Helvetica", "", 9)
                for seat in result.allocation[line]:
                    score = seat.candidate.score
                    row = [
                        str(seat.rank),
                        seat.protocol,
                        seat.candidate.name[:30],
                        _fmt(score.project_average),
                        _fmt(score.interview_average),
                        _fmt(score.language_average),
                        _fmt(score.final_score),
                        seat.category.value,
                    ]
                    for cell, width in zip(row, widths):
                        pdf.cell(width, 6, _latin1(cell), border=1, align="C")
                    pdf.ln()
            if not result.allocation:
                pdf.set_font("Helvetica", "", 11)
                pdf.cell(0, 8, "No eligible candidates.", **_NEXT)
            pdf.output(output_path)
        finally:
            if os.path.exists(plot_path):
                os.remove(plot_path)
        return result
