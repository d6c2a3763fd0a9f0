"""
regtrack.viz
============

Plotting helper used by the ``plot`` CLI command.

Outputs are PNGs written to the *images/* folder (auto-created when a
chart is saved).  Filenames can be overridden via keyword argument.
"""
from __future__ import annotations

import os
from pathlib import Path

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402

from .aggregate import ComplianceStats  # noqa: E402

# default output dir
_IMG_DIR = Path("images")

_BARS = (
    ("Pending", "pending", "#f4a261"),
    ("Compliant", "compliant", "#2b9348"),
    ("Non-Compliant", "non_compliant", "#d62828"),
    ("Not Applicable", "not_applicable", "#8d99ae"),
)


# ---------------------------------------------------------------------
# Bar chart of task counts by compliance state
# ---------------------------------------------------------------------
def status_summary(
    stats: ComplianceStats,
    out_path: str | os.PathLike = _IMG_DIR / "compliance_summary.png",
    title: str = "Compliance Summary",
) -> Path:
    """
    Generate a bar chart of how many tasks are in each compliance state.

    Parameters
    ----------
    stats : ComplianceStats
        Counts from :func:`regtrack.aggregate.compliance_stats`.
    out_path : str or Path, default='images/compliance_summary.png'
        Where to save the PNG.

    Returns
    -------
    pathlib.Path
        Final image path for convenience.
    """
    labels = [label for label, _, _ in _BARS]
    ys = [getattr(stats, attr) for _, attr, _ in _BARS]

    plt.figure()
    bars = plt.bar(labels, ys, color=[c for _, _, c in _BARS], edgecolor="#333")
    # counts on top of each bar
    for rect, cnt in zip(bars, ys):
        plt.text(rect.get_x() + rect.get_width() / 2,
                 cnt + 0.05,
                 str(cnt),
                 ha="center", va="bottom",
                 fontsize=8, color="#333")
    plt.grid(axis="y", linestyle=":", alpha=0.3)
    plt.title(f"{title} ({stats.total} tasks)")
    plt.ylabel("Task Count")
    plt.tight_layout()

    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(out_path, dpi=120, bbox_inches="tight")
    plt.close()
    return out_path
