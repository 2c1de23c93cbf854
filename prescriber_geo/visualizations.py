### Diagnostic plot of how each state's records were resolved. Saved to disk when save_dir is given, shown interactively otherwise.

import os
from pathlib import Path
import matplotlib.pyplot as plt
import pandas as pd
import polars as pl
import seaborn as sns

from prescriber_geo.aggregate import TIER_ORDER


def plot_resolution_tiers(
    summary,
    save_dir=None,
    top_n=None,
    figsize=(10, 12),
    dpi=300,
    palette="viridis",
):
    """
    Plot stacked horizontal bars of record counts per resolution tier for each state.

    Parameters
    ----------
    summary : pl.DataFrame or pd.DataFrame
        Output of ``aggregate``; must contain ['state', 'tier', 'records'].
    save_dir : str or None
        Directory to save the PNG. If None, shows interactively.
    top_n : int or None
        If provided, limits to the N states with the most unresolved records.
    figsize : tuple
        Figure size.
    dpi : int
        Image resolution.
    palette : str
        Seaborn/Matplotlib color palette (e.g. 'viridis', 'crest', 'mako').

    Returns
    -------
    Path or None, the saved file.
    """

    if isinstance(summary, pl.DataFrame):
        summary = summary.to_pandas()

    # --- Validate dataframe ---
    required_cols = {"state", "tier", "records"}
    if not required_cols.issubset(summary.columns):
        raise ValueError(
            f"DataFrame must contain columns {required_cols}, got {summary.columns.tolist()}"
        )

    if summary.empty:
        print("⚠️ Resolution summary is empty. Skipping plot.")
        return None

    # --- State x tier counts ---
    wide = (
        summary.pivot_table(index="state", columns="tier", values="records", aggfunc="sum", fill_value=0)
        .reindex(columns=TIER_ORDER, fill_value=0)
    )
    wide = wide.sort_values("UNRESOLVED", ascending=False)
    if top_n is not None:
        wide = wide.head(top_n)
    wide = wide.iloc[::-1]

    colors = sns.color_palette(palette, n_colors=len(TIER_ORDER))
    fig, ax = plt.subplots(figsize=figsize)
    left = pd.Series(0, index=wide.index)
    for tier, color in zip(TIER_ORDER, colors):
        ax.barh(wide.index, wide[tier], left=left, color=color, label=tier)
        left = left + wide[tier]

    ax.set_title("Records by Resolution Tier and State", fontsize=14)
    ax.set_xlabel("Records", fontsize=12)
    ax.set_ylabel("")
    ax.legend(loc="lower right", fontsize=9)
    plt.tight_layout()

    if save_dir:
        os.makedirs(save_dir, exist_ok=True)
        plots_dir = Path(save_dir) / "diagnostics"
        plots_dir.mkdir(parents=True, exist_ok=True)
        fname = plots_dir / "Resolution_Tiers_by_State.png"
        plt.savefig(fname, dpi=dpi, bbox_inches="tight")
        plt.close(fig)
        print(f"✅ Saved: {fname}")
        return fname

    plt.show()
    return None
