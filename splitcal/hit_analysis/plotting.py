import matplotlib.pyplot as plt
import numpy as np
import hist as hist
import mplhep as hep

from splitcal.detector_config import PASSIVE, SPLIT, TECH_HPL, TECH_THINBAR, TECH_WIDEBAR


_CONTENT_COLORS = {
    TECH_WIDEBAR: 'tab:blue',
    TECH_THINBAR: 'tab:green',
    TECH_HPL: 'tab:orange',
    PASSIVE: 'dimgray',
    SPLIT: 'lightgray',
}


def layer_energy_histogram(rows, n_layers, scale=1.0):
    """Deposited energy summed over events (times ``scale``), one bin per layer."""
    h = hist.Hist.new.Reg(n_layers, -0.5, n_layers - 0.5, name="layer", label="Layer").Weight()
    for row in rows:
        for i, layer in enumerate(row['layers']):
            h.fill(layer=i, weight=scale * layer['sumenergydep'])
    return h


def plot_layer_energy(rows, output_file, title='SplitCal', show=False):
    """
    Longitudinal shower profile: mean deposited energy per layer.

    Parameters:
    -----------
    rows : list
        Event summaries from summarize_events
    output_file : str
        Path of the image to write
    """
    if not rows:
        raise ValueError("No events to plot")
    n_layers = len(rows[0]['layers'])
    h = layer_energy_histogram(rows, n_layers, scale=1.0 / len(rows))

    plt.style.use(hep.style.CMS)
    fig, ax = plt.subplots(figsize=(10, 8))
    hep.histplot(h, ax=ax, histtype='fill', alpha=0.6, label=f'{len(rows)} events')
    ax.set_xlabel('Layer', fontsize=20)
    ax.set_ylabel('Mean deposited energy per event [GeV]', fontsize=20)
    ax.set_xticks(np.arange(n_layers))
    ax.set_title(title, fontsize=22)
    ax.legend()

    plt.tight_layout()
    fig.savefig(output_file, dpi=300)
    if show:
        plt.show()
    plt.close(fig)
    return fig


def plot_stack_layout(geometry_info, output_file, show=False):
    """
    Side view of the stack: one bar per slot, coloured by its content.

    Reserved-only slots are drawn hatched.
    """
    plt.style.use(hep.style.CMS)
    fig, ax = plt.subplots(figsize=(16, 4))

    drawn = set()
    for _, info in sorted(geometry_info['layers'].items()):
        content = info['content']
        label = content if content not in drawn else None
        drawn.add(content)
        ax.barh(0, info['global_z_max'] - info['global_z_min'], left=info['global_z_min'], height=1.0,
                color=_CONTENT_COLORS.get(content, 'white'), edgecolor='k', linewidth=0.5,
                hatch=None if info['placed'] else '//', label=label)

    ax.set_yticks([])
    ax.set_xlabel('z [mm]', fontsize=20)
    name = geometry_info['detector_name']
    ax.set_title(f"{name}: {len(geometry_info['layers'])} slots, "
                 f"{geometry_info['total_length']:.1f} mm", fontsize=20)
    ax.legend(ncol=len(drawn), fontsize=12, loc='upper center', bbox_to_anchor=(0.5, -0.35))

    plt.tight_layout()
    fig.savefig(output_file, dpi=300)
    if show:
        plt.show()
    plt.close(fig)
    return fig
