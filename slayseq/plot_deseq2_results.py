"""
Diagnostic and result plots for the differential-enrichment analysis

Each function writes one figure and returns the path of the file.
"""

# Import `Python` modules
import logging
logger = logging.getLogger(__name__)

import numpy as np
import pandas
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import seaborn as sns
import scipy.cluster.hierarchy
import scipy.spatial.distance
from sklearn.decomposition import PCA

# Define plotting parameters
label_colors = {
    'up': '#d62728',
    'down': '#1f77b4',
    'not_significant': '#7f7f7f',
    'not_tested': '#c7c7c7',
}
fontsize = 10


def condition_palette(conditions):
    """A color for each condition, in order of first appearance"""
    levels = list(pandas.unique(conditions))
    colors = sns.color_palette('viridis', len(levels))
    return dict(zip(levels, colors))


def save_figure(fig, output_file):
    fig.savefig(output_file, bbox_inches='tight', dpi=300)
    plt.close(fig)
    logger.info("Saved the plot: %s", output_file)
    return output_file


def plot_library_sizes(counts, size_factors, conditions, output_file):
    """
    Plot the total counts and the DESeq2 size factor of each sample

    Args:
        `counts`: count matrix of features by samples
        `size_factors`: series of size factors indexed by sample
        `conditions`: series of conditions indexed by sample
    """
    samples = list(size_factors.index)
    palette = condition_palette(conditions[samples])
    colors = [palette[conditions[s]] for s in samples]
    x = np.arange(len(samples))

    fig, axs = plt.subplots(nrows=2, sharex=True, figsize=[max(4, 0.5 * len(samples)), 5])
    axs[0].bar(x, counts[samples].sum(axis=0).values, color=colors)
    axs[0].set_ylabel('total counts', fontsize=fontsize)
    axs[1].bar(x, size_factors.values, color=colors)
    axs[1].axhline(1, color='black', linestyle='--', linewidth=0.8)
    axs[1].set_ylabel('size factor', fontsize=fontsize)
    axs[1].set_xticks(x)
    axs[1].set_xticklabels(samples, rotation=90)
    handles = [plt.Rectangle((0, 0), 1, 1, color=c) for c in palette.values()]
    axs[0].legend(handles, list(palette.keys()), bbox_to_anchor=(1.02, 1), loc='upper left', fontsize=fontsize)
    return save_figure(fig, output_file)


def plot_dispersions(dispersions, output_file):
    """Plot gene-wise, fitted and final dispersion estimates against mean normalized counts"""
    df = dispersions[dispersions['baseMean'] > 0]
    order = np.argsort(df['baseMean'].values)
    fig, ax = plt.subplots(figsize=[5, 4])
    ax.scatter(df['baseMean'], df['genewise_dispersion'], s=4, color='black', alpha=0.5, label='gene-wise', edgecolors='none')
    ax.scatter(df['baseMean'], df['dispersion'], s=4, color='#1f77b4', alpha=0.5, label='final', edgecolors='none')
    ax.plot(df['baseMean'].values[order], df['fitted_dispersion'].values[order], color='#d62728', linewidth=1.5, label='fitted')
    ax.set_xscale('log')
    ax.set_yscale('log')
    ax.set_xlabel('mean of normalized counts', fontsize=fontsize)
    ax.set_ylabel('dispersion', fontsize=fontsize)
    ax.legend(fontsize=fontsize)
    return save_figure(fig, output_file)


def plot_pca(vst_counts, conditions, output_file, n_components=2):
    """
    Plot samples on the first two principal components of the VST counts

    Returns:
        A tupple of (`output_file`, `explained_variance_ratio`)
    """
    samples = list(vst_counts.columns)
    n_components = min(n_components, len(samples), vst_counts.shape[0])
    assert n_components >= 2, "PCA needs at least two samples and two features"
    pca = PCA(n_components=n_components)
    projected = pca.fit_transform(vst_counts.T.values)
    var_explained = pca.explained_variance_ratio_ * 100

    palette = condition_palette(conditions[samples])
    fig, ax = plt.subplots(figsize=[5, 4])
    for condition, color in palette.items():
        idx = [i for (i, s) in enumerate(samples) if conditions[s] == condition]
        ax.scatter(projected[idx, 0], projected[idx, 1], color=color, s=40, label=condition)
    for (i, sample) in enumerate(samples):
        ax.annotate(sample, (projected[i, 0], projected[i, 1]), fontsize=fontsize - 3, xytext=(3, 3), textcoords='offset points')
    ax.set_xlabel('PC1 ({0:.1f}%)'.format(var_explained[0]), fontsize=fontsize)
    ax.set_ylabel('PC2 ({0:.1f}%)'.format(var_explained[1]), fontsize=fontsize)
    ax.legend(bbox_to_anchor=(1.02, 1), loc='upper left', fontsize=fontsize)
    return (save_figure(fig, output_file), pca.explained_variance_ratio_)


def plot_sample_distances(vst_counts, conditions, output_file):
    """Hierarchically cluster samples by the Euclidean distance between their VST counts"""
    samples = list(vst_counts.columns)
    distances = scipy.spatial.distance.pdist(vst_counts.T.values, metric='euclidean')
    linkage = scipy.cluster.hierarchy.linkage(distances, method='average')
    distance_df = pandas.DataFrame(
        scipy.spatial.distance.squareform(distances), index=samples, columns=samples
    )
    palette = condition_palette(conditions[samples])
    sample_colors = pandas.Series([palette[conditions[s]] for s in samples], index=samples, name='condition')
    g = sns.clustermap(
        distance_df, row_linkage=linkage, col_linkage=linkage,
        row_colors=sample_colors, cmap='Blues_r', figsize=[6, 6]
    )
    g.savefig(output_file, dpi=300)
    plt.close(g.figure)
    logger.info("Saved the plot: %s", output_file)
    return output_file


def _scatter_by_label(ax, results, x_col, y_col):
    for label, color in label_colors.items():
        subset = results[results['label'] == label]
        if len(subset) == 0:
            continue
        ax.scatter(
            subset[x_col], subset[y_col], color=color, s=8, alpha=0.7,
            edgecolors='none', label='{0} (n={1})'.format(label, len(subset))
        )


def plot_ma(results, level, reference, output_file, lfc_threshold=1.0):
    """MA plot of labeled results: log2 fold change against mean normalized counts"""
    df = results[(results['baseMean'] > 0) & results['log2FoldChange'].notnull()]
    fig, ax = plt.subplots(figsize=[6, 4])
    _scatter_by_label(ax, df, 'baseMean', 'log2FoldChange')
    ax.axhline(0, color='black', linewidth=0.8, alpha=0.5)
    for y in [lfc_threshold, -lfc_threshold]:
        ax.axhline(y, color='black', linestyle='--', linewidth=0.8, alpha=0.5)
    ax.set_xscale('log')
    ax.set_xlabel('mean of normalized counts', fontsize=fontsize)
    ax.set_ylabel('log2 fold change ({0} vs {1})'.format(level, reference), fontsize=fontsize)
    ax.set_title('{0} vs {1}'.format(level, reference))
    ax.legend(bbox_to_anchor=(1.02, 1), loc='upper left', fontsize=fontsize - 2)
    return save_figure(fig, output_file)


def plot_volcano(results, level, reference, output_file, alpha=0.05, lfc_threshold=1.0):
    """Volcano plot of labeled results: -log10 padj against log2 fold change"""
    df = results[results['padj'].notnull() & results['log2FoldChange'].notnull()]
    fig, ax = plt.subplots(figsize=[5, 5])
    _scatter_by_label(ax, df, 'log2FoldChange', 'neg_log10_padj')
    ax.axhline(-np.log10(alpha), color='black', linestyle='--', linewidth=0.8, alpha=0.5)
    for x in [lfc_threshold, -lfc_threshold]:
        ax.axvline(x, color='black', linestyle='--', linewidth=0.8, alpha=0.5)
    ax.set_xlabel('log2 fold change ({0} vs {1})'.format(level, reference), fontsize=fontsize)
    ax.set_ylabel('-log10 adjusted p-value', fontsize=fontsize)
    ax.set_title('{0} vs {1}'.format(level, reference))
    ax.legend(fontsize=fontsize - 2)
    return save_figure(fig, output_file)


def plot_top_features_heatmap(vst_counts, combined, conditions, output_file, top_n=50):
    """
    Heatmap of the row-centered VST counts of the most significant features

    Features are ranked by their smallest adjusted p-value across all
    contrasts. Returns None if no feature has an adjusted p-value.
    """
    padj_cols = [col for col in combined.columns if col.startswith('padj_')]
    min_padj = combined[padj_cols].min(axis=1).dropna()
    if len(min_padj) == 0:
        logger.warning("No features have adjusted p-values, skipping the heatmap")
        return None
    top_features = list(min_padj.sort_values().index[:top_n])
    samples = list(vst_counts.columns)
    data = vst_counts.loc[top_features, samples]
    data = data.sub(data.mean(axis=1), axis=0)
    data.index = [
        '{0} ({1})'.format(combined.loc[seq, 'peptide'], seq[:12]) for seq in top_features
    ]

    palette = condition_palette(conditions[samples])
    sample_colors = pandas.Series([palette[conditions[s]] for s in samples], index=samples, name='condition')
    g = sns.clustermap(
        data, col_cluster=False, row_cluster=len(top_features) > 1, col_colors=sample_colors,
        cmap='RdBu_r', center=0, figsize=[max(6, 0.4 * len(samples)), max(4, 0.2 * len(top_features))],
        yticklabels=True
    )
    g.savefig(output_file, dpi=300)
    plt.close(g.figure)
    logger.info("Saved the plot: %s", output_file)
    return output_file
