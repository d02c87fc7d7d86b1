"""
Label DESeq2 results by significance and annotate each sequence with its peptide
"""

# Import `Python` modules
import collections
import numpy as np
import pandas
from Bio.Seq import Seq

LABELS = ['up', 'down', 'not_significant', 'not_tested']


def significance_label(log2fc, padj, alpha=0.05, lfc_threshold=1.0):
    """
    Label a feature as 'up', 'down', 'not_significant' or 'not_tested'

    A feature is significant if its adjusted p-value is below `alpha` and the
    absolute value of its log2 fold change is at least `lfc_threshold`.
    Features without an adjusted p-value, for instance those removed by
    independent filtering or Cook's distance, are 'not_tested'.
    """
    if pandas.isnull(padj) or pandas.isnull(log2fc):
        return 'not_tested'
    if padj < alpha and abs(log2fc) >= lfc_threshold:
        return 'up' if log2fc > 0 else 'down'
    return 'not_significant'


def translate_amplicon(seq):
    """
    Translate the in-frame part of an amplicon DNA sequence

    The sequence is cut to a multiple of three nucleotides before
    translating, stop codons are kept as `*`, and codons with ambiguous
    nucleotides become `X`.
    """
    seq = seq.upper()
    in_frame = seq[:len(seq) - (len(seq) % 3)]
    if in_frame == '':
        return ''
    return str(Seq(in_frame).translate())


def label_results(results_df, alpha=0.05, lfc_threshold=1.0):
    """Add the columns `label`, `neg_log10_padj` and `peptide` to DESeq2 results"""
    labeled = results_df.copy()
    labeled['label'] = [
        significance_label(lfc, padj, alpha, lfc_threshold)
        for (lfc, padj) in zip(labeled['log2FoldChange'], labeled['padj'])
    ]
    # Adjusted p-values of exactly zero are capped at the smallest positive float
    padj = labeled['padj'].clip(lower=np.finfo(float).tiny)
    labeled['neg_log10_padj'] = -np.log10(padj)
    labeled['peptide'] = [translate_amplicon(seq) for seq in labeled.index]
    return labeled


def combine_contrasts(results_by_level):
    """
    Combine labeled results of each contrast into a single wide dataframe

    Args:
        `results_by_level`: a dictionary of the form {condition}:{labeled results}

    Returns:
        A dataframe indexed by sequence with the columns `baseMean`,
        `peptide`, and `log2FoldChange_{condition}`, `padj_{condition}` and
        `label_{condition}` for each condition
    """
    assert len(results_by_level) > 0, "There are no results to combine"
    combined = None
    for (level, results) in results_by_level.items():
        df = results[['log2FoldChange', 'padj', 'label']].rename(columns={
            col : '{0}_{1}'.format(col, level) for col in ['log2FoldChange', 'padj', 'label']
        })
        if combined is None:
            combined = results[['baseMean', 'peptide']].merge(
                df, left_index=True, right_index=True, how='outer'
            )
        else:
            combined = combined.merge(df, left_index=True, right_index=True, how='outer')
    combined.index.name = 'sequence'
    return combined


def summarize_labels(results_by_level):
    """Count the features with each label for each contrast"""
    summary = collections.OrderedDict()
    for (level, results) in results_by_level.items():
        counts = results['label'].value_counts()
        summary[level] = [int(counts.get(label, 0)) for label in LABELS]
    summary_df = pandas.DataFrame.from_dict(summary, orient='index', columns=LABELS)
    summary_df.index.name = 'condition'
    return summary_df
