"""
Test each IPTG condition for differential enrichment of amplicon sequences against the baseline
"""

# Import `Python` modules
import logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s.%(msecs).03d %(name)s %(message)s",
    datefmt='%Y-%m-%dT%H:%M:%S'
)
logger = logging.getLogger(__name__)

import os
import argparse

import tabulate

# Import custom functions
from slayseq import compile_count_matrix
from slayseq import deseq2_model
from slayseq import label_deseq2_results
from slayseq import parse_metadata
from slayseq import plot_deseq2_results


def write_plots(model, counts, vst_counts, results_by_level, combined, conditions, plots_dir, top_n):
    """Write the diagnostic plots and the plots of each contrast to `plots_dir`"""
    if not os.path.isdir(plots_dir):
        os.makedirs(plots_dir)
    plot_files = []

    plot_files.append(plot_deseq2_results.plot_library_sizes(
        counts, model.size_factors(), conditions, os.path.join(plots_dir, 'library_sizes.png')
    ))
    plot_files.append(plot_deseq2_results.plot_dispersions(
        model.dispersions(), os.path.join(plots_dir, 'dispersions.png')
    ))
    (pca_file, var_explained) = plot_deseq2_results.plot_pca(
        vst_counts, conditions, os.path.join(plots_dir, 'pca.png')
    )
    logger.info("Variance explained by PC1 and PC2: %.1f%%, %.1f%%", 100 * var_explained[0], 100 * var_explained[1])
    plot_files.append(pca_file)
    plot_files.append(plot_deseq2_results.plot_sample_distances(
        vst_counts, conditions, os.path.join(plots_dir, 'sample_distances.png')
    ))

    for (level, results) in results_by_level.items():
        contrast = '{0}_vs_{1}'.format(level, model.reference_level)
        plot_files.append(plot_deseq2_results.plot_ma(
            results, level, model.reference_level,
            os.path.join(plots_dir, 'MA_{0}.png'.format(contrast)),
            lfc_threshold=model.lfc_threshold
        ))
        plot_files.append(plot_deseq2_results.plot_volcano(
            results, level, model.reference_level,
            os.path.join(plots_dir, 'volcano_{0}.png'.format(contrast)),
            alpha=model.alpha, lfc_threshold=model.lfc_threshold
        ))

    heatmap_file = plot_deseq2_results.plot_top_features_heatmap(
        vst_counts, combined, conditions, os.path.join(plots_dir, 'top_features_heatmap.png'), top_n=top_n
    )
    if heatmap_file:
        plot_files.append(heatmap_file)
    return plot_files


def run_analysis(count_matrix_file, sample_sheet_file, output_dir, reference_condition='IPTG0',
                 alpha=0.05, lfc_threshold=1.0, min_total_counts=10, shrink_lfc=False,
                 n_cpus=1, top_n=50, make_plots=True):
    """
    Fit the DESeq2 model, test every condition against the reference, and write the results

    Returns:
        A dictionary of the form {condition}:{labeled results}
    """
    if not os.path.isdir(output_dir):
        print("Making the output directory: {0}".format(output_dir))
        os.makedirs(output_dir)

    # Read in the count matrix and the sample sheet
    print("\nReading in counts from the file: {0}".format(count_matrix_file))
    counts = compile_count_matrix.read_count_matrix(count_matrix_file)
    sample_sheet = parse_metadata.read_sample_sheet(sample_sheet_file)
    levels = parse_metadata.conditions_in_order(sample_sheet, reference_condition)
    print("Found {0} sequences in {1} samples".format(counts.shape[0], counts.shape[1]))
    print("Will compare the conditions {0} to {1}".format(', '.join(levels[1:]), reference_condition))

    # Normalize libraries, estimate dispersions, and fit a negative-binomial
    # GLM for each sequence
    model = deseq2_model.DifferentialEnrichmentModel(
        design_factor='condition',
        reference_level=reference_condition,
        alpha=alpha,
        lfc_threshold=lfc_threshold,
        min_total_counts=min_total_counts,
        shrink_lfc=shrink_lfc,
        n_cpus=n_cpus,
    )
    model.build_model(counts, sample_sheet[['condition']], levels=levels).fit()

    size_factors = model.size_factors()
    size_factors.to_csv(os.path.join(output_dir, 'size_factors.csv'), index_label='sample')
    model.normalized_counts().to_csv(os.path.join(output_dir, 'normalized_counts.csv'), index_label='sequence')
    model.dispersions().to_csv(os.path.join(output_dir, 'dispersions.csv'), index_label='sequence')
    for (sample, size_factor) in size_factors.items():
        logger.info("Size factor of %s: %.3f", sample, size_factor)

    # Test each condition against the reference and label the results
    results_by_level = {}
    for (level, results) in model.test_all_contrasts().items():
        labeled = label_deseq2_results.label_results(results, alpha=alpha, lfc_threshold=lfc_threshold)
        results_file = os.path.join(output_dir, '{0}_vs_{1}_results.csv'.format(level, reference_condition))
        print("Writing the results of {0} vs {1} to the file: {2}".format(level, reference_condition, results_file))
        labeled.sort_values('padj').to_csv(results_file, index_label='sequence')
        results_by_level[level] = labeled

    combined = label_deseq2_results.combine_contrasts(results_by_level)
    combined.to_csv(os.path.join(output_dir, 'all_contrasts.csv'), index_label='sequence')
    summary = label_deseq2_results.summarize_labels(results_by_level)
    summary.to_csv(os.path.join(output_dir, 'label_summary.csv'))
    logger.info(
        "Features in each contrast with padj < %s and |log2FoldChange| >= %s:\n%s",
        alpha, lfc_threshold, tabulate.tabulate(summary, headers='keys', tablefmt='simple')
    )

    vst_counts = model.vst_counts()
    vst_counts.to_csv(os.path.join(output_dir, 'vst_counts.csv'), index_label='sequence')

    if make_plots:
        conditions = sample_sheet['condition']
        write_plots(
            model, model.counts, vst_counts, results_by_level, combined, conditions,
            os.path.join(output_dir, 'plots'), top_n
        )
    return results_by_level


# The main code to run the analysis
def main():
    """Read in command-line arguments and execute the main code"""
    parser = argparse.ArgumentParser(description="Test IPTG conditions for differential enrichment with DESeq2")
    parser.add_argument("--count_matrix", required=True, help="a tab-delimited count matrix with a `sequence` column and one column per sample")
    parser.add_argument("--sample_sheet", required=True, help="a CSV file with the columns sample, condition, replicate and fastq_glob")
    parser.add_argument("--output_dir", required=True, help="a path to an output directory where all the results will be stored. This directory will be made if it does not already exist.")
    parser.add_argument("--reference_condition", default='IPTG0', help="the baseline condition. Default: 'IPTG0'")
    parser.add_argument("--alpha", type=float, default=0.05, help="adjusted p-value threshold. Default: 0.05")
    parser.add_argument("--lfc_threshold", type=float, default=1.0, help="absolute log2 fold change threshold for labeling a sequence as significant. Default: 1.0")
    parser.add_argument("--min_total_counts", type=int, default=10, help="sequences with fewer counts summed over all samples are not modeled. Default: 10")
    parser.add_argument("--shrink_lfc", action="store_true", help="shrink log2 fold changes with an apeGLM prior")
    parser.add_argument("--n_cpus", type=int, default=1, help="the number of CPUs used to fit the model. Default: 1")
    parser.add_argument("--top_n", type=int, default=50, help="the number of sequences in the heatmap of top sequences. Default: 50")
    parser.add_argument("--no_plots", action="store_true", help="do not make plots")
    args = parser.parse_args()
    print("\nHere is a list of parsed input arguments")
    for arg in vars(args):
        print("{0}: {1}".format(arg, getattr(args, arg)))

    run_analysis(
        args.count_matrix, args.sample_sheet, args.output_dir,
        reference_condition=args.reference_condition,
        alpha=args.alpha,
        lfc_threshold=args.lfc_threshold,
        min_total_counts=args.min_total_counts,
        shrink_lfc=args.shrink_lfc,
        n_cpus=args.n_cpus,
        top_n=args.top_n,
        make_plots=not args.no_plots,
    )

if __name__ == "__main__":
    main()
