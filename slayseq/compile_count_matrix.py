"""
Join the per-sample counts of unique sequences into a single count matrix

The counts of the filter samples (by default the samples of the reference
condition) are filtered at a minimum count, and the matrix has the
sequences that pass the filter in the first of them. The other samples are
then joined onto those sequences, with sequences that were not observed in
a sample given a count of zero.
"""

# Import `Python` modules
import logging
import os
import argparse
import pandas

# Custom `Python` modules
from slayseq import parse_metadata

logger = logging.getLogger(__name__)

MIN_COUNT = 9


def read_counts_file(counts_file):
    """
    Read in counts of unique sequences for one sample

    Args:
        `counts_file`: either a CSV file with the header `sequence,counts`
            written by `deep_seq_utils.write_counts` or the output of
            `uniq -c`, which has one `{counts} {sequence}` entry per line

    Returns:
        A series of counts indexed by sequence
    """
    with open(counts_file) as f:
        first_line = f.readline().strip()
    if first_line == '':
        logger.warning("The counts file %s is empty", counts_file)
        return pandas.Series([], index=pandas.Index([], name='sequence', dtype=object), name='counts', dtype=int)
    if first_line == 'sequence,counts':
        df = pandas.read_csv(counts_file, dtype={'sequence': str, 'counts': int})
    else:
        df = pandas.read_csv(
            counts_file, sep=r'\s+', header=None, names=['counts', 'sequence'],
            dtype={'sequence': str, 'counts': int}
        )
    if df['sequence'].duplicated().any():
        raise ValueError("The counts file {0} has duplicate sequences".format(counts_file))
    counts = df.set_index('sequence')['counts']
    counts.index.name = 'sequence'
    return counts


def filter_counts(counts, min_count=MIN_COUNT):
    """Keep sequences observed at least `min_count` times"""
    return counts[counts >= min_count]


def join_counts(counts_by_sample, filter_samples, min_count=MIN_COUNT, sample_order=None, union=False):
    """
    Join counts from each sample into a matrix of sequences by samples

    Args:
        `counts_by_sample`: a dictionary of the form {sample}:{series of counts}
        `filter_samples`: samples whose counts are filtered at `min_count`.
            Their filtered counts enter the matrix, so counts below
            `min_count` become zero
        `min_count`: the minimum count of a sequence in a filter sample
        `sample_order`: the order of the columns in the matrix, by default
            the order of `counts_by_sample`
        `union`: if False, the matrix has the sequences that pass the
            filter in the first filter sample. If True, it has the sequences
            that pass the filter in any of the filter samples, and every
            sample contributes its unfiltered counts

    Returns:
        A dataframe of integer counts indexed by `sequence` with one column
        per sample, sorted by the total counts of each sequence
    """
    if sample_order is None:
        sample_order = list(counts_by_sample.keys())
    unknown_samples = [s for s in list(filter_samples) + list(sample_order) if s not in counts_by_sample]
    if unknown_samples:
        raise ValueError("There are no counts for the samples: {0}".format(', '.join(unknown_samples)))
    if len(filter_samples) == 0:
        raise ValueError("At least one sample must be used to filter sequences")

    filtered_by_sample = {}
    for sample in filter_samples:
        filtered_by_sample[sample] = filter_counts(counts_by_sample[sample], min_count)
        logger.info(
            "%s: %i of %i sequences have at least %i counts",
            sample, len(filtered_by_sample[sample]), len(counts_by_sample[sample]), min_count
        )
    if union:
        kept_sequences = set()
        for filtered in filtered_by_sample.values():
            kept_sequences.update(filtered.index)
        sample_counts = counts_by_sample
    else:
        kept_sequences = set(filtered_by_sample[filter_samples[0]].index)
        sample_counts = dict(counts_by_sample)
        sample_counts.update(filtered_by_sample)
    if len(kept_sequences) == 0:
        raise ValueError("No sequences have at least {0} counts in the samples: {1}".format(
            min_count, ', '.join(filter_samples)
        ))

    # Merge the counts of each sample onto the kept sequences using
    # `how="left"`, so that sequences only seen in other samples are dropped
    # and sequences missing from a sample get a count of zero
    matrix = pandas.DataFrame(index=pandas.Index(sorted(kept_sequences), name='sequence'))
    for sample in sample_order:
        matrix = matrix.merge(
            sample_counts[sample].rename(sample).to_frame(),
            left_index=True, right_index=True, how='left'
        )
    matrix.fillna(value=0, inplace=True)
    matrix = matrix.astype(int)

    # A stable sort keeps ties in sequence order
    matrix = matrix.assign(_total=matrix.sum(axis=1)).sort_values(
        '_total', ascending=False, kind='mergesort'
    ).drop(columns='_total')
    matrix.index.name = 'sequence'
    return matrix


def write_count_matrix(matrix, output_file):
    """Write the count matrix as tab-delimited text with a `sequence` column"""
    matrix.to_csv(output_file, sep='\t', index_label='sequence')


def read_count_matrix(matrix_file):
    """
    Read a count matrix written by `write_count_matrix`

    Counts must be non-negative integers.
    """
    matrix = pandas.read_csv(matrix_file, sep='\t', dtype={'sequence': str})
    if 'sequence' not in matrix.columns:
        raise ValueError("Expected a column called 'sequence' in the file {0}".format(matrix_file))
    matrix.set_index('sequence', inplace=True)
    if matrix.index.duplicated().any():
        raise ValueError("The count matrix {0} has duplicate sequences".format(matrix_file))
    if matrix.isnull().values.any():
        raise ValueError("The count matrix {0} has missing values".format(matrix_file))
    values = matrix.values
    if not (values == values.astype(int)).all() or (values < 0).any():
        raise ValueError("The count matrix {0} must only have non-negative integer counts".format(matrix_file))
    return matrix.astype(int)


def counts_file_for_sample(counts_dir, sample):
    """The counts file of a sample, either `{sample}_counts.csv` or `{sample}_uniq_counts.txt`"""
    for name in ['{0}_counts.csv'.format(sample), '{0}_uniq_counts.txt'.format(sample)]:
        counts_file = os.path.join(counts_dir, name)
        if os.path.isfile(counts_file):
            return counts_file
    raise ValueError("Could not find a counts file for the sample {0} in the directory {1}".format(
        sample, counts_dir
    ))


def compile_count_matrix(counts_dir, sample_sheet, filter_samples, min_count, output_file, union=False):
    """Read the counts of each sample in the sample sheet and write the joined matrix"""
    counts_by_sample = {
        sample : read_counts_file(counts_file_for_sample(counts_dir, sample))
        for sample in sample_sheet.index
    }
    matrix = join_counts(
        counts_by_sample, filter_samples, min_count=min_count,
        sample_order=list(sample_sheet.index), union=union
    )
    logger.info("Writing a count matrix of %i sequences by %i samples to %s", matrix.shape[0], matrix.shape[1], output_file)
    write_count_matrix(matrix, output_file)
    return matrix


def main():
    """Read in command-line arguments and execute the main code"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s.%(msecs).03d %(name)s %(message)s",
        datefmt='%Y-%m-%dT%H:%M:%S'
    )
    parser = argparse.ArgumentParser(description="Join per-sample counts into a count matrix")
    parser.add_argument("--counts_dir", required=True, help="a directory with a counts file for each sample")
    parser.add_argument("--sample_sheet", required=True, help="a CSV file with the columns sample, condition, replicate and fastq_glob")
    parser.add_argument("--output_file", required=True, help="the path of the output count matrix")
    parser.add_argument("--min_count", type=int, default=MIN_COUNT, help="minimum counts of a sequence in the filter samples. Default: {0}".format(MIN_COUNT))
    parser.add_argument("--filter_samples", default=None, help="comma-separated samples used to filter sequences. Default: the samples of the reference condition")
    parser.add_argument("--reference_condition", default='IPTG0', help="the baseline condition. Default: 'IPTG0'")
    parser.add_argument("--union_filter_samples", action="store_true", help="keep sequences that pass the filter in any of the filter samples, with unfiltered counts, instead of only those of the first filter sample")
    args = parser.parse_args()
    print("\nHere is a list of parsed input arguments")
    for arg in vars(args):
        print("{0}: {1}".format(arg, getattr(args, arg)))

    sample_sheet = parse_metadata.read_sample_sheet(args.sample_sheet)
    if args.filter_samples:
        filter_samples = args.filter_samples.split(',')
    else:
        filter_samples = parse_metadata.samples_in_condition(sample_sheet, args.reference_condition)
    compile_count_matrix(
        args.counts_dir, sample_sheet, filter_samples, args.min_count, args.output_file,
        union=args.union_filter_samples
    )


if __name__ == "__main__":
    main()
