"""
Count unique amplicon sequences in each sample and build a count matrix

This script carries out the first stage of the analysis. For each sample in
the sample sheet it:
    * keeps reads that contain the anchor sequence at the start of the
      amplicon (`seqkit grep`)
    * keeps reads with an average quality of at least Q30 (`seqkit seq`)
    * trims the anchor sequence, treating it as a left adapter (`flexbar`)
    * counts each unique trimmed sequence that is seen more than once

The per-sample counts are then joined into a count matrix, which is handed
to `fit_all_deseq2_models.py` for the differential-enrichment analysis.
"""

# Import `Python` modules
import logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s.%(msecs).03d %(name)s %(message)s",
    datefmt='%Y-%m-%dT%H:%M:%S'
)

import os
import sys
import argparse
import subprocess
from multiprocessing import Pool
import time
import pandas

# Custom `Python` modules
from slayseq import deep_seq_utils
from slayseq import compile_count_matrix
from slayseq import parse_metadata


# Run the main code
def main():
    """Read in command-line arguments and execute the main code"""

    #---------------------------------------------------------------
    # Read in command-line arguments and experimental metadata
    #---------------------------------------------------------------
    # Read in command-line arguments using `argparse`
    parser = argparse.ArgumentParser(description="Count unique amplicon sequences in each sample")
    parser.add_argument("--sample_sheet", required=True, help="a CSV file with the columns sample, condition, replicate and fastq_glob")
    parser.add_argument("--fastq_dir", required=True, help="the path to a directory with input FASTQ files")
    parser.add_argument("--output_dir", required=True, help="a path to an output directory where all the results will be stored. This directory will be created if it does not already exist")
    parser.add_argument("--seqkit_path", default='seqkit', help="the path to the program `seqkit`")
    parser.add_argument("--flexbar_path", default='flexbar', help="the path to the program `flexbar`")
    parser.add_argument("--anchor_seq", default=deep_seq_utils.ANCHOR_SEQ, help="reads must contain this sequence, which is then trimmed as a left adapter. Default: {0}".format(deep_seq_utils.ANCHOR_SEQ))
    parser.add_argument("--min_avg_quality", type=int, default=deep_seq_utils.MIN_AVG_QUALITY, help="minimum average quality of kept reads. Default: {0}".format(deep_seq_utils.MIN_AVG_QUALITY))
    parser.add_argument("--min_duplicate_count", type=int, default=2, help="minimum number of times a trimmed sequence must be seen in a sample to be counted. Default: 2")
    parser.add_argument("--min_count", type=int, default=compile_count_matrix.MIN_COUNT, help="minimum counts of a sequence in the filter samples. Sequences below it in the first filter sample do not enter the count matrix. Default: {0}".format(compile_count_matrix.MIN_COUNT))
    parser.add_argument("--filter_samples", default=None, help="comma-separated samples used to filter sequences. Default: the samples of the reference condition")
    parser.add_argument("--reference_condition", default='IPTG0', help="the baseline condition that the other conditions are compared to. Default: 'IPTG0'")
    parser.add_argument("--union_filter_samples", action="store_true", help="keep sequences that pass the filter in any of the filter samples, with unfiltered counts, instead of only those of the first filter sample")
    parser.add_argument("--processes", type=int, default=None, help="the number of samples processed in parallel. Default: one per sample")
    parser.add_argument("--keep_intermediate", action="store_true", help="keep the filtered and trimmed FASTQ files")
    parser.add_argument("--skip_deseq2", action="store_true", help="only compute the count matrix")
    args = parser.parse_args()

    # Assign command-line arguments to variables
    sample_sheet_file = args.sample_sheet
    fastq_dir = args.fastq_dir.rstrip('/')
    output_dir = args.output_dir
    reference_condition = args.reference_condition
    print("\nHere is a list of parsed input arguments")
    for arg in vars(args):
        print("{0}: {1}".format(arg, getattr(args, arg)))

    # Initialize output directories if they do not already exist
    counts_dir = os.path.join(output_dir, 'counts')
    qc_dir = os.path.join(output_dir, 'qc')
    intermediate_dir = os.path.join(output_dir, 'intermediate')
    deseq2_dir = os.path.join(output_dir, 'deseq2')
    dirs = [output_dir, counts_dir, qc_dir, intermediate_dir, deseq2_dir]
    for dir_i in dirs:
        if not os.path.isdir(dir_i):
            print("\nMaking the directory: {0}".format(dir_i))
            os.makedirs(dir_i)

    # Read in the sample sheet and find the FASTQ files of each sample
    print("\nReading in the sample sheet: {0}".format(sample_sheet_file))
    sample_sheet = parse_metadata.read_sample_sheet(sample_sheet_file)
    conditions = parse_metadata.conditions_in_order(sample_sheet, reference_condition)
    print("Found {0} samples in the conditions: {1}".format(len(sample_sheet), ', '.join(conditions)))
    fastq_files = parse_metadata.find_fastq_files(sample_sheet, fastq_dir)
    for sample in fastq_files:
        print("FASTQ files for {0}: {1}".format(sample, ', '.join(fastq_files[sample])))


    #---------------------------------------------------------------
    # Filter, trim and count the reads of each sample
    #---------------------------------------------------------------
    adapters_fasta = os.path.join(intermediate_dir, 'adapters_Left.fasta')
    deep_seq_utils.write_adapters_fasta(adapters_fasta, args.anchor_seq)
    print("\nWrote the anchor sequence {0} to the adapter file: {1}".format(args.anchor_seq, adapters_fasta))

    input_data_for_computing_counts = []
    for sample in sample_sheet.index:
        output_counts_file = os.path.join(counts_dir, '{0}_counts.csv'.format(sample))
        if os.path.isfile(output_counts_file):
            print("Already have counts for the sample: {0}".format(sample))
            continue
        print("Computing counts for the sample: {0}".format(sample))
        input_data_for_computing_counts.append((
            sample, fastq_files[sample], output_counts_file, intermediate_dir, adapters_fasta,
            args.anchor_seq, args.min_avg_quality, args.min_duplicate_count,
            args.seqkit_path, args.flexbar_path, args.keep_intermediate
        ))

    # Compute the counts in parallel, reporting the progress of the computation
    qc_file = os.path.join(qc_dir, 'read_processing_summary.csv')
    if input_data_for_computing_counts:
        n_procs = args.processes or len(input_data_for_computing_counts)
        start = time.time()
        with Pool(processes=n_procs) as myPool:
            all_out = myPool.map_async(deep_seq_utils.ComputeCounts, input_data_for_computing_counts)
            while not all_out.ready():
                print("%s tasks remaining after %s seconds." % (str(all_out._number_left), round(time.time() - start, 0)))
                all_out.wait(60.0)
            qc_records = [qc for (sample, qc) in all_out.get()]
        print("Finished %s samples in %s seconds!" % (len(qc_records), round(time.time() - start, 2)))

        # Add to the QC summary of previous runs
        qc_df = pandas.DataFrame(qc_records)
        if os.path.isfile(qc_file):
            old_qc_df = pandas.read_csv(qc_file)
            old_qc_df = old_qc_df[~old_qc_df['sample'].isin(qc_df['sample'])]
            qc_df = pandas.concat([old_qc_df, qc_df], sort=False)
        print("Writing read-processing statistics to the file: {0}".format(qc_file))
        qc_df.to_csv(qc_file, index=False)


    #---------------------------------------------------------------
    # Join the counts of all samples into a count matrix
    #---------------------------------------------------------------
    if args.filter_samples:
        filter_samples = args.filter_samples.split(',')
    else:
        filter_samples = parse_metadata.samples_in_condition(sample_sheet, reference_condition)
    print("\nKeeping sequences with at least {0} counts in the filter samples: {1}".format(
        args.min_count, ', '.join(filter_samples)
    ))
    count_matrix_file = os.path.join(output_dir, 'count_matrix.txt')
    matrix = compile_count_matrix.compile_count_matrix(
        counts_dir, sample_sheet, filter_samples, args.min_count, count_matrix_file,
        union=args.union_filter_samples
    )
    print("Wrote a count matrix with {0} sequences to the file: {1}".format(len(matrix), count_matrix_file))


    #---------------------------------------------------------------
    # Test for differential enrichment using the script
    # `fit_all_deseq2_models.py`
    #---------------------------------------------------------------
    if args.skip_deseq2:
        return
    deseq2_logfile = os.path.join(deseq2_dir, 'fit_all_deseq2_models.log')
    deseq2_errfile = os.path.join(deseq2_dir, 'fit_all_deseq2_models.err')
    if os.path.isfile(deseq2_logfile):
        print("\nDESeq2 results already exist. To rerun the computation, remove the logfile called: {0}".format(deseq2_logfile))
    else:
        cmd = [
            sys.executable, '-m', 'slayseq.fit_all_deseq2_models',
            '--count_matrix', count_matrix_file,
            '--sample_sheet', sample_sheet_file,
            '--reference_condition', reference_condition,
            '--output_dir', deseq2_dir
        ]
        print("\nTesting for differential enrichment with the command: {0}".format(
            ' '.join(cmd)
        ))
        process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        out, err = process.communicate()
        with open(deseq2_logfile, 'w') as f:
            f.write(out.decode("utf-8"))
        if err:
            with open(deseq2_errfile, 'w') as f:
                f.write(err.decode("utf-8"))
        if process.returncode != 0:
            # Without a logfile the analysis is rerun next time
            os.remove(deseq2_logfile)
            raise RuntimeError("The DESeq2 analysis failed. See the file: {0}".format(deseq2_errfile))


if __name__ == "__main__":
    main()
