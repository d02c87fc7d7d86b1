"""
This script contains `Python` functions for processing amplicon deep-sequencing reads

Reads are filtered with `seqkit`, trimmed with `flexbar`, and identical trimmed
sequences are then counted in `Python`.
"""

# Import `Python` modules
import logging
logger = logging.getLogger(__name__)

import os
import re
import gzip
import subprocess
import pandas
from Bio import SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

# The first codons of the amplicon. Reads must carry this sequence and it is
# trimmed off as a left adapter, leaving the 74 nucleotides of the amplicon
ANCHOR_SEQ = 'GCTGCGGGTATCGGAGGAACC'
MIN_AVG_QUALITY = 30


def seqkit_grep_cmd(seqkit_path, fastq_files, pattern, output_file):
    """Command that keeps reads whose sequence contains `pattern`"""
    if len(fastq_files) == 0:
        raise ValueError("The list of FASTQ files is empty")
    return [seqkit_path, 'grep', '-s', '-p', pattern, '-o', output_file] + list(fastq_files)


def seqkit_quality_cmd(seqkit_path, fastq_file, min_avg_quality, output_file):
    """Command that keeps reads with an average quality of at least `min_avg_quality`"""
    return [seqkit_path, 'seq', '-Q', str(min_avg_quality), '-o', output_file, fastq_file]


def flexbar_cmd(flexbar_path, fastq_file, adapters_fasta, target_prefix, trim_end='ANY', n_threads=1):
    """
    Command that trims adapters from reads with `flexbar`

    `flexbar` writes the trimmed reads to `{target_prefix}.fastq` and a log
    file to `{target_prefix}.log`.
    """
    if trim_end not in ['ANY', 'LEFT', 'RIGHT', 'LTAIL', 'RTAIL']:
        raise ValueError("Could not parse `trim_end`: {0}".format(trim_end))
    return [
        flexbar_path,
        '--reads', fastq_file,
        '--adapters', adapters_fasta,
        '--adapter-trim-end', trim_end,
        '--threads', str(n_threads),
        '--target', target_prefix
    ]


def write_adapters_fasta(filename, adapter_seq, name='anchor'):
    """Write the adapter sequence to a FASTA file read by `flexbar`"""
    record = SeqRecord(Seq(adapter_seq.upper()), id=name, description='')
    with open(filename, 'w') as f:
        SeqIO.write([record], f, 'fasta')
    return filename


def run_command(cmd, logfile=None):
    """
    Run an external command, failing loudly if it does not succeed

    Args:
        `cmd`: a list with the program and its arguments
        `logfile`: if given, the combined stdout and stderr of the program is
            written to this file

    Returns:
        The combined stdout and stderr of the program as a string
    """
    logger.info("Running the command: %s", ' '.join(cmd))
    try:
        process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
    except OSError as e:
        raise RuntimeError("Failed to run the program {0}: {1}".format(cmd[0], e))
    out, _ = process.communicate()
    if logfile:
        with open(logfile, 'wb') as f:
            f.write(out)
    out = out.decode("utf-8", "replace")
    if process.returncode != 0:
        raise RuntimeError("The command `{0}` failed with exit status {1}:\n{2}".format(
            ' '.join(cmd), process.returncode, out
        ))
    return out


def open_fastq(filename):
    if filename.endswith('.gz'):
        return gzip.open(filename, 'rt')
    return open(filename)


def read_fastq(filename, min_count=2):
    """
    Count the number of times each unique sequence occurs in a FASTQ file

    Args:
        `filename`: the name of the FASTQ file, optionally gzipped
        `min_count`: only sequences observed at least this many times are
            kept. The default of 2 only keeps sequences that are repeated.

    Returns:
        A tupple of (`filename`, `counts_dict`):
            `filename` : same as input
            `counts_dict` : a dictionary with counts for each unique DNA sequence,
                of the form {sequence}:{counts}
    """
    counts_dict = {}
    with open_fastq(filename) as file:
        for (i, line) in enumerate(file):

            # Each entry is a set of four lines and only the second line of
            # each set has the sequence
            if i % 4 != 1: continue
            seq = line.strip()
            if seq == '':
                continue
            if seq not in counts_dict:
                counts_dict[seq] = 0
            counts_dict[seq] += 1

    counts_dict = {
        seq : counts
        for (seq, counts) in counts_dict.items()
        if counts >= min_count
    }
    return (filename, counts_dict)


def count_fastq_reads(filename):
    """Number of reads in a FASTQ file"""
    n_lines = 0
    with open_fastq(filename) as f:
        for line in f:
            n_lines += 1
    return n_lines // 4


def write_counts(counts_dict, output_file):
    """
    Write counts to a CSV with the header `sequence,counts`, most abundant first
    """
    counts_df = pandas.DataFrame(list(counts_dict.items()), columns=['sequence', 'counts'])
    counts_df.sort_values(['counts', 'sequence'], ascending=[False, True], inplace=True)
    counts_df.to_csv(output_file, index=False)
    return counts_df


def ParseFlexbarLogfile(logfile):
    """
    This function parses the run summary at the end of a `flexbar` log file

    Args:
        `logfile`: the path to a log file written by `flexbar`

    Returns:
        A tupple with the following three variables in the order they appear in the below list:
            `n_processed_reads` : the total number of reads given to `flexbar`
            `n_discarded_reads` : the number of reads discarded overall
            `n_remaining_reads` : the number of reads written after trimming
        A value is None if it was not found in the log file
    """
    patterns = {
        'processed': re.compile(r'^\s*Processed reads\s+(?P<n_reads>[\d,]+)'),
        'discarded': re.compile(r'^\s*Discarded reads overall\s+(?P<n_reads>[\d,]+)'),
        'remaining': re.compile(r'^\s*Remaining reads\s+(?P<n_reads>[\d,]+)'),
    }
    n_reads = dict.fromkeys(patterns)
    with open(logfile) as f:
        for line in f:
            for (key, pattern) in patterns.items():
                match = re.search(pattern, line)
                if match is None:
                    continue
                if n_reads[key] is not None:
                    raise ValueError("Already found data for the number of {0} reads in {1}".format(key, logfile))
                n_reads[key] = int(match.group('n_reads').replace(',', ''))

    return (n_reads['processed'], n_reads['discarded'], n_reads['remaining'])


def ComputeCounts(sample_inputs):
    """
    Filter, trim and count the reads of one sample and write the counts to a file

    I combine all of the variables in a single input tupple, which makes it
    simple to process samples in parallel with `multiprocessing.Pool.map`.

    Args:
        `sample_inputs`: A tupple of the following variables:
            `sample`: the name of the sample
            `fastq_files`: a list of paths to input FASTQ files
            `output_file`: the name of the output CSV file with counts
            `work_dir`: a directory for intermediate files
            `adapters_fasta`: FASTA file with the anchor sequence for `flexbar`
            `anchor_seq`: reads must contain this sequence to be kept
            `min_avg_quality`: minimum average read quality
            `min_count`: minimum number of times a sequence must be seen
            `seqkit_path`: the path to `seqkit`
            `flexbar_path`: the path to `flexbar`
            `keep_intermediate`: if False, intermediate FASTQ files are removed

    Returns:
        A tupple of (`sample`, `qc`) where `qc` is a dictionary with the
        number of reads left after each step
    """
    (sample, fastq_files, output_file, work_dir, adapters_fasta, anchor_seq,
        min_avg_quality, min_count, seqkit_path, flexbar_path, keep_intermediate) = sample_inputs

    prefix = os.path.join(work_dir, sample)
    filtered_fastq = '{0}_anchor_filtered.fastq'.format(prefix)
    quality_fastq = '{0}_anchor_filtered_Q{1}.fastq'.format(prefix, min_avg_quality)
    trimmed_prefix = '{0}_trimmed'.format(prefix)
    trimmed_fastq = '{0}.fastq'.format(trimmed_prefix)
    flexbar_log = '{0}.log'.format(trimmed_prefix)

    logger.info("Filtering reads of %s for the anchor sequence %s", sample, anchor_seq)
    run_command(
        seqkit_grep_cmd(seqkit_path, fastq_files, anchor_seq, filtered_fastq),
        logfile='{0}_seqkit_grep.log'.format(prefix)
    )

    logger.info("Filtering reads of %s for an average quality of at least %s", sample, min_avg_quality)
    run_command(
        seqkit_quality_cmd(seqkit_path, filtered_fastq, min_avg_quality, quality_fastq),
        logfile='{0}_seqkit_seq.log'.format(prefix)
    )

    logger.info("Trimming the anchor sequence from reads of %s with flexbar", sample)
    run_command(
        flexbar_cmd(flexbar_path, quality_fastq, adapters_fasta, trimmed_prefix),
        logfile='{0}_flexbar_stdout.log'.format(prefix)
    )

    logger.info("Counting unique trimmed reads of %s", sample)
    counts_dict = read_fastq(trimmed_fastq, min_count=min_count)[1]
    write_counts(counts_dict, output_file)

    qc = {
        'sample': sample,
        'anchor_reads': count_fastq_reads(filtered_fastq),
        'quality_reads': count_fastq_reads(quality_fastq),
        'trimmed_reads': count_fastq_reads(trimmed_fastq),
        'unique_sequences': len(counts_dict),
        'counted_reads': sum(counts_dict.values()),
    }
    if os.path.isfile(flexbar_log):
        (qc['flexbar_processed'], qc['flexbar_discarded'], qc['flexbar_remaining']) = \
            ParseFlexbarLogfile(flexbar_log)

    if not keep_intermediate:
        for f in [filtered_fastq, quality_fastq, trimmed_fastq]:
            if os.path.isfile(f):
                os.remove(f)

    return (sample, qc)
