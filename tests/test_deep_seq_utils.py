import gzip
import os
import shutil
import sys
import tempfile
import unittest
from unittest import mock

import pandas
from Bio import SeqIO

from slayseq import deep_seq_utils
from tests.fake_tools import fake_run_command, fastq_entry

ANCHOR = deep_seq_utils.ANCHOR_SEQ
AMPLICON_A = 'ATGAAACGTCTGGCGTTTAGCCTGCTGGCGGTGGCGCTGAGCGCGTGCAGCCAGCAGGAAAACCCGCTGGCG'
AMPLICON_B = 'ATGAAACGTCTGGCGTTTAGCCTGCTGGCGGTGGCGCTGAGCGCGTGCAGCCAGCAGGAAAACCCGCTGTAG'

FLEXBAR_LOG = """
Processing reads ...done.

Output file statistics:
Read file:               trimmed.fastq
  written reads          1,234

Processing time: 0 seconds

Adapter removal statistics
==========================
Adapter:            Overlap removal:    Full length:
anchor              1300                1300

Processed reads                   1,300
  skipped due to uncalled bases       6
  finally skipped short reads        60
Discarded reads overall              66
Remaining reads                   1,234   (94.92% of input reads)
"""

class TestReadFastq(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.reads = [AMPLICON_A] * 3 + [AMPLICON_B] * 2 + ['ACGTACGTACGT']
        self.text = ''.join(fastq_entry('read{0}'.format(i), seq) for (i, seq) in enumerate(self.reads))

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_read_fastq_keeps_repeated_sequences(self):
        fastq_file = os.path.join(self.tmpdir, 'reads.fastq')
        with open(fastq_file, 'w') as f:
            f.write(self.text)
        (filename, counts) = deep_seq_utils.read_fastq(fastq_file)
        self.assertEqual(filename, fastq_file)
        self.assertEqual(counts, {AMPLICON_A: 3, AMPLICON_B: 2})

    def test_read_fastq_min_count(self):
        fastq_file = os.path.join(self.tmpdir, 'reads.fastq')
        with open(fastq_file, 'w') as f:
            f.write(self.text)
        self.assertEqual(deep_seq_utils.read_fastq(fastq_file, min_count=1)[1]['ACGTACGTACGT'], 1)
        self.assertEqual(deep_seq_utils.read_fastq(fastq_file, min_count=3)[1], {AMPLICON_A: 3})

    def test_read_gzipped_fastq(self):
        fastq_file = os.path.join(self.tmpdir, 'reads.fastq.gz')
        with gzip.open(fastq_file, 'wt') as f:
            f.write(self.text)
        self.assertEqual(deep_seq_utils.read_fastq(fastq_file)[1], {AMPLICON_A: 3, AMPLICON_B: 2})
        self.assertEqual(deep_seq_utils.count_fastq_reads(fastq_file), 6)

    def test_write_counts_sorted_by_counts(self):
        counts_file = os.path.join(self.tmpdir, 'counts.csv')
        deep_seq_utils.write_counts({AMPLICON_B: 2, AMPLICON_A: 3}, counts_file)
        df = pandas.read_csv(counts_file)
        self.assertEqual(list(df.columns), ['sequence', 'counts'])
        self.assertEqual(list(df['sequence']), [AMPLICON_A, AMPLICON_B])


class TestCommands(unittest.TestCase):
    def test_seqkit_grep_cmd(self):
        cmd = deep_seq_utils.seqkit_grep_cmd('seqkit', ['a.fastq.gz', 'b.fastq.gz'], ANCHOR, 'out.fastq')
        self.assertEqual(cmd, ['seqkit', 'grep', '-s', '-p', ANCHOR, '-o', 'out.fastq', 'a.fastq.gz', 'b.fastq.gz'])
        with self.assertRaises(ValueError):
            deep_seq_utils.seqkit_grep_cmd('seqkit', [], ANCHOR, 'out.fastq')

    def test_seqkit_quality_cmd(self):
        self.assertEqual(
            deep_seq_utils.seqkit_quality_cmd('seqkit', 'in.fastq', 30, 'out.fastq'),
            ['seqkit', 'seq', '-Q', '30', '-o', 'out.fastq', 'in.fastq']
        )

    def test_flexbar_cmd(self):
        cmd = deep_seq_utils.flexbar_cmd('flexbar', 'in.fastq', 'adapters.fasta', 'trimmed')
        self.assertEqual(cmd[cmd.index('--adapter-trim-end') + 1], 'ANY')
        self.assertEqual(cmd[cmd.index('--target') + 1], 'trimmed')
        self.assertEqual(cmd[cmd.index('--adapters') + 1], 'adapters.fasta')
        with self.assertRaises(ValueError):
            deep_seq_utils.flexbar_cmd('flexbar', 'in.fastq', 'adapters.fasta', 'trimmed', trim_end='MIDDLE')

    def test_write_adapters_fasta(self):
        tmpdir = tempfile.mkdtemp()
        try:
            fasta = deep_seq_utils.write_adapters_fasta(os.path.join(tmpdir, 'adapters_Left.fasta'), ANCHOR.lower())
            records = list(SeqIO.parse(fasta, 'fasta'))
            self.assertEqual(len(records), 1)
            self.assertEqual(str(records[0].seq), ANCHOR)
        finally:
            shutil.rmtree(tmpdir)

    def test_run_command(self):
        out = deep_seq_utils.run_command([sys.executable, '-c', 'print("hello")'])
        self.assertEqual(out.strip(), 'hello')

    def test_run_command_failure(self):
        with self.assertRaisesRegex(RuntimeError, 'exit status 3'):
            deep_seq_utils.run_command([sys.executable, '-c', 'import sys; sys.exit(3)'])

    def test_run_command_missing_program(self):
        with self.assertRaisesRegex(RuntimeError, 'Failed to run'):
            deep_seq_utils.run_command(['/nonexistent/seqkit', 'version'])


class TestParseFlexbarLogfile(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.logfile = os.path.join(self.tmpdir, 'trimmed.log')

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_parse(self):
        with open(self.logfile, 'w') as f:
            f.write(FLEXBAR_LOG)
        self.assertEqual(deep_seq_utils.ParseFlexbarLogfile(self.logfile), (1300, 66, 1234))

    def test_missing_and_duplicate_statistics(self):
        with open(self.logfile, 'w') as f:
            f.write("Processed reads   10\n")
        self.assertEqual(deep_seq_utils.ParseFlexbarLogfile(self.logfile), (10, None, None))
        with open(self.logfile, 'w') as f:
            f.write("Processed reads   10\nProcessed reads   10\n")
        with self.assertRaises(ValueError):
            deep_seq_utils.ParseFlexbarLogfile(self.logfile)

class TestComputeCounts(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.fastq_file = os.path.join(self.tmpdir, 'S1.fastq')
        reads = [ANCHOR + AMPLICON_A] * 4 + [ANCHOR + AMPLICON_B] * 2 + [ANCHOR + 'ACGT' * 5] + [AMPLICON_B] * 3
        with open(self.fastq_file, 'w') as f:
            for (i, seq) in enumerate(reads):
                f.write(fastq_entry('read{0}'.format(i), seq))
        self.counts_file = os.path.join(self.tmpdir, 'S1_counts.csv')

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def inputs(self, keep_intermediate):
        return (
            'S1', [self.fastq_file], self.counts_file, self.tmpdir,
            os.path.join(self.tmpdir, 'adapters_Left.fasta'), ANCHOR, 30, 2,
            'seqkit', 'flexbar', keep_intermediate
        )

    def test_compute_counts(self):
        with mock.patch.object(deep_seq_utils, 'run_command', side_effect=fake_run_command):
            (sample, qc) = deep_seq_utils.ComputeCounts(self.inputs(keep_intermediate=False))
        self.assertEqual(sample, 'S1')
        df = pandas.read_csv(self.counts_file)
        self.assertEqual(list(df['sequence']), [AMPLICON_A, AMPLICON_B])
        self.assertEqual(list(df['counts']), [4, 2])
        self.assertEqual(qc['anchor_reads'], 7)
        self.assertEqual(qc['trimmed_reads'], 7)
        self.assertEqual(qc['unique_sequences'], 2)
        self.assertEqual(qc['counted_reads'], 6)
        self.assertEqual(qc['flexbar_remaining'], 7)
        self.assertFalse(os.path.isfile(os.path.join(self.tmpdir, 'S1_trimmed.fastq')))
        self.assertFalse(os.path.isfile(os.path.join(self.tmpdir, 'S1_anchor_filtered.fastq')))

    def test_keep_intermediate(self):
        with mock.patch.object(deep_seq_utils, 'run_command', side_effect=fake_run_command):
            deep_seq_utils.ComputeCounts(self.inputs(keep_intermediate=True))
        self.assertTrue(os.path.isfile(os.path.join(self.tmpdir, 'S1_trimmed.fastq')))
        self.assertTrue(os.path.isfile(os.path.join(self.tmpdir, 'S1_anchor_filtered_Q30.fastq')))
