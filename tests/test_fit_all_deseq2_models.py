import os
import shutil
import sys
import tempfile
import unittest
from unittest import mock

import pandas

from slayseq import compile_count_matrix
from slayseq import fit_all_deseq2_models
from tests.synthetic_counts import simulate_counts


class TestRunAnalysis(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        (counts, sample_sheet, self.enriched) = simulate_counts(n_features=60)
        self.count_matrix_file = os.path.join(self.tmpdir, 'count_matrix.txt')
        compile_count_matrix.write_count_matrix(counts, self.count_matrix_file)
        self.sample_sheet_file = os.path.join(self.tmpdir, 'samples.csv')
        sample_sheet.to_csv(self.sample_sheet_file, index=False)
        self.output_dir = os.path.join(self.tmpdir, 'deseq2')

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_run_analysis(self):
        results_by_level = fit_all_deseq2_models.run_analysis(
            self.count_matrix_file, self.sample_sheet_file, self.output_dir, top_n=10
        )
        self.assertEqual(sorted(results_by_level.keys()), ['IPTG1', 'IPTG10', 'IPTG100'])
        self.assertEqual(
            list(results_by_level['IPTG100'].loc[self.enriched, 'label']), ['up'] * len(self.enriched)
        )

        expected_files = [
            'size_factors.csv', 'normalized_counts.csv', 'dispersions.csv', 'vst_counts.csv',
            'IPTG1_vs_IPTG0_results.csv', 'IPTG10_vs_IPTG0_results.csv', 'IPTG100_vs_IPTG0_results.csv',
            'all_contrasts.csv', 'label_summary.csv',
        ]
        for filename in expected_files:
            self.assertTrue(os.path.isfile(os.path.join(self.output_dir, filename)), filename)

        expected_plots = [
            'library_sizes.png', 'dispersions.png', 'pca.png', 'sample_distances.png',
            'MA_IPTG100_vs_IPTG0.png', 'volcano_IPTG100_vs_IPTG0.png', 'top_features_heatmap.png',
        ]
        for filename in expected_plots:
            self.assertTrue(os.path.isfile(os.path.join(self.output_dir, 'plots', filename)), filename)

        size_factors = pandas.read_csv(os.path.join(self.output_dir, 'size_factors.csv'), index_col='sample')
        self.assertEqual(list(size_factors.index), ['S{0}'.format(i) for i in range(1, 13)])
        self.assertTrue((size_factors['size_factor'] > 0).all())
        dispersions = pandas.read_csv(os.path.join(self.output_dir, 'dispersions.csv'), index_col='sequence')
        self.assertEqual(len(dispersions), 60)

        results = pandas.read_csv(os.path.join(self.output_dir, 'IPTG100_vs_IPTG0_results.csv'))
        self.assertEqual(results.columns[0], 'sequence')
        for column in ['log2FoldChange', 'padj', 'label', 'neg_log10_padj', 'peptide']:
            self.assertIn(column, results.columns)

        summary = pandas.read_csv(os.path.join(self.output_dir, 'label_summary.csv'), index_col=0)
        self.assertGreaterEqual(summary.loc['IPTG100', 'up'], len(self.enriched))

    def test_main_without_plots(self):
        argv = [
            'slayseq-deseq2', '--count_matrix', self.count_matrix_file,
            '--sample_sheet', self.sample_sheet_file, '--output_dir', self.output_dir, '--no_plots'
        ]
        with mock.patch.object(sys, 'argv', argv):
            fit_all_deseq2_models.main()
        for filename in ['all_contrasts.csv', 'size_factors.csv', 'dispersions.csv', 'vst_counts.csv']:
            self.assertTrue(os.path.isfile(os.path.join(self.output_dir, filename)), filename)
        vst_counts = pandas.read_csv(os.path.join(self.output_dir, 'vst_counts.csv'), index_col='sequence')
        self.assertEqual(len(vst_counts.columns), 12)
        self.assertFalse(os.path.isdir(os.path.join(self.output_dir, 'plots')))

    def test_unknown_reference_condition(self):
        with self.assertRaises(ValueError):
            fit_all_deseq2_models.run_analysis(
                self.count_matrix_file, self.sample_sheet_file, self.output_dir,
                reference_condition='IPTG5', make_plots=False
            )
