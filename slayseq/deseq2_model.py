# coding: utf-8

import logging
logger = logging.getLogger(__name__)

import collections

import traitlets

import numpy as np
import pandas

from pydeseq2.dds import DeseqDataSet
from pydeseq2.ds import DeseqStats
from pydeseq2.default_inference import DefaultInference


# This class gets the following traits passed in when initalized:
    # design_factor = "condition",  # column of the metadata with the IPTG condition
    # reference_level = "IPTG0",    # every other condition is tested against this one
    # alpha = 0.05,
    # lfc_threshold = 1.0,
    # min_total_counts = 10,
    # shrink_lfc = False
class DifferentialEnrichmentModel(traitlets.HasTraits):
    design_factor = traitlets.Unicode(default_value="condition")
    reference_level = traitlets.Unicode(default_value="IPTG0")

    alpha = traitlets.Float(default_value=0.05)
    lfc_threshold = traitlets.Float(default_value=1.0)

    # Features with fewer counts summed over all samples are not modeled
    min_total_counts = traitlets.Integer(default_value=10)

    refit_cooks = traitlets.Bool(default_value=True)
    shrink_lfc = traitlets.Bool(default_value=False)
    n_cpus = traitlets.Integer(default_value=1)

    def __init__(self, **kwargs):
        # Override 'super' error-handling logic in HasTraits base __init__
        for key in kwargs:
            if not self.has_trait(key):
                raise TypeError("__init__() got an unexpected keyword argument '%s'" % key)
        traitlets.HasTraits.__init__(self, **kwargs)
        self.dds = None
        self.fitted = False

    @property
    def inference(self):
        return DefaultInference(n_cpus=self.n_cpus)

    @property
    def design(self):
        return "~%s" % self.design_factor

    @property
    def levels(self):
        return list(self.metadata[self.design_factor].cat.categories)

    @property
    def test_levels(self):
        return [l for l in self.levels if l != self.reference_level]

    def build_model(self, counts_df, metadata_df, levels=None):
        """
        Set up the DESeq2 data set from counts and sample metadata

        counts_df is features by samples, as in the count matrix written by
        stage one. metadata_df is indexed by sample and has the design factor
        as a column. levels, if given, orders the conditions; the reference
        level is always moved to the front so that it is the baseline of the
        design.
        """
        if self.design_factor not in metadata_df.columns:
            raise ValueError("The metadata has no column called '%s'" % self.design_factor)

        missing = [s for s in metadata_df.index if s not in counts_df.columns]
        if missing:
            raise ValueError("Samples in the metadata are missing from the counts: %s" % ", ".join(missing))
        unused = [s for s in counts_df.columns if s not in metadata_df.index]
        if unused:
            logger.warning("Ignoring samples without metadata: %s", ", ".join(unused))

        counts = counts_df[list(metadata_df.index)]
        if counts.isnull().values.any():
            raise ValueError("The counts have missing values")
        if (counts.values < 0).any() or not (counts.values == np.round(counts.values)).all():
            raise ValueError("The counts must be non-negative integers")

        observed_levels = list(pandas.unique(metadata_df[self.design_factor].astype(str)))
        if self.reference_level not in observed_levels:
            raise ValueError(
                "The reference level %s is not one of the conditions: %s" %
                (self.reference_level, ", ".join(observed_levels)))
        if levels is None:
            levels = observed_levels
        levels = [self.reference_level] + [l for l in levels if l != self.reference_level and l in observed_levels]
        if len(levels) < 2:
            raise ValueError("At least two conditions are needed to test for differential enrichment")

        total_counts = counts.sum(axis=1)
        keep = total_counts >= self.min_total_counts
        logger.info(
            "Modeling %i of %i features with at least %i total counts",
            keep.sum(), len(keep), self.min_total_counts)
        if keep.sum() == 0:
            raise ValueError("No features have at least %i total counts" % self.min_total_counts)
        self.counts = counts[keep].astype(int)

        self.metadata = metadata_df[[self.design_factor]].copy()
        self.metadata[self.design_factor] = pandas.Categorical(
            self.metadata[self.design_factor].astype(str), categories=levels)

        # pydeseq2 expects samples as rows and features as columns
        self.dds = DeseqDataSet(
            counts=self.counts.T,
            metadata=self.metadata,
            design=self.design,
            refit_cooks=self.refit_cooks,
            inference=self.inference,
            quiet=True,
        )
        self.fitted = False
        return self

    def fit(self):
        if self.dds is None:
            raise RuntimeError("build_model() must be called before fit()")
        logger.info(
            "Fitting negative-binomial GLMs for %i features across %i samples",
            self.counts.shape[0], self.counts.shape[1])
        self.dds.deseq2()
        self.fitted = True
        return self

    def _check_fitted(self):
        if not self.fitted:
            raise RuntimeError("The model has not been fit; call fit() first")

    def size_factors(self):
        self._check_fitted()
        return pandas.Series(
            np.asarray(self.dds.obs["size_factors"]),
            index=self.dds.obs_names, name="size_factor")

    def normalized_counts(self):
        self._check_fitted()
        return pandas.DataFrame(
            np.asarray(self.dds.layers["normed_counts"]),
            index=self.dds.obs_names, columns=self.dds.var_names).T

    def dispersions(self):
        self._check_fitted()
        normalized = self.normalized_counts()
        return pandas.DataFrame({
            "baseMean": normalized.mean(axis=1).values,
            "genewise_dispersion": np.asarray(self.dds.var["genewise_dispersions"]),
            "fitted_dispersion": np.asarray(self.dds.var["fitted_dispersions"]),
            "dispersion": np.asarray(self.dds.var["dispersions"]),
        }, index=normalized.index)

    def vst_counts(self):
        """
        Variance-stabilized counts, computed blind to the design

        A separate data set is used so that the dispersion trend of the fitted
        model is left untouched.
        """
        self._check_fitted()
        vst_dds = DeseqDataSet(
            counts=self.counts.T,
            metadata=self.metadata,
            design=self.design,
            inference=self.inference,
            quiet=True,
        )
        vst_dds.vst(use_design=False)
        return pandas.DataFrame(
            np.asarray(vst_dds.layers["vst_counts"]),
            index=vst_dds.obs_names, columns=vst_dds.var_names).T

    def shrinkage_coeff(self, level):
        """Name of the design-matrix column holding the LFC of level vs the reference"""
        columns = list(self.dds.obsm["design_matrix"].columns)
        for candidate in (
                "%s[T.%s]" % (self.design_factor, level),
                "%s_%s_vs_%s" % (self.design_factor, level, self.reference_level)):
            if candidate in columns:
                return candidate
        return None

    def test_contrast(self, level):
        """
        Wald test of one condition against the reference condition

        Returns the pydeseq2 results with the columns baseMean, log2FoldChange,
        lfcSE, stat, pvalue and padj, indexed by feature.
        """
        self._check_fitted()
        if level == self.reference_level or level not in self.levels:
            raise ValueError("Cannot test %s against the reference %s" % (level, self.reference_level))

        logger.info("Testing %s against %s", level, self.reference_level)
        stat_res = DeseqStats(
            self.dds,
            contrast=[self.design_factor, level, self.reference_level],
            alpha=self.alpha,
            inference=self.inference,
            quiet=True,
        )
        stat_res.summary()

        if self.shrink_lfc:
            coeff = self.shrinkage_coeff(level)
            if coeff is None:
                logger.warning("No design coefficient for %s, not shrinking log2 fold changes", level)
            else:
                logger.info("Shrinking log2 fold changes using the coefficient %s", coeff)
                stat_res.lfc_shrink(coeff=coeff)

        results = stat_res.results_df.copy()
        results.index.name = "sequence"
        n_sig = ((results["padj"] < self.alpha) & (results["log2FoldChange"].abs() >= self.lfc_threshold)).sum()
        logger.info("%s vs %s: %i significant features", level, self.reference_level, n_sig)
        return results

    def test_all_contrasts(self):
        return collections.OrderedDict(
            (level, self.test_contrast(level)) for level in self.test_levels
        )
