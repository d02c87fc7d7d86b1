"""
Parse the sample sheet that describes the IPTG selection experiment

The sample sheet is a CSV file with one row per sequenced sample and the
columns `sample`, `condition`, `replicate` and `fastq_glob`.
"""

# Import `Python` modules
import os
import re
import glob
import pandas

REQUIRED_COLUMNS = ['sample', 'condition', 'replicate', 'fastq_glob']


def read_sample_sheet(sample_sheet_file):
    """
    Read in the sample sheet and check that it is well formed

    Args:
        `sample_sheet_file`: the path to the CSV sample sheet

    Returns:
        A dataframe indexed by sample name with the columns `condition`,
        `replicate` and `fastq_glob`
    """
    sample_sheet = pandas.read_csv(sample_sheet_file, dtype=str, skipinitialspace=True)
    sample_sheet.dropna(how='all', inplace=True)

    missing_columns = [col for col in REQUIRED_COLUMNS if col not in sample_sheet.columns]
    if missing_columns:
        raise ValueError("The sample sheet {0} is missing the columns: {1}".format(
            sample_sheet_file, ', '.join(missing_columns)
        ))

    for col in ['sample', 'condition', 'fastq_glob']:
        sample_sheet[col] = sample_sheet[col].str.strip()
        if sample_sheet[col].isnull().any() or (sample_sheet[col] == '').any():
            raise ValueError("The sample sheet {0} has empty values in the column `{1}`".format(
                sample_sheet_file, col
            ))

    samples = sample_sheet['sample']
    if len(samples) != len(set(samples)):
        duplicates = sorted(set(samples[samples.duplicated()]))
        raise ValueError("The sample sheet {0} has duplicate sample names: {1}".format(
            sample_sheet_file, ', '.join(duplicates)
        ))

    sample_sheet['replicate'] = sample_sheet['replicate'].astype(int)
    sample_sheet.set_index('sample', inplace=True)
    return sample_sheet


def find_fastq_files(sample_sheet, fastq_dir):
    """
    Find the FASTQ files for each sample using the `fastq_glob` column

    Args:
        `sample_sheet`: a dataframe returned by `read_sample_sheet`
        `fastq_dir`: the directory that `fastq_glob` patterns are relative to

    Returns:
        A dictionary of the form {sample}:{sorted list of FASTQ files}
    """
    fastq_files = {}
    for (sample, row) in sample_sheet.iterrows():
        pattern = os.path.join(fastq_dir, row['fastq_glob'])
        files = sorted(glob.glob(pattern))
        if len(files) == 0:
            raise ValueError(
                "Failed to find FASTQ files for the sample {0} using the pattern: {1}".format(sample, pattern)
            )
        fastq_files[sample] = files
    return fastq_files


def iptg_dose(condition):
    """Parse the IPTG concentration from a label such as `IPTG10`, or None"""
    match = re.search(r'(\d+(?:\.\d+)?)', condition)
    if match is None:
        return None
    return float(match.group(1))


def conditions_in_order(sample_sheet, reference):
    """
    List the conditions with the reference first and the rest by IPTG dose

    Conditions without a parsable dose keep their order of first appearance
    and follow the dosed ones.
    """
    conditions = list(pandas.unique(sample_sheet['condition']))
    if reference not in conditions:
        raise ValueError("The reference condition {0} is not one of: {1}".format(
            reference, ', '.join(conditions)
        ))
    others = [c for c in conditions if c != reference]
    dosed = sorted([c for c in others if iptg_dose(c) is not None], key=iptg_dose)
    undosed = [c for c in others if iptg_dose(c) is None]
    return [reference] + dosed + undosed


def samples_in_condition(sample_sheet, condition):
    """Sample names of the given condition, in sample-sheet order"""
    return list(sample_sheet.index[sample_sheet['condition'] == condition])
