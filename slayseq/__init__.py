"""
Count amplicon sequences from the IPTG selection experiment and test them for differential enrichment with DESeq2
"""

__version__ = '0.1.0'
