"""
Vitae - CV Ingestion and Publication Reconciliation
===================================================

Two cooperating engines:
- Ingestion: segment a CV, extract each chunk with an LLM, merge the results
  and persist them behind a composite dedup key
- Reconciliation: keep the record in step with PubMed (author search,
  scheduled staging of new publications, PMID enrichment)
"""

__version__ = "1.0.0"
__author__ = "Vitae Team"
