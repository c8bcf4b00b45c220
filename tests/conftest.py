"""
Vitae - Test Configuration
==========================

Shared pytest fixtures for all tests.
"""

import pytest

from vitae.database.store import InMemoryRecordStore
from vitae.ingest.job_store import JobStore


@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def job_store():
    return JobStore(force_memory=True)


@pytest.fixture
def sample_cv_text():
    """Short CV with a profile block and three sections."""
    return (
        "Jane Q. Researcher, MD PhD\n"
        "jane@example.edu | (555) 123-4567\n"
        "Department of Neurosurgery, Example University\n"
        "\n"
        "EDUCATION\n"
        "MD, Example University School of Medicine, 2010\n"
        "PhD, Neuroscience, Example University, 2008\n"
        "\n"
        "PUBLICATIONS\n"
        "1. Researcher JQ, Smith J. Outcomes of deep brain stimulation. "
        "J Neurosurg. 2019;130:1-9.\n"
        "2. Researcher JQ. Awake craniotomy in eloquent cortex. Neurosurgery. 2021.\n"
        "\n"
        "AWARDS\n"
        "Young Investigator Award, 2018\n"
    )
