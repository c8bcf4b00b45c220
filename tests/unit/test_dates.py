"""
Vitae - Loose Date Parsing Tests
================================
"""

from datetime import date, datetime

import pytest

from vitae.shared.dates import parse_loose_date, pubmed_date_string, to_iso_date


@pytest.mark.parametrize("value,expected", [
    ("2019", date(2019, 1, 1)),
    ("2019-03-15", date(2019, 3, 15)),
    ("2019-03", date(2019, 3, 1)),
    ("03/15/2019", date(2019, 3, 15)),
    ("3/2019", date(2019, 3, 1)),
    ("2015 - 2019", date(2015, 1, 1)),
    ("2018 – Present", date(2018, 1, 1)),
    ("2018 to present", date(2018, 1, 1)),
    ("March 15, 2021", date(2021, 3, 15)),
    ("Sept. 2020", date(2020, 9, 1)),
    ("2024-Jan", date(2024, 1, 1)),
    ("2019 Mar-Apr", date(2019, 3, 1)),
    ("Spring 2019", date(2019, 1, 1)),
    ("Presented at AANS, Apr 2017, Los Angeles", date(2017, 4, 1)),
    ("15 March 2021", date(2021, 3, 15)),
    ("Mar-Apr 2019", date(2019, 3, 1)),
    ("2019-03-15T09:30:00", date(2019, 3, 15)),
])
def test_parse_loose_date(value, expected):
    assert parse_loose_date(value) == expected


@pytest.mark.parametrize("value", [None, "", "   ", "in press", "March 15", "1850", "2150", "13/40/2019"])
def test_unparseable(value):
    assert parse_loose_date(value) is None


def test_date_objects_pass_through():
    assert parse_loose_date(date(2020, 5, 1)) == date(2020, 5, 1)
    assert parse_loose_date(datetime(2020, 5, 1, 12, 30)) == date(2020, 5, 1)


def test_to_iso_date():
    assert to_iso_date("Jan 2020") == "2020-01-01"
    assert to_iso_date("unknown") is None


def test_pubmed_date_string():
    assert pubmed_date_string("2024", "Jan") == "2024-Jan"
    assert pubmed_date_string("2024") == "2024"
    assert pubmed_date_string(None) == ""
