"""Shared fixtures: small MyOpenMath-style and Canvas-style exports."""

import pytest

from gradebridge.common import parse_csv


SOURCE_CSV = (
    "Last Name,First Name,Student ID,Quiz 1 (1234),Homework 2 (20 pts)\n"
    "Max Points,,,15,20\n"
    "O'Brien,Pat,999,14,18\n"
    "Nguyen,Lin,102,11,20\n"
)

TARGET_CSV = (
    "Student,ID,SIS User ID,Section,Quiz 1 (1234),Homework 1 (5678)\r\n"
    "    Points Possible,,,,15,10\r\n"
    "\"O'Brien, Pat\",101,S001,Sec A,,\r\n"
    "\"Nguyen, Lin\",102,S002,Sec A,12,\r\n"
    "\"Smith, Jo\",103,S003,Sec A,,9\r\n"
)

EXPECTED_OUTPUT = (
    "Student,ID,SIS User ID,Section,Quiz 1 (1234),Homework 1 (5678),Homework 2 (20 pts)\n"
    "Points Possible,,,,15,10,20\n"
    "\"O'Brien, Pat\",101,S001,Sec A,14,,18\n"
    "\"Nguyen, Lin\",102,S002,Sec A,11,,20\n"
    "\"Smith, Jo\",103,S003,Sec A,,9,"
)


class FakeSummarizer:
    """Records every call and answers with a fixed narrative."""

    def __init__(self, reply='Grades look healthy.'):
        self.reply = reply
        self.calls = []

    def summarize(self, stats_text):
        self.calls.append(stats_text)
        return self.reply


class FailingSummarizer:
    def summarize(self, stats_text):
        raise RuntimeError('service unavailable')


@pytest.fixture
def source_csv():
    return SOURCE_CSV


@pytest.fixture
def target_csv():
    return TARGET_CSV


@pytest.fixture
def expected_output():
    return EXPECTED_OUTPUT


@pytest.fixture
def source_table():
    return parse_csv(SOURCE_CSV)


@pytest.fixture
def target_table():
    return parse_csv(TARGET_CSV)


@pytest.fixture
def csv_files(tmp_path):
    """Write both exports to disk and return (source_path, target_path)."""
    source_path = tmp_path / 'mom_export.csv'
    target_path = tmp_path / 'canvas_export.csv'
    source_path.write_text(SOURCE_CSV, encoding='utf-8')
    target_path.write_bytes(TARGET_CSV.encode('utf-8-sig'))
    return source_path, target_path


@pytest.fixture
def fake_summarizer():
    return FakeSummarizer()
