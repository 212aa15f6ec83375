"""Tests for the settings CLI helpers."""

from __future__ import annotations

import argparse

import pytest

from autofarm.__main__ import parse_assignment


class TestParseAssignment:
    def test_json_values(self):
        assert parse_assignment("max_distance=20") == ("max_distance", 20)
        assert parse_assignment("single_cycle=true") == ("single_cycle", True)

    def test_plain_strings(self):
        assert parse_assignment("single_cycle_interval=00:30:00") == (
            "single_cycle_interval",
            "00:30:00",
        )
        assert parse_assignment("preset_name=Farm") == ("preset_name", "Farm")

    def test_missing_separator(self):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_assignment("max_distance")
