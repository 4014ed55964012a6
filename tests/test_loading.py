"""
Tests for the input readers and the source join.

Tests cover:
- FIPS coercion from strings, integers and floats
- Schema validation of each table
- Google mobility layout renaming and state filtering
- Left-join row preservation
"""

import pandas as pd
import pytest
from pandera.errors import SchemaError

from casecurve.config import MOBILITY_COLUMNS, DataPaths
from casecurve.data.loading import (
    GOOGLE_MOBILITY_RENAMES,
    coerce_fips,
    load_cases,
    load_metro,
    load_mobility,
    load_population,
    load_sources,
    merge_sources,
)


# =============================================================================
# FIPS TESTS
# =============================================================================


class TestCoerceFips:
    """Tests for county code normalisation."""

    def test_zero_padded_strings(self):
        """Leading zeros are dropped."""
        result = coerce_fips(pd.Series(["06037", "26163"]))
        assert result.tolist() == [6037, 26163]

    def test_float_codes(self):
        """Float codes from spreadsheets become nullable integers."""
        result = coerce_fips(pd.Series([26163.0, 6037.0]))
        assert str(result.dtype) == "Int64"
        assert result.tolist() == [26163, 6037]

    def test_unknown_becomes_missing(self):
        """Blank and non-numeric codes are missing, not errors."""
        result = coerce_fips(pd.Series(["26163", "", None, "Unknown"]))
        assert result.isna().tolist() == [False, True, True, True]


# =============================================================================
# READER TESTS
# =============================================================================


class TestReaders:
    """Tests for the per-table CSV readers."""

    def test_load_cases(self, raw_csv_dir):
        """Cases load with parsed dates and integer FIPS."""
        cases = load_cases(raw_csv_dir / "cases.csv")
        assert len(cases) == 16
        assert pd.api.types.is_datetime64_any_dtype(cases["date"])
        assert 26163 in set(cases["fips"].dropna())

    def test_negative_cumulative_rejected(self, tmp_path):
        """Negative cumulative counts fail validation."""
        path = tmp_path / "cases.csv"
        pd.DataFrame(
            {"date": ["2020-03-20"], "state": ["Michigan"], "fips": ["26163"], "cases": [-1]}
        ).to_csv(path, index=False)
        with pytest.raises(SchemaError):
            load_cases(path)

    def test_duplicate_population_rejected(self, tmp_path):
        """Population has one row per county."""
        path = tmp_path / "population.csv"
        pd.DataFrame({"fips": ["26163", "26163"], "population": [1.0, 2.0]}).to_csv(
            path, index=False
        )
        with pytest.raises(SchemaError):
            load_population(path)

    def test_metro_strings(self, tmp_path):
        """Common truthy strings mark metropolitan counties."""
        path = tmp_path / "metro.csv"
        pd.DataFrame(
            {"fips": ["26163", "26081", "26001", "26003"], "metro": ["1", "True", "0", ""]}
        ).to_csv(path, index=False)
        metro = load_metro(path).set_index("fips")["metro"]
        assert metro.to_dict() == {26163: True, 26081: True, 26001: False, 26003: False}

    def test_google_mobility_layout(self, tmp_path):
        """Long Google column names are renamed and other states dropped."""
        path = tmp_path / "google.csv"
        long_names = [k for k in GOOGLE_MOBILITY_RENAMES if k != "census_fips_code"]
        rows = [
            {"sub_region_1": "Michigan", "census_fips_code": "26163", "date": "2020-03-20"},
            {"sub_region_1": "Michigan", "census_fips_code": "", "date": "2020-03-20"},
            {"sub_region_1": "Ohio", "census_fips_code": "39035", "date": "2020-03-20"},
        ]
        for row in rows:
            row.update({name: -5 for name in long_names})
        pd.DataFrame(rows).to_csv(path, index=False)

        mobility = load_mobility(path, state="Michigan")

        assert mobility["fips"].tolist() == [26163]
        assert list(mobility.columns) == ["fips", "date"] + MOBILITY_COLUMNS

    def test_mobility_missing_columns(self, tmp_path):
        """A mobility file without the expected columns is rejected."""
        path = tmp_path / "mobility.csv"
        pd.DataFrame({"fips": ["26163"], "date": ["2020-03-20"], "parks": [1.0]}).to_csv(
            path, index=False
        )
        with pytest.raises(ValueError, match="lacks columns"):
            load_mobility(path)


# =============================================================================
# JOIN TESTS
# =============================================================================


class TestMergeSources:
    """Tests for the left join of all sources onto the case rows."""

    def test_row_count_preserved(self, raw_tables):
        """The join never adds or removes case rows."""
        merged = merge_sources(**raw_tables)
        assert len(merged) == len(raw_tables["cases"])

    def test_missing_mobility_kept_as_nan(self, raw_tables):
        """A county-day without mobility keeps NaN mobility fields."""
        merged = merge_sources(**raw_tables)
        row = merged[(merged["fips"] == 26081) & (merged["date"] == "2020-03-22")]
        assert len(row) == 1
        assert row[MOBILITY_COLUMNS].isna().all(axis=1).iloc[0]

    def test_unknown_county_survives(self, raw_tables):
        """Rows without a FIPS code survive with missing attributes."""
        cases = raw_tables["cases"]
        extra = pd.DataFrame(
            {
                "date": [cases["date"].iloc[0]],
                "county": ["Unknown"],
                "state": ["Michigan"],
                "fips": pd.array([pd.NA], dtype="Int64"),
                "cases": [3.0],
            }
        )
        tables = dict(raw_tables, cases=pd.concat([cases, extra], ignore_index=True))
        merged = merge_sources(**tables)
        assert len(merged) == len(tables["cases"])
        assert merged["population"].isna().sum() == 1

    def test_load_sources_from_directory(self, raw_csv_dir, raw_tables):
        """All five tables load and join from one directory."""
        merged = load_sources(DataPaths.from_directory(raw_csv_dir), state="Michigan")
        assert len(merged) == len(raw_tables["cases"])
        assert merged["population"].notna().all()
