import pytest

from utils.records import CategoryConfig, ScoreRecord, coerce_int, normalize_category


@pytest.mark.parametrize(
    "value, expected",
    [
        ("18", 18),
        (" 7 ", 7),
        ("12pts", 12),
        ("-3", -3),
        ("abc", 0),
        ("", 0),
        (None, 0),
        (True, 0),
        (9.9, 9),
        (float("nan"), 0),
        (15, 15),
    ],
)
def test_coerce_int(value, expected):
    assert coerce_int(value) == expected


def test_normalize_category_accepts_prefixes():
    assert normalize_category("WW") == "ww"
    assert normalize_category("scores_pt") == "pt"
    assert normalize_category("hps_qa") == "qa"
    with pytest.raises(ValueError):
        normalize_category("homework")


def test_config_from_row_parses_json_text():
    config = CategoryConfig.from_row(
        {
            "grade_level": "Grade 7",
            "section": "Rizal",
            "subject": "Mathematics",
            "quarter": "2",
            "hps_ww": '{"1": 20, "2": "15"}',
            "hps_pt": None,
            "hps_qa": {"1": 50},
            "weight_ww": 25,
            "weight_pt": "55",
            "weight_qa": None,
        }
    )
    assert config.quarter == 2
    assert config.hps_ww == {1: 20, 2: 15}
    assert config.hps_pt == {}
    assert config.hps_qa == {1: 50}
    assert config.weight_pt == 55
    # Stored NULL stays NULL and counts as 0
    assert config.weight_qa is None
    assert config.weight_total == 80


def test_config_defaults_when_weights_absent():
    config = CategoryConfig.from_row({"grade_level": "Grade 7", "section": "Rizal", "subject": "English", "quarter": 1})
    assert (config.weight_ww, config.weight_pt, config.weight_qa) == (20, 60, 20)
    assert config.weight_total == 100


def test_score_record_row_uses_string_keys():
    record = ScoreRecord("s1", "Mathematics", 1, scores_ww={2: 9, 1: 8})
    row = record.to_row()
    assert row["scores_ww"] == {"1": 8, "2": 9}
    assert ScoreRecord.from_row(row).scores_ww == {1: 8, 2: 9}
    assert record.key == ("s1", "Mathematics", 1)
