import pytest

from conftest import GRADE, SECTION, SUBJECT
from utils.class_record import ClassRecordAggregator
from utils.errors import MissingSchemaError, PersistenceError
from utils.records import CategoryConfig, ScoreRecord


@pytest.fixture
def aggregator(store):
    agg = ClassRecordAggregator(store)
    agg.load_context(GRADE, SECTION, SUBJECT, 1)
    return agg


def _scenario_config():
    return CategoryConfig(GRADE, SECTION, SUBJECT, 1, hps_ww={1: 20}, hps_pt={1: 50}, hps_qa={1: 20})


def test_load_context_defaults_config(aggregator):
    assert aggregator.config.key == (GRADE, SECTION, SUBJECT, 1)
    assert (aggregator.config.weight_ww, aggregator.config.weight_pt, aggregator.config.weight_qa) == (20, 60, 20)
    assert aggregator.roster_ids == ["s1", "s2", "s3", "s4", "s5"]
    assert aggregator.scores == {}


def test_load_context_returns_stored_records(store):
    store.configs[(GRADE, SECTION, SUBJECT, 1)] = _scenario_config()
    store.scores[("s2", SUBJECT, 1)] = ScoreRecord("s2", SUBJECT, 1, scores_ww={1: 15})
    store.scores[("s2", SUBJECT, 2)] = ScoreRecord("s2", SUBJECT, 2, scores_ww={1: 3})
    store.scores[("s6", SUBJECT, 1)] = ScoreRecord("s6", SUBJECT, 1, scores_ww={1: 20})

    config, records = ClassRecordAggregator(store).load_context(GRADE, SECTION, SUBJECT, "1")

    assert config.hps_ww == {1: 20}
    assert [r.student_id for r in records] == ["s2"]
    assert records[0].scores_ww == {1: 15}


def test_load_context_missing_schema(store):
    store.missing_tables.add("class_record_meta")
    with pytest.raises(MissingSchemaError) as exc_info:
        ClassRecordAggregator(store).load_context(GRADE, SECTION, SUBJECT, 1)
    assert exc_info.value.table == "class_record_meta"


def test_set_score_coerces_input(aggregator):
    assert aggregator.set_score("s1", "ww", 1, "18") == 18
    assert aggregator.set_score("s1", "ww", 2, "abc") == 0
    assert aggregator.scores["s1"].scores_ww == {1: 18, 2: 0}


def test_set_score_rejects_bad_cells(aggregator):
    with pytest.raises(ValueError):
        aggregator.set_score("s1", "ww", 11, 5)
    with pytest.raises(ValueError):
        aggregator.set_score("s1", "qa", 2, 5)
    with pytest.raises(ValueError):
        aggregator.set_score("s6", "ww", 1, 5)
    with pytest.raises(ValueError):
        aggregator.set_score("s1", "homework", 1, 5)
    assert aggregator.scores == {}


def test_set_hps_and_weight(aggregator):
    aggregator.set_hps("pt", 3, "25")
    aggregator.set_weight("pt", "50")
    assert aggregator.config.hps_pt == {3: 25}
    assert aggregator.config.weight_pt == 50
    assert aggregator.compute_roster()["weight_total"] == 90


def test_operations_require_context(store):
    with pytest.raises(RuntimeError):
        ClassRecordAggregator(store).set_hps("ww", 1, 10)


def test_bulk_paste_block(aggregator):
    written = aggregator.bulk_paste("s1", "ww", 1, "1\t2\t3\n4\t5\t6\n7\t8\t9")
    assert written == 9
    assert aggregator.scores["s1"].scores_ww == {1: 1, 2: 2, 3: 3}
    assert aggregator.scores["s2"].scores_ww == {1: 4, 2: 5, 3: 6}
    assert aggregator.scores["s3"].scores_ww == {1: 7, 2: 8, 3: 9}
    assert "s4" not in aggregator.scores


def test_bulk_paste_block_from_third_student(aggregator):
    anchor = aggregator.roster_ids[2]
    written = aggregator.bulk_paste(anchor, "ww", 1, "1\t2\t3\n4\t5\t6\n7\t8\t9")
    assert written == 9
    assert sorted(aggregator.scores) == ["s3", "s4", "s5"]
    assert aggregator.scores["s3"].scores_ww == {1: 1, 2: 2, 3: 3}
    assert aggregator.scores["s4"].scores_ww == {1: 4, 2: 5, 3: 6}
    assert aggregator.scores["s5"].scores_ww == {1: 7, 2: 8, 3: 9}
    for sid in ("s3", "s4", "s5"):
        assert all(item not in aggregator.scores[sid].scores_ww for item in range(4, 11))


def test_bulk_paste_stops_at_roster_end(aggregator):
    text = "\n".join(["10"] * 15)
    assert aggregator.bulk_paste("s1", "pt", 1, text) == 5
    assert all(aggregator.scores[sid].scores_pt == {1: 10} for sid in aggregator.roster_ids)


def test_bulk_paste_from_middle_of_roster(aggregator):
    assert aggregator.bulk_paste("s4", "ww", 2, "5\n6\n7") == 2
    assert aggregator.scores["s4"].scores_ww == {2: 5}
    assert aggregator.scores["s5"].scores_ww == {2: 6}


def test_bulk_paste_drops_columns_past_limit(aggregator):
    assert aggregator.bulk_paste("s1", "ww", 9, "1\t2\t3\t4") == 2
    assert aggregator.scores["s1"].scores_ww == {9: 1, 10: 2}
    assert aggregator.bulk_paste("s1", "qa", 1, "40\t50") == 1
    assert aggregator.scores["s1"].scores_qa == {1: 40}


def test_bulk_paste_skips_blank_lines_and_junk(aggregator):
    written = aggregator.bulk_paste("s1", "ww", 1, "1\r\n\r\n  \nabc\r3\n")
    assert written == 3
    assert aggregator.scores["s1"].scores_ww == {1: 1}
    assert aggregator.scores["s2"].scores_ww == {1: 0}
    assert aggregator.scores["s3"].scores_ww == {1: 3}


def test_bulk_paste_never_raises(aggregator):
    assert aggregator.bulk_paste("nobody", "ww", 1, "1\t2") == 0
    assert aggregator.bulk_paste("s1", "homework", 1, "1\t2") == 0
    assert aggregator.bulk_paste("s1", "ww", 0, "1\t2") == 0
    assert aggregator.bulk_paste("s1", "ww", 1, None) == 0
    assert aggregator.bulk_paste("s1", "ww", 1, "") == 0
    assert aggregator.scores == {}


def test_bulk_paste_is_idempotent(aggregator):
    text = "10\t9\n8\t7"
    aggregator.bulk_paste("s2", "pt", 1, text)
    first = {sid: dict(r.scores_pt) for sid, r in aggregator.scores.items()}
    aggregator.bulk_paste("s2", "pt", 1, text)
    second = {sid: dict(r.scores_pt) for sid, r in aggregator.scores.items()}
    assert first == second


def test_compute_roster_end_to_end(store):
    store.configs[(GRADE, SECTION, SUBJECT, 1)] = _scenario_config()
    agg = ClassRecordAggregator(store)
    agg.load_context(GRADE, SECTION, SUBJECT, 1)
    agg.set_score("s1", "ww", 1, 18)
    agg.set_score("s1", "pt", 1, 50)
    agg.set_score("s1", "qa", 1, 18)
    agg.set_score("s4", "ww", 1, 10)

    roster = agg.compute_roster()

    rows = {row["student_id"]: row for row in roster["rows"]}
    assert [row["student_id"] for row in roster["rows"]] == ["s1", "s2", "s3", "s4", "s5"]
    assert rows["s1"]["initial_grade"] == pytest.approx(96.0)
    assert rows["s1"]["quarterly_grade"] == 97
    assert rows["s1"]["failing"] is False
    assert rows["s1"]["name"] == "Aquino, Jose"
    # Ungraded students stay at 0 and are not flagged
    assert rows["s2"]["quarterly_grade"] == 0
    assert rows["s2"]["failing"] is False
    # 10/20 WW only -> 10.0 initial -> 62
    assert rows["s4"]["quarterly_grade"] == 62
    assert rows["s4"]["failing"] is True
    assert roster["groups"] == {"M": ["s1", "s2", "s3"], "F": ["s4", "s5"]}
    assert roster["hps_totals"] == {"ww": 20, "pt": 50, "qa": 20}
    assert roster["summary"]["graded_count"] == 2
    assert roster["summary"]["passing_count"] == 1
    assert roster["summary"]["failing_count"] == 1
    assert roster["summary"]["highest"] == 97
    assert roster["summary"]["mean"] == pytest.approx(79.5)


def test_compute_roster_is_pure(aggregator):
    aggregator.set_score("s1", "ww", 1, 10)
    assert aggregator.compute_roster() == aggregator.compute_roster()
    assert aggregator.scores["s1"].quarterly_grade == 0


def test_save_persists_recomputed_grades(store):
    store.configs[(GRADE, SECTION, SUBJECT, 1)] = _scenario_config()
    agg = ClassRecordAggregator(store)
    agg.load_context(GRADE, SECTION, SUBJECT, 1)
    agg.bulk_paste("s1", "ww", 1, "18")
    agg.bulk_paste("s1", "pt", 1, "50")
    agg.bulk_paste("s1", "qa", 1, "18")

    result = agg.save()

    assert result == {"config_saved": True, "scores_saved": 1}
    saved = store.scores[("s1", SUBJECT, 1)]
    assert saved.quarterly_grade == 97
    assert saved.initial_grade == pytest.approx(96.0)
    assert agg.scores["s1"].quarterly_grade == 97
    assert store.writes == ["class_record_meta", "class_record_scores"]


def test_save_partial_failure_reports_stage(store, aggregator):
    store.failing_tables.add("class_record_scores")
    aggregator.set_hps("ww", 1, 20)
    aggregator.set_score("s1", "ww", 1, 18)

    with pytest.raises(PersistenceError) as exc_info:
        aggregator.save()

    assert exc_info.value.stage == "scores"
    # The config write went through and is not rolled back
    assert store.configs[(GRADE, SECTION, SUBJECT, 1)].hps_ww == {1: 20}
    assert store.scores == {}
    # Edits survive for a retry
    assert aggregator.scores["s1"].scores_ww == {1: 18}
    assert aggregator.scores["s1"].quarterly_grade == 0


def test_save_config_failure_skips_scores(store, aggregator):
    store.failing_tables.add("class_record_meta")
    aggregator.set_score("s1", "ww", 1, 18)
    with pytest.raises(PersistenceError) as exc_info:
        aggregator.save()
    assert exc_info.value.stage == "config"
    assert store.writes == []


def test_save_missing_schema_passes_through(store, aggregator):
    store.missing_tables.add("class_record_scores")
    aggregator.set_score("s1", "ww", 1, 18)
    with pytest.raises(MissingSchemaError):
        aggregator.save()


def test_restore_ignores_records_off_roster(store):
    agg = ClassRecordAggregator(store)
    students = store.fetch_students(GRADE, SECTION)
    agg.restore(_scenario_config(), students, [ScoreRecord("s6", SUBJECT, 1, scores_ww={1: 1})])
    assert agg.scores == {}
