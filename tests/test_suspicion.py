from core.scoring import (
    SUSPICION_REQUIREMENTS,
    SuspicionFlag,
    SuspicionThresholds,
    TimingEntry,
    describe_flag,
    render_flag,
    score_band,
    score_session,
)
from core.scoring.suspicion import (
    AVG_ANSWER_FAST,
    FAST_ANSWERS_RATIO,
    PAGE_FAST,
    SLIDE_VIEW_FAST,
)


def page(name, ms):
    return TimingEntry(kind="page", item_id=name, duration_ms=ms)


def answer(qid, ms):
    return TimingEntry(kind="answer", item_id=qid, duration_ms=ms)


def slide(sid, ms):
    return TimingEntry(kind="slide", item_id=sid, duration_ms=ms, mode="learning")


def careful_session():
    return [
        page("demographics", 40_000),
        page("pretest", 90_000),
        page("learning", 120_000),
        page("posttest", 150_000),
        slide("s1", 20_000),
        slide("s2", 25_000),
        slide("s3", 30_000),
        answer("q1", 6_000),
        answer("q2", 9_000),
    ]


def test_careful_session_scores_zero():
    assessment = score_session(careful_session())

    assert assessment.score == 0
    assert assessment.flags == []
    assert assessment.needs_review is False


def test_empty_telemetry_scores_zero():
    assert score_session([]).score == 0


def test_scoring_is_deterministic():
    entries = [page("pretest", 5_000), answer("q1", 500), answer("q2", 700), slide("s1", 1_000)]

    first = score_session(entries)
    second = score_session(list(entries))

    assert first == second
    assert [f.rule_id for f in first.flags] == [f.rule_id for f in second.flags]


def test_sixty_percent_fast_answers_adds_ratio_points():
    entries = [answer(f"q{i}", 1_000) for i in range(6)]
    entries += [answer(f"q{i}", 5_000) for i in range(6, 10)]

    assessment = score_session(entries)

    rule_ids = [f.rule_id for f in assessment.flags]
    assert FAST_ANSWERS_RATIO in rule_ids
    assert assessment.score >= 25
    ratio_flag = next(f for f in assessment.flags if f.rule_id == FAST_ANSWERS_RATIO)
    assert ratio_flag.points == 25
    assert ratio_flag.param_dict["ratio"] == 0.6


def test_exactly_half_fast_answers_is_not_flagged():
    entries = [answer("a", 1_000), answer("b", 5_000)]
    rule_ids = [f.rule_id for f in score_session(entries).flags]
    assert FAST_ANSWERS_RATIO not in rule_ids


def test_very_fast_average_answer_time():
    entries = [answer("a", 800), answer("b", 900)]
    rule_ids = [f.rule_id for f in score_session(entries).flags]
    assert rule_ids == [FAST_ANSWERS_RATIO, AVG_ANSWER_FAST]
    assert score_session(entries).score == 45


def test_one_page_flag_per_rushed_page():
    entries = [page("demographics", 5_000), page("pretest", 10_000), page("posttest", 60_000)]

    flags = score_session(entries).flags

    assert [f.param_dict["page"] for f in flags if f.rule_id == PAGE_FAST] == [
        "demographics",
        "pretest",
    ]


def test_page_time_is_summed_across_visits():
    entries = [page("demographics", 8_000), page("demographics", 8_000)]
    assert score_session(entries).score == 0


def test_learning_minimum_is_slide_minimum_times_slide_count():
    thresholds = SuspicionThresholds()
    just_under = thresholds.min_time_for_reading_slide_ms * thresholds.min_learning_slides - 1

    flags = score_session([page("learning", just_under)], thresholds).flags

    assert [f.rule_id for f in flags] == [PAGE_FAST]


def test_fast_slide_views():
    entries = [slide("s1", 2_000), slide("s2", 3_000)]
    flags = score_session(entries).flags
    assert [f.rule_id for f in flags] == [SLIDE_VIEW_FAST]


def test_zero_durations_are_ignored():
    entries = [answer("a", 0), slide("s1", 0), page("pretest", 0)]
    assert score_session(entries).score == 0


def test_score_is_capped_at_one_hundred():
    entries = [
        page("demographics", 1_000),
        page("pretest", 1_000),
        page("posttest", 1_000),
        page("learning", 1_000),
        answer("a", 100),
        slide("s1", 100),
    ]
    assert score_session(entries).score == 100


def test_custom_thresholds_change_the_outcome():
    entries = [answer("a", 2_000), answer("b", 2_000)]
    lenient = SuspicionThresholds(min_time_per_question_ms=1_000)

    assert score_session(entries).score > 0
    assert score_session(entries, lenient).score == 0


def test_flags_render_from_rule_metadata():
    flag = SuspicionFlag(rule_id=PAGE_FAST, points=30, params=(("duration_ms", 5_000), ("minimum_ms", 15_000), ("page", "demographics")))

    assert render_flag(flag) == "Page 'demographics' completed in 5s (minimum expected: 15s)"
    described = describe_flag(flag)
    assert set(described) == {"flag", "summary", "reason"}


def test_unknown_rule_renders_its_id():
    flag = SuspicionFlag(rule_id="retired_rule", points=5)
    assert render_flag(flag) == "retired_rule"
    assert describe_flag(flag) == {"flag": "retired_rule"}


def test_flag_dict_round_trip_keeps_params():
    flag = score_session([answer("a", 100)]).flags[0]
    assert SuspicionFlag.from_dict(flag.to_dict()) == flag


def test_score_bands():
    assert score_band(0).label == "Normal"
    assert score_band(19).label == "Normal"
    assert score_band(20).label == "Low risk"
    assert score_band(45).label == "Medium risk"
    assert score_band(60).label == "High risk"
    assert score_band(100).label == "High risk"


def test_timing_entry_accepts_browser_log_shape():
    entry = TimingEntry.from_dict(
        {"kind": "slide", "slideId": "intro", "slideTitle": "Intro", "durationSeconds": 12.5, "mode": "text"}
    )
    assert entry.item_id == "intro"
    assert entry.title == "Intro"
    assert entry.duration_ms == 12_500


def test_requirements_list_mentions_every_threshold():
    assert len(SUSPICION_REQUIREMENTS) == 7
    assert SUSPICION_REQUIREMENTS[0] == "Demographics page time >= 15s"
