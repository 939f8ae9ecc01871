"""
Unit tests for the grading engine.
"""
import pytest

from app.models import Answer, Question, SubQuestion
from app.services.grading import (
    compute_percentage,
    compute_score,
    grade_answers,
    grade_question,
    is_blank_answer,
    parse_number,
    resolve_answer,
    score_attempt,
    served_total_marks,
    source_questions,
)


def mcq(**kwargs):
    data = {'id': 'm1', 'type': 'mcq', 'marks': 4, 'negative_marks': 1,
            'options': ['a', 'b', 'c', 'd'], 'correct_indices': [2]}
    data.update(kwargs)
    return SubQuestion(**data)


def msq(**kwargs):
    data = {'id': 's1', 'type': 'msq', 'marks': 2, 'negative_marks': 0.5,
            'options': ['a', 'b', 'c', 'd'], 'correct_indices': [1, 2, 3]}
    data.update(kwargs)
    return SubQuestion(**data)


def number_range(**kwargs):
    data = {'id': 'n1', 'type': 'fillblank', 'marks': 3, 'is_number_range': True,
            'number_range_min': 5, 'number_range_max': 10}
    data.update(kwargs)
    return SubQuestion(**data)


def text_blank(**kwargs):
    data = {'id': 't1', 'type': 'fillblank', 'marks': 2, 'fill_blank_answer': 'New  Delhi'}
    data.update(kwargs)
    return SubQuestion(**data)


class TestBlankAnswers:
    """Unattempted answers never score or lose marks"""

    @pytest.mark.parametrize('raw', [None, '', '   ', []])
    def test_blank_values(self, raw):
        assert is_blank_answer(raw)
        result = grade_question(mcq(), raw)
        assert result.is_correct is False
        assert result.marks_awarded == 0

    def test_zero_index_is_not_blank(self):
        assert not is_blank_answer(0)


class TestGrace:

    def test_grace_awards_full_marks_for_wrong_answer(self):
        result = grade_question(mcq(is_grace=True), 0)
        assert result.is_correct is True
        assert result.marks_awarded == 4
        assert result.is_grace_awarded is True

    def test_grace_awards_full_marks_for_blank_answer(self):
        result = grade_question(mcq(is_grace=True), None)
        assert result.is_correct is True
        assert result.marks_awarded == 4


class TestMcq:

    def test_correct(self):
        result = grade_question(mcq(), 2)
        assert result.is_correct is True
        assert result.marks_awarded == 4

    def test_wrong_takes_negative_marks(self):
        result = grade_question(mcq(), 1)
        assert result.is_correct is False
        assert result.marks_awarded == -1

    def test_integer_valued_float_accepted(self):
        assert grade_question(mcq(), 2.0).is_correct is True

    def test_wrong_shape_is_wrong_answer(self):
        assert resolve_answer('mcq', [2]) is None
        result = grade_question(mcq(), [2])
        assert result.is_correct is False
        assert result.marks_awarded == -1

    def test_stored_zero_marks_stay_zero(self):
        assert grade_question(mcq(marks=0), 2).marks_awarded == 0


class TestMsq:
    """No partial credit: the selected set must match exactly"""

    def test_subset_is_wrong(self):
        result = grade_question(msq(), [1, 2])
        assert result.is_correct is False
        assert result.marks_awarded == -0.5

    def test_exact_set_is_correct(self):
        assert grade_question(msq(), [1, 2, 3]).is_correct is True

    def test_order_does_not_matter(self):
        result = grade_question(msq(), [3, 2, 1])
        assert result.is_correct is True
        assert result.marks_awarded == 2

    def test_superset_is_wrong(self):
        assert grade_question(msq(), [0, 1, 2, 3]).is_correct is False


class TestFillBlankRange:

    @pytest.mark.parametrize('raw', [5, 10, '7.5', ' 10 ', '1 0'])
    def test_inclusive_bounds(self, raw):
        assert grade_question(number_range(), raw).is_correct is True

    @pytest.mark.parametrize('raw', [4.999, 10.001, '4.999', 'abc'])
    def test_outside_or_non_numeric(self, raw):
        assert grade_question(number_range(), raw).is_correct is False

    def test_leading_number_is_parsed(self):
        assert parse_number('12 .5cm') == 12.5
        assert parse_number('abc') is None

    def test_missing_bounds_default_to_zero(self):
        question = number_range(number_range_min=None, number_range_max=None)
        assert grade_question(question, 0).is_correct is True
        assert grade_question(question, 1).is_correct is False


class TestFillBlankText:

    def test_case_insensitive_by_default(self):
        assert grade_question(text_blank(), '  new delhi ').is_correct is True

    def test_inner_whitespace_collapsed(self):
        assert grade_question(text_blank(), 'New Delhi').is_correct is True

    def test_case_sensitive(self):
        question = text_blank(case_sensitive=True)
        assert grade_question(question, 'new delhi').is_correct is False
        assert grade_question(question, 'New Delhi').is_correct is True

    def test_integer_answer_matches_text_key(self):
        assert resolve_answer('fillblank', 15).value == 15
        assert isinstance(resolve_answer('fillblank', 15).value, int)
        assert grade_question(text_blank(fill_blank_answer='15'), 15).is_correct is True


class TestComprehension:

    def test_parent_is_not_scored(self):
        passage = Question(id='c1', type='comprehension', marks=10, sub_questions=[mcq(id='c1a')])
        assert grade_question(passage, 2).marks_awarded == 0

    def test_served_total_counts_sub_questions_only(self):
        passage = Question(
            id='c1', type='comprehension', marks=10,
            sub_questions=[mcq(id='c1a'), msq(id='c1b')],
        )
        assert served_total_marks([passage, Question(**mcq(id='m2').model_dump())]) == 10

    def test_sub_questions_graded_through_answers(self):
        passage = Question(id='c1', type='comprehension', sub_questions=[mcq(id='c1a'), msq(id='c1b')])
        graded = grade_answers(
            [Answer(question_id='c1a', answer=2), Answer(question_id='c1b', answer=[1, 2, 3])],
            [passage],
        )
        assert [a.marks_awarded for a in graded] == [4, 2]


class TestAggregation:

    def test_unknown_question_scores_zero(self):
        graded = grade_answers([Answer(question_id='deleted', answer=1)], [Question(**mcq().model_dump())])
        assert graded[0].is_correct is False
        assert graded[0].marks_awarded == 0

    def test_score_floored_at_zero(self):
        answers = [Answer(question_id='a', marks_awarded=-3), Answer(question_id='b', marks_awarded=1)]
        assert compute_score(answers) == 0

    def test_adjustments_and_grace_are_added(self):
        answers = [Answer(question_id='a', marks_awarded=2, adjustment_marks=1)]
        assert compute_score(answers, grace_marks=2) == 5

    def test_adjustments_survive_regrading(self):
        question = Question(**mcq().model_dump())
        graded = grade_answers([Answer(question_id='m1', answer=2, adjustment_marks=-1)], [question])
        assert graded[0].adjustment_marks == -1
        assert compute_score(graded) == 3

    def test_percentage_rounds_half_up(self):
        assert compute_percentage(1, 8) == 13
        assert compute_percentage(5, 0, fallback_total=10) == 50
        assert compute_percentage(0, 0) == 0

    def test_snapshot_preferred_over_live_questions(self):
        snapshot = [Question(**mcq(id='x').model_dump())]
        live = [Question(**mcq(id='y').model_dump())]
        assert source_questions(snapshot, live) is snapshot
        assert source_questions([], live) is live

    def test_grading_is_deterministic(self):
        question = msq()
        results = {grade_question(question, [3, 1, 2]).model_dump_json() for _ in range(5)}
        assert len(results) == 1


class TestEndToEndScoring:
    """mcq (4, -1, correct 2) + range fillblank (6, 10..20)"""

    def setup_method(self):
        self.questions = [
            Question(id='q1', type='mcq', marks=4, negative_marks=1,
                     options=['a', 'b', 'c', 'd'], correct_indices=[2]),
            Question(id='q2', type='fillblank', marks=6, is_number_range=True,
                     number_range_min=10, number_range_max=20),
        ]

    def test_all_correct(self):
        answers = [Answer(question_id='q1', answer=2), Answer(question_id='q2', answer=15)]
        _, score, percentage = score_attempt(answers, self.questions)
        assert score == 10
        assert percentage == 100

    def test_negative_total_floored(self):
        answers = [Answer(question_id='q1', answer=0), Answer(question_id='q2', answer=None)]
        graded, score, percentage = score_attempt(answers, self.questions)
        assert graded[0].marks_awarded == -1
        assert score == 0
        assert percentage == 0
