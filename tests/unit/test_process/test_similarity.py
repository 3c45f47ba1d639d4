# Path: tests/unit/test_process/test_similarity.py
"""
Unit tests for label similarity.
"""

import pytest

from survey_blend.process.matcher.similarity import normalize_label, similarity, tokenize


class TestTokenize:
    """Tests for tokenize()."""

    def test_lowercases_and_splits_on_punctuation(self):
        assert tokenize('Surgery, General') == ('surgery', 'general')

    def test_drops_stopwords(self):
        assert tokenize('Obstetrics and Gynecology') == ('obstetric', 'gynecology')

    def test_expands_abbreviations(self):
        assert tokenize('Peds') == ('pediatric',)
        assert tokenize('OB/GYN') == tokenize('Obstetrics Gynecology')

    def test_singularizes(self):
        assert tokenize('Hospitalists') == ('hospitalist',)
        assert tokenize('Therapies') == ('therapy',)

    def test_keeps_short_and_latin_endings(self):
        assert tokenize('Bus Status Analysis') == ('bus', 'status', 'analysis')

    def test_empty(self):
        assert tokenize('') == ()


class TestNormalizeLabel:
    """Tests for normalize_label()."""

    def test_order_insensitive(self):
        assert normalize_label('Surgery, General') == normalize_label('General Surgery')

    def test_abbreviation_matches_full_name(self):
        assert normalize_label('Cardio') == normalize_label('Cardiology')


class TestSimilarity:
    """Tests for similarity()."""

    def test_identical_labels_score_one(self):
        assert similarity('Cardiology', 'Cardiology') == 1.0

    def test_abbreviation_scores_one(self):
        assert similarity('Cardio', 'Cardiology') == 1.0
        assert similarity('Peds', 'Pediatrics') == 1.0

    def test_reordered_words_score_one(self):
        assert similarity('Surgery, General', 'General Surgery') == 1.0

    def test_empty_label_scores_zero(self):
        assert similarity('', 'Cardiology') == 0.0
        assert similarity('Cardiology', '   ') == 0.0

    def test_unrelated_labels_score_low(self):
        assert similarity('Cardiology', 'Dermatology') < 0.6

    def test_contained_label_is_capped(self):
        score = similarity('Cardiology', 'Cardiology Invasive')
        assert 0.6 <= score <= 0.9

    @pytest.mark.parametrize('a,b', [
        ('Cardio', 'Cardiology - Invasive'),
        ('Family Medicine', 'Family Practice'),
        ('Emergency Medicine', 'EM'),
        ('Orthopedic Surgery', 'Ortho Surg - Spine'),
    ])
    def test_symmetric(self, a, b):
        assert similarity(a, b) == similarity(b, a)

    def test_range(self):
        score = similarity('Family Medicine', 'Family Practice')
        assert 0.0 <= score <= 1.0
