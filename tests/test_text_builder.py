"""Tests for identity text building and cleaning."""

import unittest

from fakes import make_profile
from src.profiles.text_builder import (
    build_contextual_query,
    build_embedding_input,
    build_profile_text,
    clean_text,
    is_complete_profile,
)


class TestIsCompleteProfile(unittest.TestCase):

    def test_complete(self):
        self.assertTrue(is_complete_profile(make_profile('u1')))

    def test_short_background(self):
        self.assertFalse(is_complete_profile(make_profile('u1', background='Too short')))

    def test_background_exactly_twenty_chars_is_too_short(self):
        self.assertFalse(is_complete_profile(make_profile('u1', background='x' * 20)))
        self.assertTrue(is_complete_profile(make_profile('u1', background='x' * 21)))

    def test_short_expertise(self):
        self.assertFalse(is_complete_profile(make_profile('u1', expertise='Python')))

    def test_placeholder_values(self):
        profile = make_profile('u1', background='Profile incomplete - please update your details')
        self.assertFalse(is_complete_profile(profile))

        profile = make_profile('u1', expertise='Incomplete expertise section here')
        self.assertFalse(is_complete_profile(profile))


class TestBuildProfileText(unittest.TestCase):

    def test_fixed_field_order(self):
        text = build_profile_text(make_profile('u1'))
        lines = text.split('\n')
        self.assertTrue(lines[0].startswith('Background: '))
        self.assertTrue(lines[1].startswith('Expertise: '))
        self.assertTrue(lines[2].startswith('Interests: '))

    def test_excludes_availability_fields(self):
        profile = make_profile(
            'u1',
            how_i_help=['Mentoring founders'],
            looking_for='Cofounder wanted',
            open_to='Advising',
            current_work='Stealth startup',
        )
        text = build_profile_text(profile)
        for value in ('Mentoring', 'Cofounder', 'Advising', 'Stealth'):
            self.assertNotIn(value, text)

    def test_incomplete_profile_returns_none(self):
        self.assertIsNone(build_profile_text(make_profile('u1', background='')))

    def test_missing_interests_allowed(self):
        text = build_profile_text(make_profile('u1', interests=''))
        self.assertTrue(text.endswith('Interests: '))


class TestCleanText(unittest.TestCase):

    def test_removes_filler_and_short_words(self):
        cleaned = clean_text("I am passionate about building innovative climate hardware")
        self.assertEqual(cleaned, 'climate hardware')

    def test_keeps_tokens_with_digits(self):
        self.assertIn('web3', clean_text("web3 and 5g networks"))
        self.assertIn('5g', clean_text("web3 and 5g networks"))

    def test_strips_punctuation(self):
        self.assertEqual(clean_text("Robotics, drones & sensors!"), 'robotics drones sensors')

    def test_empty(self):
        self.assertEqual(clean_text(''), '')

    def test_embedding_input_requires_signal(self):
        profile = make_profile(
            'u1',
            background='Passionate about helping people on projects',
            expertise='Really experienced in various areas',
            interests='',
        )
        self.assertIsNone(build_embedding_input(profile))

    def test_embedding_input_for_complete_profile(self):
        cleaned = build_embedding_input(make_profile('u1'))
        self.assertIn('battery', cleaned)
        self.assertNotIn('Background', cleaned)


class TestContextualQuery(unittest.TestCase):

    def test_includes_query_and_identity(self):
        text = build_contextual_query('  grid storage mentors ', make_profile('u1'))
        self.assertTrue(text.startswith('Query: grid storage mentors\n'))
        self.assertIn('Searcher background: Battery chemist', text)


if __name__ == '__main__':
    unittest.main()
