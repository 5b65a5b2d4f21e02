"""
Unit tests for the text module.

Tests for whitespace collapsing, length bounding, chrome stripping and
noise classification and slugs.
"""

from eventsync.extraction.text import (
    bound_text,
    clean_location,
    clean_text,
    collapse_ws,
    is_noise,
    sanitize,
    slugify,
    strip_login_noise,
    strip_noise_phrases,
)


class TestCollapseWs:
    """Tests for collapse_ws."""

    def test_collapses_runs(self):
        """Should collapse newlines and tabs into single spaces."""
        assert collapse_ws("  Jazz \n\t Night  ") == "Jazz Night"

    def test_empty_is_none(self):
        """Should return None for blank or missing text."""
        assert collapse_ws("   ") is None
        assert collapse_ws(None) is None

    def test_non_string_is_stringified(self):
        """Should accept non-string values."""
        assert collapse_ws(42) == "42"


class TestBoundText:
    """Tests for bound_text."""

    def test_short_text_untouched(self):
        """Should return text within the limit unchanged."""
        assert bound_text("Short title", 50) == "Short title"

    def test_cuts_on_word_boundary(self):
        """Should cut at the last space when it falls in the tail of the window."""
        text = "alpha beta gamma delta epsilon"
        assert bound_text(text, 20) == "alpha beta gamma"

    def test_hard_cut_without_late_space(self):
        """Should cut mid-word when no space is near the end."""
        text = "a " + "x" * 40
        assert bound_text(text, 10) == "a " + "x" * 8

    def test_strips_trailing_punctuation(self):
        """Should not leave a dangling separator after the cut."""
        assert bound_text("one two, three four", 8) == "one two"


class TestSanitize:
    """Tests for sanitize and strip_noise_phrases."""

    def test_strips_facebook_suffix(self):
        """Should drop the '| Facebook' page title suffix."""
        assert sanitize("Halloween Howl | Facebook", 200) == "Halloween Howl"

    def test_strips_direction_links(self):
        """Should remove 'Get directions' link text."""
        assert sanitize("The Rock House Get directions", 200) == "The Rock House"

    def test_strips_login_prompt(self):
        """Should remove the login/forgot account prompt."""
        assert strip_noise_phrases("Party Log In Forgot Account?") == "Party"

    def test_bounds_length(self):
        """Should bound the sanitized value."""
        assert len(sanitize("word " * 100, 30)) <= 30

    def test_clean_text_default_limit(self):
        """Should bound to 800 characters by default."""
        assert len(clean_text("x" * 1000)) == 800


class TestCleanLocation:
    """Tests for clean_location."""

    def test_drops_leading_nav_label(self):
        """Should drop a leading 'Events' or 'Home' label."""
        assert clean_location("Events The Rock House") == "The Rock House"
        assert clean_location("Home Majestic Theatre") == "Majestic Theatre"

    def test_keeps_plain_venue(self):
        """Should keep a venue without chrome."""
        assert clean_location("George Street Live") == "George Street Live"

    def test_empty(self):
        """Should return None for empty input."""
        assert clean_location("  ") is None


class TestNoise:
    """Tests for is_noise and strip_login_noise."""

    def test_login_prompt_is_noise(self):
        """Should flag login prompts."""
        assert is_noise("Log In") is True
        assert is_noise("Sign Up for Facebook") is True

    def test_nav_label_is_noise(self):
        """Should flag a bare navigation label."""
        assert is_noise("Events") is True
        assert is_noise("More info") is True

    def test_real_title_not_noise(self):
        """Should not flag a title that merely contains a nav word."""
        assert is_noise("Home Brewing Festival") is False
        assert is_noise("") is False

    def test_strip_login_noise(self):
        """Should remove login chrome words from a heuristic candidate."""
        assert strip_login_noise("Facebook Log In Trivia Night") == "Trivia Night"
        assert strip_login_noise(None) == ""


class TestSlugify:
    """Tests for slugify."""

    def test_hyphenates(self):
        """Should lower-case and hyphenate."""
        assert slugify("Live Music & Arts!") == "live-music-arts"

    def test_non_ascii_only(self):
        """Should return an empty slug when nothing is ASCII alphanumeric."""
        assert slugify("¡¿!") == ""

    def test_bounded(self):
        """Should cut the slug at the limit."""
        assert len(slugify("a" * 300)) == 120
