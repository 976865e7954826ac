"""
Unit Tests for Math Markup Normalization

Tests individual rewrite passes and the full pipeline.
"""

import pytest
import re
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "adaptive_sat_tutor", "src"))

from adaptive_sat_tutor.math_markup import (
    PIPELINE,
    balance_display_delimiters,
    close_unclosed_expressions,
    final_prose_spacing,
    fix_corrupted_latex,
    fix_odd_dollar_lines,
    isolate_display_math,
    liberate_prose_words,
    merge_adjacent_spans,
    merge_fragmented_expressions,
    normalize_math_markup,
    normalize_unicode_minus,
    recover_bare_inequalities,
    recover_escape_corruption,
    render_markdown_math,
    repair_word_spacing,
    space_delimiter_pairs,
    split_inline_steps,
    strip_structural_brackets,
    unify_delimiters,
    wrap_bare_latex,
    wrap_choice_literals,
)


class TestPipeline:
    """Test suite for normalize_math_markup as a whole."""

    def test_glued_spans_get_spaced(self):
        result = normalize_math_markup("solve$x$for$y$when$x=2$")
        assert result == "solve $x$ for $y$ when $x=2$"
        for span in re.finditer(r"\$[^$]+\$", result):
            assert result[span.start() - 1:span.start()] in ("", " ")
            assert result[span.end():span.end() + 1] in ("", " ")

    def test_newline_corrupted_neq_restored_first(self):
        corrupted = "Solve $x \neq 3$."  # JSON decoding turned "\\neq" into newline + "eq"
        assert "\n" in corrupted
        assert PIPELINE[0][0] == "escape_corruption"
        assert normalize_math_markup(corrupted) == r"Solve $x \neq 3$."

    def test_empty_text_passes_through(self):
        assert normalize_math_markup("") == ""

    def test_clean_text_is_stable(self):
        text = r"If $2x + 3 = 7$, then $x = 2$."
        assert normalize_math_markup(text) == text
        assert normalize_math_markup(normalize_math_markup(text)) == text

    def test_streaming_mode_is_verbatim(self):
        partial = r"So $\frac{1}{"
        assert render_markdown_math(partial, streaming=True) == partial

    @pytest.mark.parametrize("text, expected", [
        (r"$\frac{1}{2} is half", r"$\frac{1}{2} is half$"),
        (r"Note $\sqrt{2} is irrational.", r"Note $\sqrt{2} is irrational$."),
    ])
    def test_unclosed_command_closed_once(self, text, expected):
        result = normalize_math_markup(text)
        assert result == expected
        assert result.count("$$") == 0
        assert result.count("$") % 2 == 0

    def test_roman_numeral_list_keeps_line_breaks(self):
        text = "Consider the cases:\ni) $x = 2$\nii) $x = 3$"
        assert normalize_math_markup(text) == text

    def test_pipeline_has_twenty_ordered_passes(self):
        names = [name for name, _ in PIPELINE]
        assert len(names) == 20
        assert names.index("delimiter_style") < names.index("display_isolation") < names.index("pair_spacing")


class TestEscapeRecovery:
    """Test suite for JSON-escape damage repair."""

    def test_control_characters_restored(self):
        assert fix_corrupted_latex("\frac{1}{2}") == r"\frac{1}{2}"
        assert fix_corrupted_latex("2 \times 3") == r"2 \times 3"
        assert fix_corrupted_latex("\right)") == r"\right)"
        assert fix_corrupted_latex("\beta") == r"\beta"

    def test_real_newlines_untouched(self):
        assert fix_corrupted_latex("first line\nsecond line") == "first line\nsecond line"

    def test_list_lines_are_not_commands(self):
        text = "Consider the cases:\ni) $x = 2$\nii) $x = 3$\nitem\tan even number"
        assert fix_corrupted_latex(text) == text

    def test_short_commands_restored_inside_math(self):
        assert fix_corrupted_latex("$a \nu b$") == r"$a \nu b$"
        assert fix_corrupted_latex("$f(x) = \tan x$") == r"$f(x) = \tan x$"
        assert fix_corrupted_latex("$$x \to 5$$") == r"$$x \to 5$$"

    def test_double_escaped_commands_collapsed(self):
        assert recover_escape_corruption(r"$\\frac{1}{2}$") == r"$\frac{1}{2}$"


class TestDelimiterPasses:
    """Test suite for delimiter unification, brackets and balancing."""

    def test_unicode_minus(self):
        assert normalize_unicode_minus("x − 3") == "x - 3"

    def test_bare_inequality_words_get_backslash(self):
        assert recover_bare_inequalities("$x neq 3$") == r"$x \neq 3$"
        assert recover_bare_inequalities("$x \\\nleq 5$") == r"$x \leq 5$"
        assert recover_bare_inequalities(r"$x \geq 2$ is unequal") == r"$x \geq 2$ is unequal"

    def test_paren_and_bracket_delimiters(self):
        assert unify_delimiters(r"Let \(x+1\) be") == "Let $x+1$ be"
        assert unify_delimiters(r"\[x^2\]") == "$$x^2$$"

    def test_structural_brackets_stripped_but_intervals_kept(self):
        assert strip_structural_brackets("$$[x+1]$$") == "$$x+1$$"
        assert strip_structural_brackets("$$[1, 2]$$") == "$$[1, 2]$$"

    def test_display_math_in_list_item_fenced(self):
        assert isolate_display_math("- Solve $$x=2$$") == "- Solve\n\n  $$\n  x=2\n  $$"

    def test_unclosed_display_closed(self):
        assert balance_display_delimiters("$$x+1") == "$$x+1$$"

    def test_unclosed_inline_command_closed(self):
        assert close_unclosed_expressions(r"so $\frac{1}{2} is half.") == r"so $\frac{1}{2} is half$."

    def test_stray_prose_dollar_dropped(self):
        assert fix_odd_dollar_lines("Price is $ high") == "Price is high"


class TestSpacingPasses:
    """Test suite for spacing, wrapping and merging passes."""

    def test_adjacent_equations_split_onto_lines(self):
        assert split_inline_steps("$x+1=3$ $x=2$") == "$x+1=3$  \n$x=2$"

    def test_variables_glued_to_words(self):
        assert repair_word_spacing("solve forx when xequals 4") == "solve for x when x equals 4"

    def test_word_spacing_leaves_math_alone(self):
        assert repair_word_spacing("$forx$") == "$forx$"

    def test_bare_fraction_wrapped(self):
        assert wrap_bare_latex(r"so \frac{1}{2} of it") == r"so $\frac{1}{2}$ of it"

    def test_fragmented_arithmetic_merged(self):
        assert merge_adjacent_spans("$x$ + $3$ = $5$") == "$x + 3 = 5$"

    def test_prose_words_unwrapped(self):
        assert liberate_prose_words("$because$ it works") == "because it works"
        assert liberate_prose_words(r"$sin$ of $x$") == r"$sin$ of $x$"

    def test_choice_literals_wrapped(self):
        assert wrap_choice_literals("A)5 B) 7") == "A) $5$ B) $7$"

    def test_left_right_fragments_merged_across_spans(self):
        assert merge_fragmented_expressions(r"$\left( a$ b $c \right)$") == r"$\left( a b c \right)$"
        assert merge_fragmented_expressions(r"$\left( x \right)$ and $y$") == r"$\left( x \right)$ and $y$"

    def test_delimiter_pairs_spaced_per_line(self):
        assert space_delimiter_pairs("a$x$b\nc$$y$$d") == "a $x$ b\nc $$y$$ d"
        # A $ never pairs with one on the next line
        assert space_delimiter_pairs("x$\nb$y") == "x$\nb$y"
        assert space_delimiter_pairs("$ 5 and $x") == "$ 5 and $x"

    def test_negative_numbers_split_from_words(self):
        text = "the value-3 gives -3apples, not $n-3x$"
        assert final_prose_spacing(text) == "the value -3 gives -3 apples, not $n-3x$"
        assert final_prose_spacing("the -2nd term") == "the -2nd term"
